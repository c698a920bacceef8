"""Configuration loading for astguide (.astguide.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = ".astguide.yml"
DEFAULT_GUIDANCE_DIR = ".ast-guidance"
DEFAULT_SRC_DIRS = (".",)


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class LLMConfig:
    """LLM runtime settings used by the commentary enhancer."""

    runner: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: Optional[float] = None


@dataclass
class SyncConfig:
    """Commentary policy and write behaviour for sync runs."""

    infill: bool = False
    regen: bool = False
    structure: bool = False
    dry_run: bool = False
    cross_language: bool = True
    rewrite_on_line_shift: bool = False

    @property
    def wants_enhancer(self) -> bool:
        return self.infill or self.regen or self.structure


@dataclass
class AstGuideConfig:
    """High-level settings defined in .astguide.yml."""

    root: Path
    guidance_dir: Path
    src_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_SRC_DIRS))
    exclude_paths: List[str] = field(default_factory=list)
    llm: Optional[LLMConfig] = None
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def source_roots(self) -> List[Path]:
        return [(self.root / src).resolve() for src in self.src_dirs]


def load_config(config_path: Path) -> AstGuideConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return AstGuideConfig(root=root, guidance_dir=root / DEFAULT_GUIDANCE_DIR)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    guidance_dir_str = _as_str(data.get("guidance_dir")) or DEFAULT_GUIDANCE_DIR
    guidance_dir = Path(guidance_dir_str).expanduser()
    if not guidance_dir.is_absolute():
        guidance_dir = root / guidance_dir

    src_dirs = _as_str_list(data.get("src_dirs")) or list(DEFAULT_SRC_DIRS)
    exclude_paths = _as_str_list(data.get("exclude_paths"))

    llm_data = _as_dict(data.get("llm"))
    llm = None
    if llm_data:
        llm = LLMConfig(
            runner=_as_str(llm_data.get("runner")),
            model=_as_str(llm_data.get("model")),
            temperature=_as_float(llm_data.get("temperature")),
            max_tokens=_as_int(llm_data.get("max_tokens")),
            base_url=_as_str(llm_data.get("base_url")),
            api_key=_as_str(llm_data.get("api_key")),
            request_timeout=_as_float(llm_data.get("request_timeout")),
        )
        if not any(
            (
                llm.runner,
                llm.model,
                llm.temperature,
                llm.max_tokens,
                llm.base_url,
                llm.api_key,
                llm.request_timeout,
            )
        ):
            llm = None

    sync_data = _as_dict(data.get("sync"))
    sync = SyncConfig()
    if sync_data:
        sync.infill = _as_bool(sync_data.get("infill")) or False
        sync.regen = _as_bool(sync_data.get("regen")) or False
        sync.structure = _as_bool(sync_data.get("structure")) or False
        sync.dry_run = _as_bool(sync_data.get("dry_run")) or False
        cross = _as_bool(sync_data.get("cross_language"))
        sync.cross_language = True if cross is None else cross
        sync.rewrite_on_line_shift = _as_bool(sync_data.get("rewrite_on_line_shift")) or False

    return AstGuideConfig(
        root=root,
        guidance_dir=guidance_dir,
        src_dirs=src_dirs,
        exclude_paths=exclude_paths,
        llm=llm,
        sync=sync,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "AstGuideConfig",
    "CONFIG_FILENAME",
    "ConfigError",
    "DEFAULT_GUIDANCE_DIR",
    "LLMConfig",
    "SyncConfig",
    "load_config",
]
