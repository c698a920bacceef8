"""Textual import scan used to compute reverse dependencies (``used_by``)."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .logging import get_logger

_IMPORT = re.compile(r"^[ \t]*import[ \t]+([^\n#;]+)", re.MULTILINE)
_FROM_IMPORT = re.compile(
    r"^[ \t]*from[ \t]+(\.*[\w.]*)[ \t]+import[ \t]+(\([^)]*\)|[^\n#;]+)", re.MULTILINE
)
_AS_ALIAS = re.compile(r"\s+as\s+\w+$")


def module_name(rel_path: str) -> str:
    """Dotted module path for a source path relative to the scan root."""
    parts = rel_path[:-3].split("/") if rel_path.endswith(".py") else rel_path.split("/")
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(part for part in parts if part)


def referenced_modules(text: str, importer_rel_path: str) -> Set[str]:
    """Every dotted name the file's import statements could refer to."""
    refs: Set[str] = set()
    for match in _IMPORT.finditer(text):
        for item in match.group(1).split(","):
            name = _AS_ALIAS.sub("", item.strip())
            if name:
                refs.add(name)
    package = _package_of(importer_rel_path)
    for match in _FROM_IMPORT.finditer(text):
        base = _resolve(match.group(1), package)
        if base is None:
            continue
        if base:
            refs.add(base)
        names = match.group(2).strip().strip("()")
        for item in names.split(","):
            name = _AS_ALIAS.sub("", item.strip())
            if name and name != "*":
                refs.add(f"{base}.{name}" if base else name)
    return refs


def _package_of(rel_path: str) -> List[str]:
    parts = rel_path.split("/")[:-1]
    return [part for part in parts if part]


def _resolve(spec: str, package: List[str]) -> str | None:
    level = len(spec) - len(spec.lstrip("."))
    rest = spec[level:]
    if level == 0:
        return rest
    if level - 1 > len(package):
        return None
    anchor = package[: len(package) - (level - 1)]
    return ".".join(anchor + ([rest] if rest else []))


class ImportScanner:
    """Finds which scanned files import a given module.

    Module names are computed relative to the source root holding each file,
    so ``src/pkg/mod.py`` is ``pkg.mod`` when ``src`` is a source root. Import
    sets are cached per file and refreshed when the file's mtime changes.
    """

    def __init__(self, project_root: Path, source_roots: Sequence[Path] = ()) -> None:
        self.project_root = project_root.expanduser().resolve()
        roots = [root.expanduser().resolve() for root in source_roots] or [self.project_root]
        # deepest root first so nested source roots win
        self.source_roots = sorted(roots, key=lambda root: len(root.parts), reverse=True)
        self.logger = get_logger("imports")
        self._cache: Dict[Path, Tuple[int, Set[str]]] = {}

    def used_by(self, target: Path, candidates: Iterable[Path]) -> List[str]:
        target = target.resolve()
        wanted = module_name(self._module_rel(target))
        if not wanted:
            return []
        users: List[str] = []
        for candidate in candidates:
            candidate = candidate.resolve()
            if candidate == target:
                continue
            refs = self._refs(candidate)
            if any(ref == wanted or ref.startswith(f"{wanted}.") for ref in refs):
                users.append(self._project_rel(candidate))
        return sorted(users)

    def _refs(self, path: Path) -> Set[str]:
        try:
            mtime = path.stat().st_mtime_ns
        except OSError:
            return set()
        cached = self._cache.get(path)
        if cached is not None and cached[0] == mtime:
            return cached[1]
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.debug("Skipping %s during import scan: %s", path, exc)
            return set()
        refs = referenced_modules(text, self._module_rel(path))
        self._cache[path] = (mtime, refs)
        return refs

    def module_for(self, path: Path) -> str:
        """Dotted module name of ``path``, e.g. ``pkg.mod``."""
        return module_name(self._module_rel(path.resolve()))

    def _module_rel(self, path: Path) -> str:
        for root in self.source_roots:
            if path == root or root in path.parents:
                return path.relative_to(root).as_posix()
        return path.name

    def _project_rel(self, path: Path) -> str:
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()


__all__ = ["ImportScanner", "module_name", "referenced_modules"]
