"""Tests for astguide.logging."""

from __future__ import annotations

import logging
from pathlib import Path

from astguide.logging import configure_logging, get_logger, resolve_level


def test_resolve_level_flags(monkeypatch) -> None:
    monkeypatch.delenv("ASTGUIDE_LOG_LEVEL", raising=False)

    assert resolve_level() == logging.INFO
    assert resolve_level(verbose=True) == logging.DEBUG
    assert resolve_level(quiet=True) == logging.WARNING


def test_env_level_overrides_flags(monkeypatch) -> None:
    monkeypatch.setenv("ASTGUIDE_LOG_LEVEL", "error")

    assert resolve_level(verbose=True) == logging.ERROR


def test_configure_logging_writes_log_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("ASTGUIDE_LOG_LEVEL", raising=False)
    log_file = tmp_path / "logs" / "astguide.log"

    configure_logging(verbose=True, log_file=log_file)
    configure_logging(verbose=True, log_file=log_file)
    get_logger("orchestrator").debug("hello from tests")
    for handler in logging.getLogger("astguide").handlers:
        handler.flush()

    assert len(logging.getLogger("astguide").handlers) == 2
    assert "astguide.orchestrator: hello from tests" in log_file.read_text(encoding="utf-8")
