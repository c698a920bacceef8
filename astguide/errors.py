"""Exception hierarchy for astguide."""

from __future__ import annotations


class AstGuideError(RuntimeError):
    """Base class for errors raised by astguide."""


class SyncError(AstGuideError):
    """A single source file could not be synced; the sweep continues."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class SourceUnreadableError(SyncError):
    """Raised when a source file is missing or cannot be decoded."""


class StructuralParseError(SyncError):
    """Raised when the parser reports syntax errors in a source file."""

    def __init__(self, path: str, line: int | None = None) -> None:
        where = f" near line {line}" if line is not None else ""
        super().__init__(path, f"syntax errors{where}")
        self.line = line


__all__ = [
    "AstGuideError",
    "SourceUnreadableError",
    "StructuralParseError",
    "SyncError",
]
