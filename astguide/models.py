"""Core data models shared across astguide components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RecordKind(str, Enum):
    """Kind tag persisted as the ``type`` key of every member object."""

    FUNCTION = "fn_decl"
    FUNCTION_PRIVATE = "fn_private"
    METHOD = "method"
    METHOD_PRIVATE = "method_private"
    STRUCT = "struct"
    ENUM = "enum"
    UNION = "union"
    ENUM_FIELD = "enum_field"
    TEST = "test_decl"
    COMPTIME_BLOCK = "comptime_block"

    @property
    def is_callable(self) -> bool:
        return self in _CALLABLE_KINDS

    @property
    def is_type(self) -> bool:
        return self in _TYPE_KINDS


_CALLABLE_KINDS = frozenset(
    {
        RecordKind.FUNCTION,
        RecordKind.FUNCTION_PRIVATE,
        RecordKind.METHOD,
        RecordKind.METHOD_PRIVATE,
    }
)
_TYPE_KINDS = frozenset({RecordKind.STRUCT, RecordKind.ENUM, RecordKind.UNION})


class PatternCategory(str, Enum):
    """Category of a detected design pattern."""

    DOMAIN = "Domain"
    GOF = "GoF"


@dataclass
class Param:
    """One parameter of a function signature."""

    name: str
    type: Optional[str] = None
    default: Optional[str] = None


@dataclass
class DetectedPattern:
    """Design pattern reported by the heuristic detector."""

    name: str
    category: PatternCategory
    ref: Optional[str] = None


@dataclass
class Record:
    """Structural fact extracted from a source file.

    ``fields`` holds the data-field names of a type. It feeds the type hash
    and is never persisted.
    """

    kind: RecordKind
    name: str
    signature_hash: Optional[str] = None
    signature: Optional[str] = None
    params: List[Param] = field(default_factory=list)
    return_type: Optional[str] = None
    comment: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    detected_patterns: List[DetectedPattern] = field(default_factory=list)
    is_public: bool = False
    members: List["Record"] = field(default_factory=list)
    line: Optional[int] = None
    fields: List[str] = field(default_factory=list, compare=False, repr=False)


@dataclass
class Skill:
    """Reference to a skill document attached to a guidance file."""

    ref: str
    context: Optional[str] = None


@dataclass
class Meta:
    """Identity of the source file a guidance document describes."""

    module: str
    source: str
    language: str = "python"


@dataclass
class GuidanceDocument:
    """Persisted per-source-file container of records."""

    meta: Meta
    comment: Optional[str] = None
    skills: List[Skill] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    used_by: List[str] = field(default_factory=list)
    members: List[Record] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome of syncing one source file."""

    source: str
    guidance_path: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    stale: int = 0
    changed: bool = False
    written: bool = False


@dataclass
class SweepResult:
    """Outcome of a directory sweep."""

    processed: int = 0
    results: List[SyncResult] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


__all__ = [
    "DetectedPattern",
    "GuidanceDocument",
    "Meta",
    "Param",
    "PatternCategory",
    "Record",
    "RecordKind",
    "Skill",
    "SweepResult",
    "SyncResult",
]
