"""Signature fingerprints used to detect declaration changes between runs."""

from __future__ import annotations

import hashlib
from typing import Iterable, List, Optional, Sequence

from .models import Param, Record

ANY_TYPE = "anytype"
VOID_TYPE = "void"


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_type(type_text: Optional[str]) -> str:
    """Trim a return annotation; absent or blank maps to ``void``."""
    if type_text is None:
        return VOID_TYPE
    trimmed = type_text.strip()
    return trimmed or VOID_TYPE


def api_hash(name: str, params: Sequence[Param], return_type: Optional[str]) -> str:
    """Hash a callable over ``name(p1:t1,p2:t2)->ret``.

    Parameter order is part of the input. Defaults are not: changing a default
    value keeps the hash and therefore the curated comment.
    """
    rendered = ",".join(f"{param.name}:{param.type or ANY_TYPE}" for param in params)
    return sha256_hex(f"{name}({rendered})->{normalize_type(return_type)}")


def type_hash(name: str, field_names: Iterable[str]) -> str:
    """Hash a type over ``name(f1,f2,...)``; field order is significant."""
    return sha256_hex(f"{name}({','.join(field_names)})")


def hash_record(record: Record) -> Record:
    """Fill ``signature_hash`` on ``record`` and its members in place."""
    if record.kind.is_callable:
        record.signature_hash = api_hash(record.name, record.params, record.return_type)
    elif record.kind.is_type:
        record.signature_hash = type_hash(record.name, record.fields)
    else:
        # enum fields, tests and TYPE_CHECKING blocks have nothing to version
        record.signature_hash = None
    for member in record.members:
        hash_record(member)
    return record


def hash_records(records: Iterable[Record]) -> List[Record]:
    return [hash_record(record) for record in records]


__all__ = [
    "ANY_TYPE",
    "VOID_TYPE",
    "api_hash",
    "hash_record",
    "hash_records",
    "normalize_type",
    "sha256_hex",
    "type_hash",
]
