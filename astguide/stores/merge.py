"""Reconciliation of freshly extracted records with persisted ones."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from ..logging import get_logger
from ..models import Record
from .records import dupe_record, merge_tags

logger = get_logger("stores.merge")


@dataclass
class MergeResult:
    """Merged records plus counts summed over every nesting level.

    ``moved`` counts unchanged records whose line shifted. It is informational
    and does not contribute to ``changed``.
    """

    records: List[Record] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    removed: int = 0
    stale: int = 0
    moved: int = 0

    @property
    def changed(self) -> bool:
        return self.added + self.updated + self.removed > 0

    def absorb(self, nested: "MergeResult") -> None:
        self.added += nested.added
        self.updated += nested.updated
        self.removed += nested.removed
        self.stale += nested.stale
        self.moved += nested.moved


def merge_records(source: Sequence[Record], existing: Sequence[Record]) -> MergeResult:
    """Merge ``source`` (fresh) against ``existing`` (persisted) by sibling name.

    * no persisted counterpart: added, copied as extracted
    * equal hashes (or both absent): comment and tags come from the persisted
      record, everything else from the source
    * differing hashes: updated and stale; the comment is cleared and tags are
      the union of both sides
    * persisted records missing from the source: removed

    Every returned record is a fresh copy; neither input is modified.
    """
    by_name: Dict[str, Record] = {}
    for record in existing:
        by_name.setdefault(record.name, record)

    result = MergeResult()
    seen: set[str] = set()
    for fresh in source:
        seen.add(fresh.name)
        previous = by_name.get(fresh.name)
        if previous is None:
            result.added += 1
            result.records.append(dupe_record(fresh))
            continue

        merged = dupe_record(fresh)
        nested = merge_records(fresh.members, previous.members)
        merged.members = nested.records
        result.absorb(nested)

        if fresh.signature_hash == previous.signature_hash:
            merged.comment = previous.comment
            merged.tags = list(previous.tags)
            if fresh.line is not None and previous.line is not None and fresh.line != previous.line:
                result.moved += 1
        else:
            if previous.comment is not None:
                logger.debug("Clearing stale comment on %s (signature changed)", fresh.name)
            merged.comment = None
            merged.tags = merge_tags(previous.tags, fresh.tags)
            result.updated += 1
            result.stale += 1
        result.records.append(merged)

    result.removed += sum(1 for name in by_name if name not in seen)
    return result


def strip_comments(records: Iterable[Record]) -> List[Record]:
    """Copy ``records`` with every comment cleared, recursively."""
    stripped: List[Record] = []
    for record in records:
        copy = dupe_record(record)
        copy.comment = None
        copy.members = strip_comments(record.members)
        stripped.append(copy)
    return stripped


__all__ = ["MergeResult", "merge_records", "merge_tags", "strip_comments"]
