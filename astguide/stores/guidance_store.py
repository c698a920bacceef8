"""On-disk guidance documents, one JSON file per source file."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from ..logging import get_logger
from ..models import GuidanceDocument, Record
from .records import document_from_dict, document_to_dict

GUIDANCE_SUFFIX = ".json"

_LEAKED_PREAMBLES = (
    "we need to write",
    "we need to look",
    "we need to read",
    "i need to write",
    "let's write",
    "let me write",
    "write a one-sentence",
)


def guidance_path(output_dir: Path, rel_path: str) -> Path:
    """``output_dir/<rel_path>.json``; the source suffix is kept."""
    return output_dir / f"{rel_path}{GUIDANCE_SUFFIX}"


def is_leaked_prompt(text: str) -> bool:
    """True when ``text`` is model reasoning that leaked in place of a comment."""
    head = text[:30].lower()
    return any(head.startswith(preamble) for preamble in _LEAKED_PREAMBLES)


class GuidanceStore:
    """Loads and saves guidance documents.

    ``dirty`` is raised whenever a load had to discard something found on disk
    (unparseable JSON, a document failing the schema, or a leaked comment). The
    orchestrator clears it before each file and rewrites when it is set.
    """

    def __init__(self) -> None:
        self.dirty = False
        self.logger = get_logger("stores.guidance")

    def load(self, path: Path) -> Optional[GuidanceDocument]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.warning("Unreadable guidance document %s: %s", path, exc)
            self.dirty = True
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            self.logger.warning("Discarding corrupted guidance document %s: %s", path, exc)
            self.dirty = True
            return None
        doc = document_from_dict(payload)
        if doc is None:
            self.logger.warning("Discarding guidance document %s: unexpected shape", path)
            self.dirty = True
            return None
        if doc.comment is not None and is_leaked_prompt(doc.comment):
            doc.comment = None
            self.dirty = True
        if _drop_leaked_comments(doc.members):
            self.dirty = True
        return doc

    def save(self, path: Path, doc: GuidanceDocument) -> None:
        """Write ``doc`` atomically: a temporary sibling file replaced into place."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(document_to_dict(doc), indent=2, ensure_ascii=False) + "\n"
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(payload)
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise


def _drop_leaked_comments(records: Iterable[Record]) -> bool:
    found = False
    for record in records:
        if record.comment is not None and is_leaked_prompt(record.comment):
            record.comment = None
            found = True
        if _drop_leaked_comments(record.members):
            found = True
    return found


__all__ = ["GUIDANCE_SUFFIX", "GuidanceStore", "guidance_path", "is_leaked_prompt"]
