"""Persistence and reconciliation of guidance records."""

from .guidance_store import GUIDANCE_SUFFIX, GuidanceStore, guidance_path, is_leaked_prompt
from .merge import MergeResult, merge_records, merge_tags, strip_comments
from .records import (
    document_from_dict,
    document_to_dict,
    dupe_document,
    dupe_record,
    dupe_records,
    dupe_skills,
    record_from_dict,
    record_to_dict,
)

__all__ = [
    "GUIDANCE_SUFFIX",
    "GuidanceStore",
    "MergeResult",
    "document_from_dict",
    "document_to_dict",
    "dupe_document",
    "dupe_record",
    "dupe_records",
    "dupe_skills",
    "guidance_path",
    "is_leaked_prompt",
    "merge_records",
    "merge_tags",
    "record_from_dict",
    "record_to_dict",
    "strip_comments",
]
