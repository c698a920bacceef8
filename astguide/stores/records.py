"""Copying and JSON (de)serialisation of guidance records and documents."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ..models import (
    DetectedPattern,
    GuidanceDocument,
    Meta,
    Param,
    PatternCategory,
    Record,
    RecordKind,
    Skill,
)


def dupe_record(record: Record) -> Record:
    """Deep copy ``record``; the copy shares no list or nested record with it."""
    return Record(
        kind=record.kind,
        name=record.name,
        signature_hash=record.signature_hash,
        signature=record.signature,
        params=[Param(name=p.name, type=p.type, default=p.default) for p in record.params],
        return_type=record.return_type,
        comment=record.comment,
        tags=list(record.tags),
        detected_patterns=[
            DetectedPattern(name=p.name, category=p.category, ref=p.ref)
            for p in record.detected_patterns
        ],
        is_public=record.is_public,
        members=dupe_records(record.members),
        line=record.line,
        fields=list(record.fields),
    )


def dupe_records(records: Iterable[Record]) -> List[Record]:
    return [dupe_record(record) for record in records]


def dupe_skills(skills: Iterable[Skill]) -> List[Skill]:
    return [Skill(ref=skill.ref, context=skill.context) for skill in skills]


def dupe_document(doc: GuidanceDocument) -> GuidanceDocument:
    return GuidanceDocument(
        meta=Meta(module=doc.meta.module, source=doc.meta.source, language=doc.meta.language),
        comment=doc.comment,
        skills=dupe_skills(doc.skills),
        hashtags=list(doc.hashtags),
        used_by=list(doc.used_by),
        members=dupe_records(doc.members),
    )


# ----------------------------------------------------------------------
# Writing


def record_to_dict(record: Record) -> Dict[str, Any]:
    """Render the persisted member object; empty lists and absent values are omitted."""
    data: Dict[str, Any] = {"type": record.kind.value, "name": record.name}
    if record.signature_hash is not None:
        data["match_hash"] = record.signature_hash
    if record.signature is not None:
        data["signature"] = record.signature
    if record.params:
        data["params"] = [_param_to_dict(param) for param in record.params]
    if record.return_type is not None:
        data["returns"] = record.return_type
    if record.comment is not None:
        data["comment"] = record.comment
    if record.tags:
        data["tags"] = list(record.tags)
    if record.detected_patterns:
        data["patterns"] = [_pattern_to_dict(pattern) for pattern in record.detected_patterns]
    data["is_pub"] = record.is_public
    if record.members:
        data["members"] = [record_to_dict(member) for member in record.members]
    if record.line is not None:
        data["line"] = record.line
    return data


def document_to_dict(doc: GuidanceDocument) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "meta": {
            "module": doc.meta.module,
            "source": doc.meta.source,
            "language": doc.meta.language,
        }
    }
    if doc.comment is not None:
        data["comment"] = doc.comment
    if doc.skills:
        skills = []
        for skill in doc.skills:
            entry: Dict[str, Any] = {"ref": skill.ref}
            if skill.context is not None:
                entry["context"] = skill.context
            skills.append(entry)
        data["skills"] = skills
    if doc.hashtags:
        data["hashtags"] = list(doc.hashtags)
    if doc.used_by:
        data["used_by"] = list(doc.used_by)
    if doc.members:
        data["members"] = [record_to_dict(member) for member in doc.members]
    return data


def _param_to_dict(param: Param) -> Dict[str, Any]:
    data: Dict[str, Any] = {"name": param.name}
    if param.type is not None:
        data["type"] = param.type
    if param.default is not None:
        data["default"] = param.default
    return data


def _pattern_to_dict(pattern: DetectedPattern) -> Dict[str, Any]:
    data: Dict[str, Any] = {"name": pattern.name, "type": pattern.category.value}
    if pattern.ref is not None:
        data["ref"] = pattern.ref
    return data


# ----------------------------------------------------------------------
# Reading
#
# A value present with the wrong JSON type reads as if it were absent.


def document_from_dict(payload: object) -> Optional[GuidanceDocument]:
    """Build a document from decoded JSON; ``None`` when the shape is unusable."""
    if not isinstance(payload, dict):
        return None
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return None
    module = meta.get("module")
    source = meta.get("source")
    if not isinstance(module, str) or not isinstance(source, str):
        return None
    language = _as_optional_str(meta.get("language")) or "python"

    skills: List[Skill] = []
    for raw in _as_list(payload.get("skills")):
        if isinstance(raw, dict) and isinstance(raw.get("ref"), str):
            skills.append(Skill(ref=raw["ref"], context=_as_optional_str(raw.get("context"))))

    return GuidanceDocument(
        meta=Meta(module=module, source=source, language=language),
        comment=_as_optional_str(payload.get("comment")),
        skills=skills,
        hashtags=merge_tags([], _as_str_list(payload.get("hashtags"))),
        used_by=_as_str_list(payload.get("used_by")),
        members=records_from_list(payload.get("members")),
    )


def records_from_list(payload: object) -> List[Record]:
    records: List[Record] = []
    for raw in _as_list(payload):
        record = record_from_dict(raw)
        if record is not None:
            records.append(record)
    return records


def record_from_dict(payload: object) -> Optional[Record]:
    if not isinstance(payload, dict):
        return None
    name = payload.get("name")
    kind_value = payload.get("type")
    if not isinstance(name, str) or not isinstance(kind_value, str):
        return None
    try:
        kind = RecordKind(kind_value)
    except ValueError:
        kind = RecordKind.FUNCTION

    params: List[Param] = []
    for raw in _as_list(payload.get("params")):
        if isinstance(raw, dict) and isinstance(raw.get("name"), str):
            params.append(
                Param(
                    name=raw["name"],
                    type=_as_optional_str(raw.get("type")),
                    default=_as_optional_str(raw.get("default")),
                )
            )

    patterns: List[DetectedPattern] = []
    for raw in _as_list(payload.get("patterns")):
        if isinstance(raw, dict) and isinstance(raw.get("name"), str):
            patterns.append(
                DetectedPattern(
                    name=raw["name"],
                    category=_pattern_category(raw.get("type")),
                    ref=_as_optional_str(raw.get("ref")),
                )
            )

    line = payload.get("line")
    is_pub = payload.get("is_pub")
    return Record(
        kind=kind,
        name=name,
        signature_hash=_as_optional_str(payload.get("match_hash")),
        signature=_as_optional_str(payload.get("signature")),
        params=params,
        return_type=_as_optional_str(payload.get("returns")),
        comment=_as_optional_str(payload.get("comment")),
        tags=merge_tags([], _as_str_list(payload.get("tags"))),
        detected_patterns=patterns,
        is_public=is_pub if isinstance(is_pub, bool) else False,
        members=records_from_list(payload.get("members")),
        line=line if isinstance(line, int) and not isinstance(line, bool) else None,
    )


def merge_tags(existing: Iterable[str], new: Iterable[str]) -> List[str]:
    """Order-preserving union; the first spelling of a tag wins."""
    merged: List[str] = []
    seen: set[str] = set()
    for tag in list(existing) + list(new):
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(tag)
    return merged


def _pattern_category(value: object) -> PatternCategory:
    if isinstance(value, str):
        for category in PatternCategory:
            if category.value == value:
                return category
    return PatternCategory.DOMAIN


def _as_list(value: object) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_optional_str(value: object) -> Optional[str]:
    return value if isinstance(value, str) else None


def _as_str_list(value: object) -> List[str]:
    return [item for item in _as_list(value) if isinstance(item, str)]


__all__ = [
    "document_from_dict",
    "document_to_dict",
    "dupe_document",
    "dupe_record",
    "dupe_records",
    "dupe_skills",
    "merge_tags",
    "record_from_dict",
    "record_to_dict",
    "records_from_list",
]
