"""Tests for record reconciliation."""

from __future__ import annotations

from astguide.models import Param, Record, RecordKind
from astguide.stores import merge_records, merge_tags, strip_comments


def _fn(name: str, hash_: str | None = "h1", **kwargs) -> Record:
    return Record(kind=RecordKind.FUNCTION, name=name, signature_hash=hash_, **kwargs)


def test_unchanged_record_keeps_curated_comment_and_tags() -> None:
    source = [_fn("run", signature="def run()", line=12)]
    existing = [_fn("run", signature="def run()", comment="Starts the loop.", tags=["loop"], line=10)]

    result = merge_records(source, existing)

    merged = result.records[0]
    assert merged.comment == "Starts the loop."
    assert merged.tags == ["loop"]
    assert merged.line == 12
    assert (result.added, result.updated, result.removed, result.stale) == (0, 0, 0, 0)
    assert result.moved == 1
    assert result.changed is False


def test_changed_hash_clears_comment_and_unions_tags() -> None:
    source = [_fn("run", "h2", tags=["io"])]
    existing = [_fn("run", "h1", comment="Old text.", tags=["loop", "IO"])]

    result = merge_records(source, existing)

    merged = result.records[0]
    assert merged.comment is None
    assert merged.tags == ["loop", "IO"]
    assert result.updated == 1
    assert result.stale == 1
    assert result.changed is True


def test_added_and_removed_records_are_counted() -> None:
    source = [_fn("kept"), _fn("fresh", comment="from source")]
    existing = [_fn("kept"), _fn("gone"), _fn("also_gone")]

    result = merge_records(source, existing)

    assert [record.name for record in result.records] == ["kept", "fresh"]
    assert result.records[1].comment == "from source"
    assert result.added == 1
    assert result.removed == 2
    assert result.changed is True


def test_records_without_hashes_count_as_unchanged() -> None:
    source = [Record(kind=RecordKind.TEST, name="test_ok")]
    existing = [Record(kind=RecordKind.TEST, name="test_ok", comment="Smoke test.")]

    result = merge_records(source, existing)

    assert result.records[0].comment == "Smoke test."
    assert result.changed is False


def test_nested_members_merge_and_counts_propagate() -> None:
    source = [
        Record(
            kind=RecordKind.STRUCT,
            name="Queue",
            signature_hash="t1",
            members=[
                Record(kind=RecordKind.METHOD, name="push", signature_hash="m2"),
                Record(kind=RecordKind.METHOD, name="peek", signature_hash="m3"),
            ],
        )
    ]
    existing = [
        Record(
            kind=RecordKind.STRUCT,
            name="Queue",
            signature_hash="t1",
            comment="FIFO queue.",
            members=[
                Record(kind=RecordKind.METHOD, name="push", signature_hash="m1", comment="Adds."),
                Record(kind=RecordKind.METHOD, name="pop", signature_hash="m4", comment="Removes."),
            ],
        )
    ]

    result = merge_records(source, existing)

    queue = result.records[0]
    assert queue.comment == "FIFO queue."
    assert [member.name for member in queue.members] == ["push", "peek"]
    assert queue.members[0].comment is None
    assert (result.added, result.updated, result.removed, result.stale) == (1, 1, 1, 1)


def test_merge_does_not_mutate_inputs() -> None:
    source = [_fn("run", "h2")]
    existing = [_fn("run", "h1", comment="Old.")]

    result = merge_records(source, existing)
    result.records[0].tags.append("changed")

    assert existing[0].comment == "Old."
    assert source[0].tags == []


def test_merged_tree_survives_changes_to_its_inputs() -> None:
    source = [
        Record(
            kind=RecordKind.STRUCT,
            name="Queue",
            signature_hash="t1",
            members=[
                Record(
                    kind=RecordKind.METHOD,
                    name="push",
                    signature_hash="m1",
                    params=[Param(name="item", type="int")],
                ),
                Record(kind=RecordKind.METHOD, name="pop", signature_hash="m2"),
            ],
        ),
        _fn("helper", "h1", params=[Param(name="value", type="str")]),
    ]
    existing = [
        Record(
            kind=RecordKind.STRUCT,
            name="Queue",
            signature_hash="t1",
            comment="FIFO queue.",
            tags=["collections"],
            members=[
                Record(kind=RecordKind.METHOD, name="push", signature_hash="m1", comment="Adds."),
                Record(kind=RecordKind.METHOD, name="pop", signature_hash="m2", comment="Removes."),
            ],
        ),
        _fn("helper", "h1", comment="Helps."),
    ]

    result = merge_records(source, existing)
    existing[0].members.clear()
    existing[0].tags.clear()
    existing[1].comment = None
    source[0].members[0].params.clear()
    source[0].members.clear()
    source[1].params[0].type = "bytes"
    source.clear()
    existing.clear()

    queue, helper = result.records
    assert queue.comment == "FIFO queue."
    assert queue.tags == ["collections"]
    assert [member.name for member in queue.members] == ["push", "pop"]
    assert [member.comment for member in queue.members] == ["Adds.", "Removes."]
    assert [(param.name, param.type) for param in queue.members[0].params] == [("item", "int")]
    assert helper.comment == "Helps."
    assert [(param.name, param.type) for param in helper.params] == [("value", "str")]


def test_strip_comments_returns_clean_copies() -> None:
    original = [
        Record(
            kind=RecordKind.STRUCT,
            name="Box",
            comment="A box.",
            members=[Record(kind=RecordKind.METHOD, name="open", comment="Opens.")],
        )
    ]

    stripped = strip_comments(original)

    assert stripped[0].comment is None
    assert stripped[0].members[0].comment is None
    assert original[0].comment == "A box."
    assert original[0].members[0].comment == "Opens."


def test_merge_tags_is_case_insensitive_and_ordered() -> None:
    assert merge_tags(["io", "Loop"], ["loop", "net", "IO"]) == ["io", "Loop", "net"]
