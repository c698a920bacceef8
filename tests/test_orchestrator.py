"""Tests for astguide.orchestrator."""

from __future__ import annotations

import http.client
import json
from pathlib import Path

import pytest

from astguide.config import LLMConfig
from astguide.enhancer import CommentEnhancer, Enhancement, LLMEnhancer, TargetKind
from astguide.errors import SourceUnreadableError
from astguide.llm.runner import LLMRunner
from astguide.models import Skill
from astguide.orchestrator import SyncOrchestrator, build_enhancer, build_skills, compose_comment
from astguide.patterns import DOMAIN_SKILL_REF, GOF_SKILL_REF

CALC_SOURCE = '''
"""Arithmetic helpers."""


def add(a: int, b: int) -> int:
    """Adds numbers."""
    return a + b


class Counter:
    total: int

    def bump(self) -> None:
        self.total += 1
'''


class FakeEnhancer(CommentEnhancer):
    """Returns canned comments keyed by target name."""

    def __init__(self, comments: dict | None = None, *, available: bool = True) -> None:
        self.comments = comments or {}
        self.calls: list = []
        self._available = available

    def available(self) -> bool:
        return self._available

    def enhance(self, kind, name, signature, existing_comment, context):
        self.calls.append((kind, name, existing_comment, context))
        text = self.comments.get(name)
        if text is None:
            return None
        return Enhancement(comment=text, tags=["generated"])


def _doc_path(project, rel: str) -> Path:
    return project.guidance_dir() / f"{rel}.json"


def _read_doc(project, rel: str) -> dict:
    return json.loads(_doc_path(project, rel).read_text(encoding="utf-8"))


def _write_doc(project, rel: str, payload: dict) -> None:
    _doc_path(project, rel).write_text(json.dumps(payload), encoding="utf-8")


def _member(doc: dict, name: str) -> dict:
    return next(member for member in doc["members"] if member["name"] == name)


def test_first_sync_writes_document(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    orchestrator = SyncOrchestrator(project.config())

    result = orchestrator.sync_file(project.path("pkg/calc.py"))

    assert result.written is True
    assert result.added == 2
    doc = _read_doc(project, "pkg/calc.py")
    assert doc["meta"] == {"module": "pkg.calc", "source": "pkg/calc.py", "language": "python"}
    assert "comment" not in doc
    add = _member(doc, "add")
    assert add["type"] == "fn_decl"
    assert add["signature"] == "def add(a: int, b: int) -> int"
    assert "comment" not in add
    assert len(add["match_hash"]) == 64
    counter = _member(doc, "Counter")
    assert counter["type"] == "struct"
    assert [member["name"] for member in counter["members"]] == ["bump"]


def test_second_sync_is_a_no_op(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    orchestrator = SyncOrchestrator(project.config())
    orchestrator.sync_file(project.path("pkg/calc.py"))
    before = _doc_path(project, "pkg/calc.py").read_text(encoding="utf-8")

    result = orchestrator.sync_file(project.path("pkg/calc.py"))

    assert result.written is False
    assert result.changed is False
    assert _doc_path(project, "pkg/calc.py").read_text(encoding="utf-8") == before


def test_curated_comment_survives_until_signature_changes(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    orchestrator = SyncOrchestrator(project.config())
    orchestrator.sync_file(project.path("pkg/calc.py"))
    doc = _read_doc(project, "pkg/calc.py")
    _member(doc, "add")["comment"] = "Adds two ints."
    _write_doc(project, "pkg/calc.py", doc)

    unchanged = orchestrator.sync_file(project.path("pkg/calc.py"))

    assert unchanged.written is False
    assert _member(_read_doc(project, "pkg/calc.py"), "add")["comment"] == "Adds two ints."

    project.write({"pkg/calc.py": CALC_SOURCE.replace("b: int)", "b: int, c: int = 0)")})
    changed = orchestrator.sync_file(project.path("pkg/calc.py"))

    assert changed.written is True
    assert (changed.updated, changed.stale) == (1, 1)
    assert "comment" not in _member(_read_doc(project, "pkg/calc.py"), "add")


def test_default_value_changes_keep_the_comment(project) -> None:
    project.write({"m.py": "def scale(x: float, factor: float = 2.0) -> float:\n    return x * factor\n"})
    orchestrator = SyncOrchestrator(project.config())
    orchestrator.sync_file(project.path("m.py"))
    doc = _read_doc(project, "m.py")
    doc["members"][0]["comment"] = "Scales x."
    _write_doc(project, "m.py", doc)

    project.write({"m.py": "def scale(x: float, factor: float = 3.0) -> float:\n    return x * factor\n"})
    result = orchestrator.sync_file(project.path("m.py"))

    assert result.updated == 0
    assert _read_doc(project, "m.py")["members"][0]["comment"] == "Scales x."


def test_removed_declarations_are_dropped(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    orchestrator = SyncOrchestrator(project.config())
    orchestrator.sync_file(project.path("pkg/calc.py"))

    project.write({"pkg/calc.py": CALC_SOURCE.split("class Counter")[0]})
    result = orchestrator.sync_file(project.path("pkg/calc.py"))

    assert result.removed == 1
    assert result.written is True
    assert [member["name"] for member in _read_doc(project, "pkg/calc.py")["members"]] == ["add"]


def test_line_shifts_only_rewrite_when_configured(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    SyncOrchestrator(project.config()).sync_file(project.path("pkg/calc.py"))
    shifted = CALC_SOURCE.replace('"""Arithmetic helpers."""\n', '"""Arithmetic helpers."""\nimport os\n')
    project.write({"pkg/calc.py": shifted})

    quiet = SyncOrchestrator(project.config()).sync_file(project.path("pkg/calc.py"))
    assert quiet.written is False
    assert _member(_read_doc(project, "pkg/calc.py"), "add")["line"] == 4

    eager = SyncOrchestrator(project.config(rewrite_on_line_shift=True)).sync_file(project.path("pkg/calc.py"))
    assert eager.written is True
    assert _member(_read_doc(project, "pkg/calc.py"), "add")["line"] == 5


def test_corrupted_document_is_rebuilt(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    target = _doc_path(project, "pkg/calc.py")
    target.parent.mkdir(parents=True)
    target.write_text("{ truncated", encoding="utf-8")

    result = SyncOrchestrator(project.config()).sync_file(project.path("pkg/calc.py"))

    assert result.written is True
    assert _read_doc(project, "pkg/calc.py")["meta"]["source"] == "pkg/calc.py"


def test_missing_source_raises(project) -> None:
    with pytest.raises(SourceUnreadableError):
        SyncOrchestrator(project.config()).sync_file(project.path("absent.py"))


def test_sweep_isolates_failures(project) -> None:
    project.write(
        {
            "good.py": "def ok():\n    pass\n",
            "bad.py": "def broken(:\n    pass\n",
        }
    )

    sweep = SyncOrchestrator(project.config()).sync_directory()

    assert sweep.processed == 1
    assert sweep.failures == ["bad.py"]
    assert _doc_path(project, "good.py").exists()
    assert not _doc_path(project, "bad.py").exists()


def test_structure_mode_skips_documented_files(project) -> None:
    project.write({"a.py": "def a():\n    pass\n", "b.py": "def b():\n    pass\n"})
    SyncOrchestrator(project.config()).sync_file(project.path("a.py"))

    sweep = SyncOrchestrator(project.config(structure=True)).sync_directory()

    assert [result.source for result in sweep.results] == ["b.py"]


def test_detected_patterns_add_skills_and_comment_prefix(project) -> None:
    project.write({"ring.py": "class RingBuffer:\n    size: int\n"})

    SyncOrchestrator(project.config()).sync_file(project.path("ring.py"))

    doc = _read_doc(project, "ring.py")
    assert doc["skills"] == [{"ref": DOMAIN_SKILL_REF, "context": "Domain patterns detected"}]
    assert doc["comment"] == "[domain-patterns]"


def test_extra_skills_are_kept_and_legacy_refs_normalised(project) -> None:
    project.write({"ring.py": "class RingBuffer:\n    size: int\n"})
    orchestrator = SyncOrchestrator(project.config())
    orchestrator.sync_file(project.path("ring.py"))
    doc = _read_doc(project, "ring.py")
    doc["comment"] = "[stale] Fixed-size sample storage."
    doc["skills"] = [
        {"ref": "guidance/skills/domain_patterns/SKILL.md"},
        {"ref": "custom/skills/logging/SKILL.md", "context": "Structured logs"},
    ]
    _write_doc(project, "ring.py", doc)

    result = orchestrator.sync_file(project.path("ring.py"))

    doc = _read_doc(project, "ring.py")
    assert result.written is True
    assert [skill["ref"] for skill in doc["skills"]] == ["custom/skills/logging/SKILL.md", DOMAIN_SKILL_REF]
    assert doc["comment"] == "[logging, domain-patterns] Fixed-size sample storage."


def test_used_by_lists_importers(project) -> None:
    project.write(
        {
            "pkg/__init__.py": "",
            "pkg/core.py": "def value() -> int:\n    return 1\n",
            "pkg/cli.py": "from pkg.core import value\n",
        }
    )

    SyncOrchestrator(project.config()).sync_directory()

    assert _read_doc(project, "pkg/core.py")["used_by"] == ["pkg/cli.py"]
    assert "used_by" not in _read_doc(project, "pkg/cli.py")


def test_dry_run_writes_nothing(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})

    result = SyncOrchestrator(project.config(dry_run=True)).sync_file(project.path("pkg/calc.py"))

    assert result.changed is True
    assert result.written is False
    assert not project.guidance_dir().exists()


def test_regen_keeps_source_comments(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})

    SyncOrchestrator(project.config(regen=True)).sync_file(project.path("pkg/calc.py"))

    doc = _read_doc(project, "pkg/calc.py")
    assert doc["comment"] == "Arithmetic helpers."
    assert _member(doc, "add")["comment"] == "Adds numbers."


def test_infill_fills_blank_comments_only(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    SyncOrchestrator(project.config()).sync_file(project.path("pkg/calc.py"))
    doc = _read_doc(project, "pkg/calc.py")
    _member(doc, "add")["comment"] = "Adds two ints."
    _write_doc(project, "pkg/calc.py", doc)
    enhancer = FakeEnhancer(
        {
            "add": "Replacement that should never be requested.",
            "Counter": "Mutable running total.",
            "bump": "Increments total by one.",
            "pkg/calc.py": "Arithmetic helpers for the calculator.",
        }
    )

    result = SyncOrchestrator(project.config(infill=True), enhancer=enhancer).sync_file(
        project.path("pkg/calc.py")
    )

    assert result.written is True
    asked = [(kind, name) for kind, name, _, _ in enhancer.calls]
    assert (TargetKind.FUNCTION, "add") not in asked
    assert (TargetKind.TYPE, "Counter") in asked
    assert (TargetKind.FUNCTION, "bump") in asked
    assert (TargetKind.FILE, "pkg/calc.py") in asked
    type_context = next(ctx for kind, name, _, ctx in enhancer.calls if name == "Counter")
    assert type_context.methods == ["def bump(self) -> None"]
    doc = _read_doc(project, "pkg/calc.py")
    assert doc["comment"] == "Arithmetic helpers for the calculator."
    assert _member(doc, "add")["comment"] == "Adds two ints."
    counter = _member(doc, "Counter")
    assert counter["comment"] == "Mutable running total."
    assert counter["tags"] == ["generated"]
    assert counter["members"][0]["comment"] == "Increments total by one."


def test_regen_only_accepts_better_scoring_comments(project) -> None:
    detailed = "Returns the sum of both operands and raises an error when either is not an integer."
    source = CALC_SOURCE.replace('"""Adds numbers."""', f'"""{detailed}"""')
    project.write({"pkg/calc.py": source})
    enhancer = FakeEnhancer({"add": "Adds.", "bump": "Increments the total and returns nothing."})

    SyncOrchestrator(project.config(regen=True), enhancer=enhancer).sync_file(project.path("pkg/calc.py"))

    doc = _read_doc(project, "pkg/calc.py")
    assert _member(doc, "add")["comment"] == detailed
    assert _member(doc, "Counter")["members"][0]["comment"] == "Increments the total and returns nothing."


def test_unavailable_enhancer_is_not_called(project) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    enhancer = FakeEnhancer({"add": "Adds."}, available=False)

    SyncOrchestrator(project.config(infill=True), enhancer=enhancer).sync_file(project.path("pkg/calc.py"))

    assert enhancer.calls == []


class BrokenChatResponse:
    """Answers the availability probe but fails while the chat body is read."""

    status = 200

    def __init__(self, body: bytes | Exception) -> None:
        self._body = body

    def read(self) -> bytes:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _http_enhancer(monkeypatch, body: bytes | Exception) -> LLMEnhancer:
    monkeypatch.setattr("astguide.llm.runner.urlopen", lambda request, timeout=None: BrokenChatResponse(body))
    return LLMEnhancer(LLMRunner(base_url="http://localhost:11434/v1", api_key=None))


def test_broken_llm_response_keeps_existing_comments(project, monkeypatch) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE})
    SyncOrchestrator(project.config()).sync_file(project.path("pkg/calc.py"))
    doc = _read_doc(project, "pkg/calc.py")
    _member(doc, "add")["comment"] = "Adds two ints."
    _write_doc(project, "pkg/calc.py", doc)
    enhancer = _http_enhancer(monkeypatch, http.client.IncompleteRead(b"partial"))

    result = SyncOrchestrator(project.config(infill=True), enhancer=enhancer).sync_file(
        project.path("pkg/calc.py")
    )

    assert result.changed is False
    doc = _read_doc(project, "pkg/calc.py")
    assert _member(doc, "add")["comment"] == "Adds two ints."
    assert "comment" not in _member(doc, "Counter")


@pytest.mark.parametrize(
    "body",
    [b"\xff\xfe garbage", ConnectionResetError("reset by peer"), http.client.IncompleteRead(b"partial")],
)
def test_broken_llm_response_does_not_fail_the_sweep(project, monkeypatch, body) -> None:
    project.write({"pkg/calc.py": CALC_SOURCE, "pkg/util.py": "def ok():\n    pass\n"})
    enhancer = _http_enhancer(monkeypatch, body)

    sweep = SyncOrchestrator(project.config(infill=True), enhancer=enhancer).sync_directory()

    assert sweep.failures == []
    assert sweep.processed == 2
    assert "comment" not in _member(_read_doc(project, "pkg/calc.py"), "add")


def test_infill_all_updates_documents_for_other_languages(project) -> None:
    project.write({"lib/ring.zig": "pub fn push() void {}\n"})
    target = _doc_path(project, "lib/ring.zig")
    target.parent.mkdir(parents=True)
    target.write_text(
        json.dumps(
            {
                "meta": {"module": "ring", "source": "lib/ring.zig", "language": "zig"},
                "skills": [{"ref": GOF_SKILL_REF}],
                "members": [{"type": "fn_decl", "name": "push", "signature": "pub fn push() void"}],
            }
        ),
        encoding="utf-8",
    )
    enhancer = FakeEnhancer({"push": "Appends one sample.", "lib/ring.zig": "Fixed ring of samples."})
    orchestrator = SyncOrchestrator(project.config(infill=True), enhancer=enhancer)

    assert orchestrator.infill_all(skip=[target]) == 0
    assert orchestrator.infill_all() == 1

    doc = _read_doc(project, "lib/ring.zig")
    assert doc["meta"]["language"] == "zig"
    assert doc["comment"] == "[gof-patterns] Fixed ring of samples."
    assert doc["members"][0]["comment"] == "Appends one sample."
    file_call = next(call for call in enhancer.calls if call[0] is TargetKind.FILE)
    assert "pub fn push" in file_call[3].source_preview


def test_infill_is_disabled_without_enhancer(project) -> None:
    orchestrator = SyncOrchestrator(project.config(infill=True))

    assert orchestrator.infill_all() == 0
    assert orchestrator.infill_json_file(project.path("missing.json")) is False


def test_build_skills_and_compose_comment() -> None:
    existing = [
        Skill(ref=DOMAIN_SKILL_REF, context="old"),
        Skill(ref="x/skills/io/SKILL.md"),
        Skill(ref="x/skills/io/SKILL.md"),
        Skill(ref="plain-ref"),
    ]

    skills = build_skills(existing, has_domain=False, has_gof=True)

    assert [skill.ref for skill in skills] == ["x/skills/io/SKILL.md", "plain-ref", GOF_SKILL_REF]
    assert compose_comment("[old] Text.", skills) == "[io, plain-ref, gof-patterns] Text."
    assert compose_comment("[old] Text.", []) == "Text."
    assert compose_comment(None, []) is None


def test_build_enhancer_follows_policy(project) -> None:
    assert build_enhancer(project.config()) is None

    config = project.config(infill=True)
    config.llm = LLMConfig(runner="cli", model="tiny", max_tokens=64)
    enhancer = build_enhancer(config)

    assert isinstance(enhancer, LLMEnhancer)
    assert enhancer.runner.base_url is None
    assert enhancer.runner.model == "tiny"
    assert enhancer.runner.max_tokens == 64
