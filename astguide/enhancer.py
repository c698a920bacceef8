"""Optional commentary enhancement backed by a local LLM."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .llm.runner import LLMRunner
from .logging import get_logger

FILE_COMMENT_LIMIT = 200
SOURCE_PREVIEW_LIMIT = 3000
METHOD_PREVIEW_LIMIT = 6

_COMMENT_TAG = re.compile(r"<comment>(.*?)</comment>", re.DOTALL)
_THINK_BLOCK = re.compile(r"<think>.*?</think>|\[THINK\].*?\[/THINK\]", re.DOTALL | re.IGNORECASE)
_UNCLOSED_THINK = re.compile(r"<think>|\[THINK\]", re.IGNORECASE)
_TAGS_LINE = re.compile(r"^\s*tags:\s*(.*)$", re.IGNORECASE)
_HASHTAG = re.compile(r"#([\w-]+)")

_DANGLING_WORDS = {"of", "in", "for", "from", "with", "to", "a", "an", "the"}
_SELF_REFERENCES = {
    "this function",
    "this method",
    "this class",
    "this struct",
    "this type",
    "this module",
}
_GENERIC_WORDS = {
    "function",
    "method",
    "helper",
    "util",
    "utility",
    "handler",
    "callback",
    "wrapper",
    "implementation",
}
_CHATTER = (
    "here's a",
    "here is a",
    "i'll ",
    "to summarize",
    "okay,",
    "ok,",
    "we need ",
    "let's think",
    "let's craft",
    "let's count",
    "let me think",
    "i need to ",
)

_SYSTEM_PROMPT = (
    "You write terse, technically specific one-line code comments. "
    "Answer only with the requested <comment> tag and an optional Tags line."
)


class TargetKind(str, Enum):
    FUNCTION = "function"
    TYPE = "type"
    FILE = "file"


@dataclass
class EnhancementContext:
    """What the enhancer may show the model besides the signature."""

    module: str
    methods: List[str] = field(default_factory=list)
    source_preview: Optional[str] = None


@dataclass
class Enhancement:
    comment: str
    tags: List[str] = field(default_factory=list)


class CommentEnhancer(ABC):
    """Proposes commentary; every failure surfaces as ``None``."""

    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    def enhance(
        self,
        kind: TargetKind,
        name: str,
        signature: Optional[str],
        existing_comment: Optional[str],
        context: EnhancementContext,
    ) -> Optional[Enhancement]:
        ...


class LLMEnhancer(CommentEnhancer):
    """Prompts a local model and keeps only well-formed single-line answers."""

    def __init__(self, runner: LLMRunner) -> None:
        self.runner = runner
        self.logger = get_logger("enhancer")
        self._available: Optional[bool] = None

    def available(self) -> bool:
        if self._available is None:
            self._available = self.runner.available()
            if not self._available:
                self.logger.warning(
                    "LLM endpoint %s is unreachable; comments are left untouched",
                    self.runner.base_url or self.runner.executable,
                )
        return self._available

    def enhance(
        self,
        kind: TargetKind,
        name: str,
        signature: Optional[str],
        existing_comment: Optional[str],
        context: EnhancementContext,
    ) -> Optional[Enhancement]:
        if kind is TargetKind.FILE:
            prompt = build_file_prompt(name, existing_comment, context.source_preview or "")
        elif kind is TargetKind.TYPE:
            prompt = build_type_prompt(name, signature or name, context.methods, existing_comment, context.module)
        else:
            prompt = build_function_prompt(name, signature or name, existing_comment, context.module)

        try:
            raw = self.runner.run(prompt, system=_SYSTEM_PROMPT)
        except Exception as exc:
            self.logger.debug("Enhancer call for %s failed: %s", name, exc)
            return None

        answer = extract_comment(strip_think_blocks(raw))
        if answer is None:
            self.logger.debug("No <comment> tag in response for %s", name)
            return None
        tags = extract_tags(answer)
        answer = strip_tags_line(answer)
        if is_malformed(answer):
            self.logger.debug("Rejected malformed comment for %s: %r", name, answer)
            return None
        if kind is TargetKind.FILE and len(answer) > FILE_COMMENT_LIMIT:
            answer = answer[:FILE_COMMENT_LIMIT].rstrip()
        return Enhancement(comment=answer, tags=tags)


def score_comment(text: Optional[str]) -> int:
    """Rough quality score used to decide whether a new comment beats an old one."""
    if not text:
        return 0
    score = 0
    if len(text) > 50:
        score += 1
    lowered = text[:512].lower()
    if "args:" in lowered or "parameters" in lowered:
        score += 2
    if "returns:" in lowered or "return" in lowered:
        score += 2
    if "error" in lowered or "raises:" in lowered:
        score += 1
    if text.count("\n") > 2:
        score += 1
    return score


def strip_think_blocks(text: str) -> str:
    stripped = _THINK_BLOCK.sub("", text)
    unclosed = _UNCLOSED_THINK.search(stripped)
    if unclosed is not None:
        stripped = stripped[: unclosed.start()]
    return stripped.strip()


def extract_comment(text: str) -> Optional[str]:
    match = _COMMENT_TAG.search(text)
    if match is None:
        return None
    content = match.group(1).strip()
    return content or None


def extract_tags(text: str) -> List[str]:
    lines = text.strip().splitlines()
    if not lines:
        return []
    match = _TAGS_LINE.match(lines[-1])
    if match is None:
        return []
    return [tag.lower() for tag in _HASHTAG.findall(match.group(1))]


def strip_tags_line(text: str) -> str:
    lines = text.strip().splitlines()
    if lines and _TAGS_LINE.match(lines[-1]):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def is_malformed(text: str) -> bool:
    trimmed = text.strip()
    if not trimmed:
        return True
    words = trimmed.rstrip(" \t.?").split(" ")
    if words and words[-1].lower() in _DANGLING_WORDS:
        return True
    if trimmed.rstrip().endswith("?"):
        return True
    bare = trimmed.strip(" \t\r\n.").lower()
    if bare in _SELF_REFERENCES:
        return True
    if len(bare) <= 20 and " " not in bare and bare in _GENERIC_WORDS:
        return True
    lowered = trimmed.lower()
    return any(phrase in lowered for phrase in _CHATTER)


def build_function_prompt(
    name: str, signature: str, existing_comment: Optional[str], module: str
) -> str:
    lines = [f"Python function in {module}:", f"  {signature}", ""]
    if existing_comment:
        lines.extend([f"Existing comment: {existing_comment}", ""])
    lines.extend(
        [
            "Write a single-line comment for this function.",
            "Rules:",
            "- Plain English, technically specific: what it does, key args, return value or raised errors",
            "- Max 200 characters",
            '- No boilerplate openers ("This function", "A function that")',
            "",
            "Wrap your answer in <comment> tags. Example:",
            "<comment>Parses an ISO-8601 timestamp into an aware datetime; raises ValueError on junk.</comment>",
            "Optionally end the comment, inside the tags, with a line like: Tags: #parsing #datetime",
            "",
            f"Function: {name}",
        ]
    )
    return "\n".join(lines)


def build_type_prompt(
    name: str,
    signature: str,
    methods: List[str],
    existing_comment: Optional[str],
    module: str,
) -> str:
    lines = [f"Python type in {module}:", f"  {signature}"]
    if methods:
        lines.append("Methods:")
        lines.extend(f"  {method}" for method in methods[:METHOD_PREVIEW_LIMIT])
        if len(methods) > METHOD_PREVIEW_LIMIT:
            lines.append(f"  ... and {len(methods) - METHOD_PREVIEW_LIMIT} more")
    if existing_comment:
        lines.extend(["", f"Existing comment: {existing_comment}"])
    lines.extend(
        [
            "",
            "Write a single-line comment for this type.",
            "Rules:",
            "- Plain English, technically specific: purpose, lifecycle, key invariants",
            "- Max 200 characters",
            '- No boilerplate openers ("This class", "A type that")',
            "",
            "Wrap your answer in <comment> tags. Example:",
            "<comment>Pools reusable HTTP sessions per host; close() releases all; not thread-safe.</comment>",
            "",
            f"Type: {name}",
        ]
    )
    return "\n".join(lines)


def build_file_prompt(rel_path: str, existing_comment: Optional[str], source: str) -> str:
    lines: List[str] = []
    preview = source[:SOURCE_PREVIEW_LIMIT]
    if preview:
        lines.extend(["Source:", preview])
    lines.extend(["", f"File: {rel_path}"])
    if existing_comment:
        lines.append(f"Existing comment: {existing_comment}")
    lines.extend(
        [
            "",
            "Write a single-line description for this file.",
            "Rules:",
            "- Plain English, technically specific: key types, algorithms, or responsibilities",
            f"- Max {FILE_COMMENT_LIMIT} chars",
            '- No boilerplate openers ("This file", "A module that")',
            "- Do NOT include a [skills] prefix; it is added automatically",
            "",
            "Wrap your answer in <comment> tags. Example:",
            "<comment>Parses Python sources with tree-sitter and emits per-declaration guidance records.</comment>",
        ]
    )
    return "\n".join(lines)


__all__ = [
    "FILE_COMMENT_LIMIT",
    "METHOD_PREVIEW_LIMIT",
    "SOURCE_PREVIEW_LIMIT",
    "CommentEnhancer",
    "Enhancement",
    "EnhancementContext",
    "LLMEnhancer",
    "TargetKind",
    "build_file_prompt",
    "build_function_prompt",
    "build_type_prompt",
    "extract_comment",
    "extract_tags",
    "is_malformed",
    "score_comment",
    "strip_tags_line",
    "strip_think_blocks",
]
