"""Per-file and directory sync pipelines."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .config import AstGuideConfig, LLMConfig
from .enhancer import (
    CommentEnhancer,
    EnhancementContext,
    LLMEnhancer,
    SOURCE_PREVIEW_LIMIT,
    TargetKind,
    score_comment,
)
from .errors import SourceUnreadableError, SyncError
from .extractor import Extractor
from .hashing import hash_records
from .imports import ImportScanner
from .llm.runner import LLMRunner
from .logging import get_logger
from .models import (
    GuidanceDocument,
    Meta,
    PatternCategory,
    Record,
    Skill,
    SweepResult,
    SyncResult,
)
from .patterns import DOMAIN_SKILL_REF, GOF_SKILL_REF
from .repo_scanner import SourceScanner
from .stores import GuidanceStore, guidance_path, merge_records, merge_tags, strip_comments

DOMAIN_SKILL_CONTEXT = "Domain patterns detected"
GOF_SKILL_CONTEXT = "GoF patterns detected"

_LEGACY_SKILL_REFS = {
    "guidance/skills/domain_patterns/SKILL.md": DOMAIN_SKILL_REF,
    "guidance/skills/domain-patterns/SKILL.md": DOMAIN_SKILL_REF,
    "guidance/skills/gof-patterns/SKILL.md": GOF_SKILL_REF,
}


class SyncOrchestrator:
    """Drives source files through extract, hash, merge and persist.

    The commentary policy comes from ``config.sync``:

    * ``infill`` asks the enhancer only for blank comments
    * ``regen`` lets raw source comments into the merge and asks the enhancer
      about every comment, keeping the better-scoring text
    * ``structure`` syncs only files without a guidance document and fills a
      missing file comment
    """

    def __init__(
        self,
        config: AstGuideConfig,
        *,
        extractor: Extractor | None = None,
        store: GuidanceStore | None = None,
        enhancer: CommentEnhancer | None = None,
        scanner: SourceScanner | None = None,
        import_scanner: ImportScanner | None = None,
    ) -> None:
        self.config = config
        self.policy = config.sync
        self.root = config.root
        self.output_dir = config.guidance_dir
        self.extractor = extractor or Extractor()
        self.store = store or GuidanceStore()
        self.enhancer = enhancer
        self.scanner = scanner or SourceScanner(config.root, config.exclude_paths)
        self.import_scanner = import_scanner or ImportScanner(config.root, config.source_roots)
        self.logger = get_logger("orchestrator")
        self._sweep_sources: Optional[List[Path]] = None

    @classmethod
    def from_config(cls, config: AstGuideConfig) -> "SyncOrchestrator":
        return cls(config, enhancer=build_enhancer(config))

    # ------------------------------------------------------------------
    # Source sync

    def sync_file(self, path: Path) -> SyncResult:
        """Sync one source file and write its guidance document when warranted."""
        source_path = Path(path).expanduser().resolve()
        rel_path = self._relative(source_path)
        try:
            source = source_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SourceUnreadableError(rel_path, "file not found") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnreadableError(rel_path, str(exc)) from exc

        extracted = self.extractor.extract(source, rel_path)
        records = extracted.records if self.policy.regen else strip_comments(extracted.records)
        hash_records(records)

        target = guidance_path(self.output_dir, rel_path)
        self.store.dirty = False
        existing = self.store.load(target)
        merge = merge_records(records, existing.members if existing is not None else [])
        if merge.stale:
            self.logger.debug("%s: %d stale comment(s) cleared", rel_path, merge.stale)

        module = self.import_scanner.module_for(source_path)
        enhanced = False
        if self._infill_enabled():
            enhanced = self._enhance_records(merge.records, module)

        module_comment: Optional[str] = None
        if self.policy.regen and extracted.module_comment:
            module_comment = extracted.module_comment
        elif existing is not None and existing.comment:
            module_comment = strip_skill_prefix(existing.comment) or None

        if self._file_enhancement_wanted(module_comment):
            proposal = self._propose_file_comment(rel_path, module_comment, source)
            if proposal is not None:
                module_comment = proposal
                enhanced = True

        has_domain, has_gof = pattern_categories(merge.records)
        skills = build_skills(existing.skills if existing is not None else [], has_domain, has_gof)

        doc = GuidanceDocument(
            meta=Meta(module=module, source=rel_path, language="python"),
            comment=compose_comment(module_comment, skills),
            skills=skills,
            hashtags=list(existing.hashtags) if existing is not None else [],
            used_by=self.import_scanner.used_by(source_path, self._candidate_sources()),
            members=merge.records,
        )

        previous_comment = existing.comment if existing is not None else None
        comment_changed = previous_comment != doc.comment
        shifted = self.policy.rewrite_on_line_shift and merge.moved > 0
        needs_write = merge.changed or comment_changed or self.store.dirty or enhanced or shifted
        self.logger.debug(
            "%s: added=%d updated=%d removed=%d moved=%d comment_changed=%s dirty=%s enhanced=%s",
            rel_path,
            merge.added,
            merge.updated,
            merge.removed,
            merge.moved,
            comment_changed,
            self.store.dirty,
            enhanced,
        )

        written = False
        if needs_write and self.policy.dry_run:
            self.logger.info("[dry-run] Would update %s", target)
        elif needs_write:
            self.store.save(target, doc)
            written = True
            self.logger.info("Generated %s", target)

        return SyncResult(
            source=rel_path,
            guidance_path=str(target),
            added=merge.added,
            updated=merge.updated,
            removed=merge.removed,
            stale=merge.stale,
            changed=needs_write,
            written=written,
        )

    def sync_directory(self, directory: Path | None = None) -> SweepResult:
        """Sync every Python source below ``directory`` (default: the source roots).

        A file that cannot be read, parsed or written is logged and recorded in
        ``failures``; the sweep carries on with the next file.
        """
        roots = [Path(directory)] if directory is not None else self.config.source_roots
        sources: List[Path] = []
        for root in roots:
            sources.extend(self.scanner.iter_sources(root))

        sweep = SweepResult()
        self._sweep_sources = self._all_sources()
        try:
            for source_path in sources:
                rel_path = self._relative(source_path)
                if self.policy.structure and guidance_path(self.output_dir, rel_path).exists():
                    continue
                try:
                    result = self.sync_file(source_path)
                except (SyncError, OSError) as exc:
                    self.logger.warning("Skipping %s: %s", rel_path, exc)
                    sweep.failures.append(rel_path)
                    continue
                sweep.results.append(result)
                sweep.processed += 1
        finally:
            self._sweep_sources = None
        return sweep

    # ------------------------------------------------------------------
    # Infill over persisted documents (any language)

    def infill_json_file(self, json_path: Path) -> bool:
        """Fill comments in one existing guidance document; True when it changed."""
        if not self._infill_enabled():
            return False
        return self._infill_document(Path(json_path))

    def infill_all(self, guidance_dir: Path | None = None, skip: Iterable[Path] = ()) -> int:
        """Infill every ``*.json`` document below ``guidance_dir`` not in ``skip``."""
        if not self._infill_enabled():
            return 0
        base = Path(guidance_dir) if guidance_dir is not None else self.output_dir
        if not base.is_dir():
            return 0
        skipped = {Path(path).resolve() for path in skip}
        changed = 0
        for json_path in sorted(base.rglob("*.json")):
            if json_path.resolve() in skipped:
                continue
            if self._infill_document(json_path):
                changed += 1
        return changed

    def _infill_document(self, json_path: Path) -> bool:
        self.store.dirty = False
        doc = self.store.load(json_path)
        if doc is None:
            return False

        changed = False
        bare = strip_skill_prefix(doc.comment) if doc.comment else None
        if doc.meta.source and (self.policy.regen or not bare):
            preview = self._read_preview(self.root / doc.meta.source)
            proposal = self._propose_file_comment(doc.meta.source, bare or None, preview)
            if proposal is not None:
                doc.comment = compose_comment(proposal, doc.skills)
                changed = True

        if self._enhance_records(doc.members, doc.meta.module):
            changed = True

        if not (changed or self.store.dirty):
            return False
        if self.policy.dry_run:
            self.logger.info("[dry-run] Would update %s", json_path)
        else:
            self.store.save(json_path, doc)
            self.logger.info("Infilled %s", json_path)
        return True

    # ------------------------------------------------------------------
    # Enhancement helpers

    def _infill_enabled(self) -> bool:
        if self.enhancer is None:
            return False
        if not (self.policy.infill or self.policy.regen):
            return False
        return self.enhancer.available()

    def _file_enhancement_wanted(self, module_comment: Optional[str]) -> bool:
        if self.enhancer is None:
            return False
        if self.policy.regen:
            return self.enhancer.available()
        if (self.policy.infill or self.policy.structure) and not module_comment:
            return self.enhancer.available()
        return False

    def _enhance_records(self, records: Sequence[Record], module: str) -> bool:
        """Ask the enhancer about each eligible record, recursing into members."""
        assert self.enhancer is not None
        changed = False
        for record in records:
            if record.kind.is_callable or record.kind.is_type:
                if self.policy.regen or not record.comment:
                    changed = self._enhance_record(record, module) or changed
            if record.members:
                changed = self._enhance_records(record.members, module) or changed
        return changed

    def _enhance_record(self, record: Record, module: str) -> bool:
        assert self.enhancer is not None
        if record.kind.is_type:
            kind = TargetKind.TYPE
            context = EnhancementContext(
                module=module,
                methods=[member.signature for member in record.members if member.signature],
            )
        else:
            kind = TargetKind.FUNCTION
            context = EnhancementContext(module=module)

        proposal = self.enhancer.enhance(kind, record.name, record.signature, record.comment, context)
        if proposal is None:
            return False

        changed = False
        if _accept(proposal.comment, record.comment):
            record.comment = proposal.comment
            changed = True
        if proposal.tags:
            tags = merge_tags(record.tags, proposal.tags)
            if tags != record.tags:
                record.tags = tags
                changed = True
        return changed

    def _propose_file_comment(
        self, rel_path: str, current: Optional[str], source: str
    ) -> Optional[str]:
        assert self.enhancer is not None
        proposal = self.enhancer.enhance(
            TargetKind.FILE,
            rel_path,
            None,
            current,
            EnhancementContext(module=rel_path, source_preview=source[:SOURCE_PREVIEW_LIMIT]),
        )
        if proposal is None or not _accept(proposal.comment, current):
            return None
        return proposal.comment

    # ------------------------------------------------------------------
    # Paths

    def _candidate_sources(self) -> List[Path]:
        if self._sweep_sources is not None:
            return self._sweep_sources
        return self._all_sources()

    def _all_sources(self) -> List[Path]:
        sources: List[Path] = []
        for root in self.config.source_roots:
            if root.is_dir():
                sources.extend(self.scanner.iter_sources(root))
        return sources

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.name

    def _read_preview(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")[:SOURCE_PREVIEW_LIMIT]
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.debug("No source preview for %s: %s", path, exc)
            return ""


def _accept(new: str, old: Optional[str]) -> bool:
    if not old:
        return True
    return score_comment(new) > score_comment(old)


def pattern_categories(records: Iterable[Record]) -> tuple[bool, bool]:
    """Return ``(has_domain, has_gof)`` over the whole record tree."""
    has_domain = has_gof = False
    for record in records:
        for pattern in record.detected_patterns:
            if pattern.category is PatternCategory.DOMAIN:
                has_domain = True
            elif pattern.category is PatternCategory.GOF:
                has_gof = True
        nested_domain, nested_gof = pattern_categories(record.members)
        has_domain = has_domain or nested_domain
        has_gof = has_gof or nested_gof
    return has_domain, has_gof


def build_skills(existing: Iterable[Skill], has_domain: bool, has_gof: bool) -> List[Skill]:
    """Carry extra skills forward and re-derive the two baseline entries."""
    skills: List[Skill] = []
    seen: set[str] = set()
    for skill in existing:
        ref = _LEGACY_SKILL_REFS.get(skill.ref, skill.ref)
        if ref in (DOMAIN_SKILL_REF, GOF_SKILL_REF) or ref in seen:
            continue
        seen.add(ref)
        skills.append(Skill(ref=ref, context=skill.context))
    if has_domain:
        skills.append(Skill(ref=DOMAIN_SKILL_REF, context=DOMAIN_SKILL_CONTEXT))
    if has_gof:
        skills.append(Skill(ref=GOF_SKILL_REF, context=GOF_SKILL_CONTEXT))
    return skills


def strip_skill_prefix(comment: str) -> str:
    if comment.startswith("["):
        close = comment.find("]")
        if close != -1:
            return comment[close + 1 :].lstrip(" ")
    return comment


def skill_name(ref: str) -> str:
    marker = ref.find("skills/")
    if marker == -1:
        return ref
    name = ref[marker + len("skills/") :]
    if name.endswith("/SKILL.md"):
        name = name[: -len("/SKILL.md")]
    return name


def compose_comment(comment: Optional[str], skills: Sequence[Skill]) -> Optional[str]:
    """``[skill-a, skill-b] text``; any previous prefix is replaced."""
    bare = strip_skill_prefix(comment) if comment else ""
    if not skills:
        return bare or None
    prefix = "[" + ", ".join(skill_name(skill.ref) for skill in skills) + "]"
    return f"{prefix} {bare}" if bare else prefix


def build_enhancer(config: AstGuideConfig) -> Optional[CommentEnhancer]:
    """LLM-backed enhancer when the sync policy asks for commentary."""
    if not config.sync.wants_enhancer:
        return None
    llm = config.llm or LLMConfig()
    kwargs: dict[str, object] = {}
    if llm.runner in {"cli", "ollama-cli"}:
        kwargs["base_url"] = None
    elif llm.base_url:
        kwargs["base_url"] = llm.base_url
    if llm.api_key:
        kwargs["api_key"] = llm.api_key
    if llm.temperature is not None:
        kwargs["temperature"] = llm.temperature
    if llm.max_tokens is not None:
        kwargs["max_tokens"] = llm.max_tokens
    if llm.request_timeout is not None:
        kwargs["request_timeout"] = llm.request_timeout
    runner = LLMRunner(llm.model, **kwargs)  # type: ignore[arg-type]
    return LLMEnhancer(runner)


__all__ = [
    "SyncOrchestrator",
    "build_enhancer",
    "build_skills",
    "compose_comment",
    "pattern_categories",
    "skill_name",
    "strip_skill_prefix",
]
