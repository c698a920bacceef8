"""CLI entrypoints for astguide commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List

from .config import CONFIG_FILENAME, ConfigError, LLMConfig, load_config
from .errors import SyncError
from .logging import configure_logging
from .models import SyncResult
from .orchestrator import SyncOrchestrator
from .stores import GuidanceStore, guidance_path


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="astguide",
        description="Keep per-file structural guidance documents in sync with Python sources.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--config",
        default=".",
        help=f"Project root or path to {CONFIG_FILENAME} (defaults to current directory).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Extract, merge and persist guidance for a file or a directory tree.",
    )
    _add_verbose_option(sync_parser, suppress_default=True)
    target = sync_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--file", help="Sync a single Python source file.")
    target.add_argument("--scan", help="Sync every Python source below this directory.")
    sync_parser.add_argument(
        "--output",
        help="Guidance directory (defaults to guidance_dir from the config).",
    )
    mode = sync_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--infill",
        action="store_true",
        help="Ask the LLM for comments that are currently blank.",
    )
    mode.add_argument(
        "--regen",
        action="store_true",
        help="Keep source comments and let the LLM improve every comment.",
    )
    mode.add_argument(
        "--structure",
        action="store_true",
        help="Only sync files that have no guidance document yet.",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report which documents would change without writing them.",
    )
    sync_parser.add_argument(
        "--no-cross-language",
        action="store_true",
        help="Skip the infill pass over guidance documents the scan did not produce.",
    )
    sync_parser.add_argument("--model", help="Override the LLM model name.")
    sync_parser.add_argument("--base-url", help="Override the LLM endpoint base URL.")

    clean_parser = subparsers.add_parser(
        "clean",
        help="Rewrite a guidance document, dropping corrupted or leaked content.",
    )
    _add_verbose_option(clean_parser, suppress_default=True)
    clean_parser.add_argument("path", help="Guidance JSON document to normalise.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for astguide commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    if args.command == "sync":
        _run_sync(parser, args)
    elif args.command == "clean":
        _run_clean(parser, args)
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _run_sync(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    try:
        config = load_config(Path(args.config))
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")

    policy = config.sync
    policy.infill = policy.infill or bool(args.infill)
    policy.regen = policy.regen or bool(args.regen)
    policy.structure = policy.structure or bool(args.structure)
    policy.dry_run = policy.dry_run or bool(args.dry_run)
    if args.no_cross_language:
        policy.cross_language = False
    if args.output:
        config.guidance_dir = Path(args.output).expanduser().resolve()
    if args.model or args.base_url:
        llm = config.llm or LLMConfig()
        llm.model = args.model or llm.model
        llm.base_url = args.base_url or llm.base_url
        config.llm = llm

    orchestrator = SyncOrchestrator.from_config(config)

    results: List[SyncResult] = []
    if args.file:
        try:
            results.append(orchestrator.sync_file(Path(args.file)))
        except SyncError as exc:
            parser.exit(1, f"astguide sync failed: {exc}\n")
    else:
        try:
            sweep = orchestrator.sync_directory(Path(args.scan))
        except (FileNotFoundError, NotADirectoryError) as exc:
            parser.exit(1, f"{exc}\n")
        results.extend(sweep.results)
        if (policy.infill or policy.regen) and policy.cross_language:
            produced = [guidance_path(config.guidance_dir, result.source) for result in results]
            orchestrator.infill_all(skip=produced)
        for failure in sweep.failures:
            print(f"failed: {failure}", file=sys.stderr)

    written = [result for result in results if result.changed]
    for result in written:
        print(f"{'would update' if policy.dry_run else 'updated'}: {_relativize(Path(result.guidance_path))}")
    print(f"{len(written)} of {len(results)} guidance document(s) changed")


def _run_clean(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    path = Path(args.path)
    if not path.is_file():
        parser.exit(1, f"Guidance document not found: {path}\n")
    store = GuidanceStore()
    doc = store.load(path)
    if doc is None:
        parser.exit(1, f"{path} is not a usable guidance document; re-run sync to rebuild it.\n")
    store.save(path, doc)
    print(f"Cleaned {_relativize(path)}")


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


__all__ = ["main"]


if __name__ == "__main__":
    main(sys.argv[1:])
