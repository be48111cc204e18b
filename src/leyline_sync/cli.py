"""Command-line interface for leyline-sync.

Subcommands:

- ``sync``   -- resolve, classify, plan and apply (``--dry-run`` to preview).
- ``update`` -- preview, then apply only if there are no conflicts.
- ``status`` -- compare the local tree with the baseline (no network).
- ``diff``   -- unified diffs between local files and the remote.
- ``categories`` -- list the categories the source offers.
- ``init``   -- write a starter ``.leyline/config.yml``.

Reports go to stdout and logs to stderr.  Exit codes: 0 clean, 1 per-path
errors, 2 fatal error, 3 conflicts, 130 interrupted.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .cache import ContentCache
from .config import Config, get_bool_env, load_config, parse_categories
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import build_config
from .errors import LeylineSyncError
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.mapper import CategoryMapper
from .sync.models import EXIT_ERRORS, EXIT_FATAL, EXIT_OK
from .sync.reporter import (
    categories_to_json,
    diffs_to_json,
    format_categories,
    format_diff,
    format_dry_run_preview,
    format_status,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .sync.resolver import create_source

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--path",
        "-p",
        default=".",
        help="Target directory to sync into (default: current directory)",
    )
    common.add_argument(
        "--categories",
        "-c",
        help="Comma-separated categories to sync; core is always included "
        "(overrides LEYLINE_CATEGORIES and config files)",
    )
    common.add_argument(
        "--ref",
        help="Branch, tag or commit to sync from (default: master)",
    )
    common.add_argument(
        "--source-url",
        help="Git repository URL or HTTP content API base URL",
    )
    common.add_argument(
        "--source-kind",
        choices=["git", "http"],
        help="Source adapter (default: git)",
    )
    common.add_argument(
        "--cache-dir",
        help="Blob cache directory (default: ~/.cache/leyline)",
    )
    common.add_argument(
        "--no-cache",
        action="store_true",
        help="Do not read or write the blob cache",
    )
    common.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    common.add_argument(
        "--log-file",
        help="Also append logs to this file",
    )
    common.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log record format on stderr (default: text)",
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="leyline-sync",
        description="Sync Leyline tenets and bindings into a project "
        "without overwriting local edits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what a sync would change
  leyline-sync sync --dry-run

  # Sync core plus the go and typescript categories
  leyline-sync sync -c go,typescript

  # Take the remote version of conflicted files and delete retracted ones
  leyline-sync sync --force

  # Pin to a tag and show cache statistics
  leyline-sync sync --ref v1.2.0 --stats

  # What changed locally since the last sync?
  leyline-sync status

  # Show what the remote would change
  leyline-sync diff tenets/simplicity.md

  # Which categories can be synced?
  leyline-sync categories

Exit codes: 0 clean, 1 per-file errors, 2 fatal error, 3 conflicts.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"leyline-sync version {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync_p = sub.add_parser(
        "sync", parents=[common], help="Sync content into the target"
    )
    sync_p.add_argument(
        "--dry-run",
        "-n",
        action="store_true",
        help="Show the plan without changing anything",
    )
    sync_p.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite local edits and delete files removed upstream",
    )
    sync_p.add_argument(
        "--stats", action="store_true", help="Print cache statistics"
    )
    sync_p.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )

    update_p = sub.add_parser(
        "update",
        parents=[common],
        help="Apply remote updates unless there are conflicts",
    )
    update_p.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Apply even when conflicts exist (remote wins)",
    )
    update_p.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )

    status_p = sub.add_parser(
        "status",
        parents=[common],
        help="Show local changes since the last sync (no network)",
    )
    status_p.add_argument(
        "--json", action="store_true", help="Print the status as JSON"
    )

    diff_p = sub.add_parser(
        "diff",
        parents=[common],
        help="Show unified diffs between local files and the remote",
    )
    diff_p.add_argument(
        "paths", nargs="*", help="Content paths to diff (default: all)"
    )
    diff_p.add_argument(
        "--json", action="store_true", help="Print the diffs as JSON"
    )

    categories_p = sub.add_parser(
        "categories",
        parents=[common],
        help="List the categories the source offers",
    )
    categories_p.add_argument(
        "--json", action="store_true", help="Print the categories as JSON"
    )

    sub.add_parser(
        "init",
        parents=[common],
        help="Write a starter .leyline/config.yml",
    )
    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_engine(config: Config) -> SyncEngine:
    """Create a ``SyncEngine`` (source, cache, mapper) from *config*."""
    mapper = CategoryMapper(exclude=config.exclude)
    cache = ContentCache(config.cache_dir) if config.cache_enabled else None
    source = create_source(
        config.source_kind,
        config.source_url,
        cache_dir=config.cache_dir,
        mapper=mapper,
        timeout=config.fetch_timeout,
    )
    return SyncEngine(
        config.target_dir,
        source,
        config.source_ref,
        config.categories,
        docs_path=config.docs_path,
        cache=cache,
        mapper=mapper,
        max_workers=config.max_workers,
        fetch_timeout=config.fetch_timeout,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _print_error(exc: LeylineSyncError) -> None:
    print(f"Error: {exc.message}", file=sys.stderr)
    for suggestion in exc.recovery_suggestions:
        print(f"  - {suggestion}", file=sys.stderr)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_sync(engine: SyncEngine, args: argparse.Namespace) -> int:
    report = engine.run(dry_run=args.dry_run, force=args.force)
    if args.json:
        _print_json(report_to_json(report))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))

    if args.stats and not args.json:
        print()
        if engine.cache is None:
            print("Cache disabled.")
        else:
            stats = engine.cache.stats()
            print(stats.format_stats(engine.cache.directory_stats()))
    return report.exit_code


def _cmd_update(engine: SyncEngine, args: argparse.Namespace) -> int:
    report = engine.update(force=args.force)
    if args.json:
        _print_json(report_to_json(report))
    elif report.dry_run:
        print(format_dry_run_preview(report))
        print()
        print(
            f"Update blocked: {len(report.conflicted)} conflicts. "
            "Resolve them by hand or re-run with --force."
        )
    else:
        print(format_sync_report(report))
    return report.exit_code


def _cmd_status(engine: SyncEngine, args: argparse.Namespace) -> int:
    categories = (
        parse_categories(args.categories)
        if args.categories is not None
        else None
    )
    status = engine.status(categories)
    if args.json:
        _print_json(status_to_json(status))
    else:
        print(format_status(status))
    return EXIT_OK


def _cmd_diff(engine: SyncEngine, args: argparse.Namespace) -> int:
    diffs = engine.diff(args.paths or None)
    if args.json:
        _print_json(diffs_to_json(diffs))
    else:
        print(format_diff(diffs))
    return EXIT_ERRORS if any(d.error for d in diffs) else EXIT_OK


def _cmd_categories(engine: SyncEngine, args: argparse.Namespace) -> int:
    categories = engine.available_categories()
    if args.json:
        _print_json(categories_to_json(engine.source_ref, categories))
    else:
        print(format_categories(engine.source_ref, categories))
    return EXIT_OK


_COMMANDS = {
    "sync": _cmd_sync,
    "update": _cmd_update,
    "status": _cmd_status,
    "diff": _cmd_diff,
    "categories": _cmd_categories,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one command and return its exit code."""
    # .env first so its values feed env lookups and YAML interpolation
    load_dotenv()
    args = build_parser().parse_args(argv)
    project_dir = Path(args.path).expanduser().resolve()

    try:
        if args.command == "init":
            setup_logging(debug=args.debug, log_format=args.log_format)
            path = ensure_config(project_dir=project_dir)
            print(f"Config file: {path}")
            return EXIT_OK

        unified = build_config(load_hierarchical_config(project_dir))
        setup_logging(
            debug=args.debug or bool(get_bool_env("LEYLINE_DEBUG")),
            log_file=args.log_file or unified.logging.file,
            log_format=args.log_format,
            level=unified.logging.level,
        )
        config = load_config(
            target_dir=project_dir,
            categories=(
                parse_categories(args.categories)
                if args.categories is not None
                else None
            ),
            source_ref=args.ref,
            source_url=args.source_url,
            source_kind=args.source_kind,
            cache_dir=args.cache_dir,
            no_cache=args.no_cache,
            debug=args.debug,
            unified=unified,
        )
        engine = build_engine(config)
        return _COMMANDS[args.command](engine, args)
    except LeylineSyncError as exc:
        logger.debug("Fatal error", exc_info=True)
        _print_error(exc)
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
