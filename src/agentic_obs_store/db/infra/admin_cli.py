#!/usr/bin/env python3
# db/infra/admin_cli.py
"""
agentic-obs-store: maintenance CLI for the automation server's datastore.

Sub-commands:
  migrate          create the datastore if needed and bring the schema up to date
  stats            action-log statistics
  trim-images      keep the latest N captured images per source
  prune-actions    delete action records older than D days
  backup           online snapshot of the datastore file
  export-actions   write recent action records to CSV

Every command except migrate refuses to run against a missing file, so a
typo in --db never creates an empty datastore.

Examples:
  agentic-obs-store --db ~/.agentic-obs/db.sqlite stats
  agentic-obs-store trim-images --keep 10 --dry-run
  agentic-obs-store trim-images --source cam --keep 3
  agentic-obs-store prune-actions --older-than-days 30
"""
import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from agentic_obs_store.config import configure_logging, load_store_config, log_level_from_env
from agentic_obs_store.db.infra import maintenance
from agentic_obs_store.db.infra.backup_utils import create_backup
from agentic_obs_store.db.infra.cli_utils import format_rows, print_user_message
from agentic_obs_store.db.services import StateStore
from agentic_obs_store.errors import StoreError
from agentic_obs_store.views import export_actions_csv, stats_summary

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentic-obs-store",
        description="Maintain the automation server's datastore.",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="Path to the SQLite datastore (default: AGENTIC_OBS_DB_PATH or ~/.agentic-obs/db.sqlite)",
    )
    parser.add_argument("--env-file", default=None, help="Read settings from this .env file")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file (rotated at 5 MB)")
    noise = parser.add_mutually_exclusive_group()
    noise.add_argument("--quiet", action="store_true", help="Print nothing on success")
    noise.add_argument("--verbose", action="store_true", help="Print details and debug logs")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", help="Create or upgrade the schema")
    sub.add_parser("stats", help="Show action-log statistics")

    trim = sub.add_parser("trim-images", help="Keep only the latest N images per capture source")
    trim.add_argument("--source", default=None, help="Only trim this capture source (by name)")
    trim.add_argument("--keep", type=int, required=True, help="Images to keep per source")
    trim.add_argument("--dry-run", action="store_true", help="List what would be deleted")

    prune = sub.add_parser("prune-actions", help="Delete old action records")
    prune.add_argument(
        "--older-than-days",
        type=float,
        required=True,
        help="Delete records older than this many days (0 deletes everything)",
    )
    prune.add_argument("--dry-run", action="store_true", help="List what would be deleted")

    backup = sub.add_parser("backup", help="Write an online backup of the datastore")
    backup.add_argument("--output", default=None, help="Backup file (default: <db>_backup_<timestamp>.sqlite)")

    export = sub.add_parser("export-actions", help="Export recent action records to CSV")
    export.add_argument("path", help="CSV file to write")
    export.add_argument("--limit", type=int, default=0, help="Records to export (default: history limit)")

    return parser


# -----------------------
# commands
# -----------------------

def _cmd_migrate(store: StateStore, args) -> None:
    version = store.schema_version()
    print_user_message(f"Schema of {store.path} is at version {version}.", quiet=args.quiet)


def _cmd_stats(store: StateStore, args) -> None:
    summary, top = stats_summary(store.actions.stats())
    details = top.to_string(index=False) if not top.empty else "no operations recorded"
    print_user_message(
        f"{summary['total']} action(s): {summary['successful']} succeeded, {summary['failed']} failed, "
        f"avg {summary['avg_duration_ms']} ms",
        details=details,
        verbose=args.verbose,
        quiet=args.quiet,
    )


def _cmd_trim_images(store: StateStore, args) -> None:
    if args.dry_run:
        preview = maintenance.preview_trim(store.pool, args.keep, args.source)
        if not preview:
            print_user_message(f"No images would be deleted (keep={args.keep}).", quiet=args.quiet)
            return
        total = sum(len(rows) for rows in preview.values())
        details = "\n".join(
            f"{name}: {len(rows)} image(s)\n"
            + format_rows((r["id"], r["captured_at"], r["size_bytes"]) for r in rows)
            for name, rows in preview.items()
        )
        print_user_message(
            f"DRY RUN: {total} image(s) would be deleted (keep={args.keep}).",
            action="Run without --dry-run to delete them.",
            details=details,
            verbose=args.verbose,
            quiet=args.quiet,
        )
        return

    deleted = maintenance.trim_all_sources(store.pool, args.keep, args.source)
    print_user_message(
        f"Trimmed {sum(deleted.values())} image(s) (keep={args.keep}) for source={args.source or '<all>'}.",
        details=format_rows(deleted.items()),
        verbose=args.verbose,
        quiet=args.quiet,
    )


def _cmd_prune_actions(store: StateStore, args) -> None:
    age = timedelta(days=args.older_than_days)
    if args.dry_run:
        rows = maintenance.preview_prune(store.pool, age)
        if not rows:
            print_user_message("No action records would be deleted.", quiet=args.quiet)
            return
        print_user_message(
            f"DRY RUN: {len(rows)} action record(s) would be deleted.",
            action="Run without --dry-run to delete them.",
            details=format_rows((r["id"], r["created_at"], r["label"]) for r in rows),
            verbose=args.verbose,
            quiet=args.quiet,
        )
        return

    deleted = maintenance.prune_actions(store.pool, age)
    print_user_message(
        f"Pruned {deleted} action record(s) older than {args.older_than_days:g} day(s).",
        quiet=args.quiet,
    )


def _cmd_backup(store: StateStore, args) -> None:
    path = create_backup(store.pool, args.output)
    print_user_message(f"Backup written to {path}.", quiet=args.quiet)


def _cmd_export_actions(store: StateStore, args) -> None:
    records = store.actions.recent(args.limit)
    path = export_actions_csv(records, args.path)
    print_user_message(f"Exported {len(records)} action record(s) to {path}.", quiet=args.quiet)


COMMANDS = {
    "migrate": _cmd_migrate,
    "stats": _cmd_stats,
    "trim-images": _cmd_trim_images,
    "prune-actions": _cmd_prune_actions,
    "backup": _cmd_backup,
    "export-actions": _cmd_export_actions,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        level = "DEBUG"
    elif args.quiet:
        level = "WARNING"
    else:
        level = log_level_from_env(args.env_file)
    configure_logging(level, args.log_file)

    overrides = {"path": Path(args.db).expanduser()} if args.db else {}
    try:
        cfg = load_store_config(args.env_file, **overrides)
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")

    if args.command != "migrate" and not cfg.path.exists():
        raise SystemExit(f"Database file not found: {cfg.path}")

    try:
        with StateStore(cfg) as store:
            COMMANDS[args.command](store, args)
    except (StoreError, ValueError) as e:
        logger.debug("%s failed", args.command, exc_info=True)
        raise SystemExit(f"{args.command} failed: {e}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
