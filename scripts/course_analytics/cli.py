"""CLI entry point: run, collect, setup-db, status."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from typing import Optional

from scripts.course_analytics.collectors import COLLECTOR_CLASSES
from scripts.course_analytics.config import WRITE_MODES, load_config
from scripts.course_analytics.db import Database
from scripts.course_analytics.errors import ConfigurationError
from scripts.course_analytics.logging_config import configure_logging
from scripts.course_analytics.models import RunSummary
from scripts.course_analytics.pipeline import (
    PROFILES,
    build_orchestrator,
    collect,
    collect_and_store,
    resolve_sources,
)
from scripts.course_analytics.schema import setup_schema
from scripts.course_analytics.secrets import EnvCredentialProvider

logger = logging.getLogger("collection.cli")

SOURCE_CHOICES = ["all"] + [cls.SOURCE_NAME for cls in COLLECTOR_CLASSES]


def _split_sources(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    return [s.strip() for s in raw.split(",") if s.strip()]


def _print_summary(summary: Optional[RunSummary]) -> None:
    if summary is None:
        return
    fmt = "{:<18}  {:<20}  {:<8}  {:>8}  {:>9}  {}"
    print(f"\n{summary.PHASE.upper()} SUMMARY")
    print(fmt.format("NAME", "TARGET", "STATUS", "RECORDS", "DURATION", "ERROR"))
    print("-" * 100)
    for row in summary.to_rows():
        print(fmt.format(
            row["name"],
            row.get("target", "") or "",
            row["status"],
            row["record_count"],
            f"{row['duration_seconds']:.2f}s",
            (row["error_message"] or "")[:40],
        ))
    counts = summary.counts()
    print(
        f"{counts['attempted']} attempted, {counts['succeeded']} succeeded, "
        f"{counts['failed']} failed, {counts['skipped']} skipped, "
        f"{counts['records']} records"
    )


def cmd_run(args: argparse.Namespace) -> None:
    """Collect the selected sources and store them."""
    config = load_config()
    if args.no_save_files:
        config = replace(config, save_files=False)
    selected = resolve_sources(_split_sources(args.sources), args.profile)

    result = collect_and_store(
        config,
        EnvCredentialProvider(),
        selected=selected,
        write_mode=args.mode,
    )
    _print_summary(result.collection)
    _print_summary(result.storage)


def cmd_collect(args: argparse.Namespace) -> None:
    """Collect only; results land in CSV files under the data directory."""
    config = load_config()
    selected = resolve_sources(_split_sources(args.sources), args.profile)

    orchestrator = build_orchestrator(config, EnvCredentialProvider())
    orchestrator.resolve(selected)
    result = collect(orchestrator, config, selected)
    _print_summary(result.collection)


def cmd_setup_db(args: argparse.Namespace) -> None:
    """Create the target tables and the run tracking table."""
    config = load_config()
    db = Database(config.database)
    try:
        tables = setup_schema(db)
        logger.info("Schema ready: %s", ", ".join(tables))
    finally:
        db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show recent collection and storage outcomes."""
    config = load_config()
    db = Database(config.database)

    try:
        runs = db.get_recent_runs(
            name=args.source if args.source != "all" else None,
            limit=args.limit,
        )
        if not runs:
            print("No collection runs found.")
            return

        fmt = "{:<36}  {:<10}  {:<18}  {:<8}  {:>8}  {:<19}  {}"
        print(fmt.format("RUN ID", "PHASE", "NAME", "STATUS", "RECORDS", "RECORDED", "ERROR"))
        print("-" * 140)
        for r in runs:
            recorded = str(r["recorded_at"])[:19] if r["recorded_at"] else ""
            print(fmt.format(
                str(r["run_id"])[:36],
                r["phase"],
                r["name"],
                r["status"],
                r.get("record_count", 0),
                recorded,
                (r.get("error_message") or "")[:40],
            ))
    finally:
        db.close()


def _add_selection_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--sources", "-s",
        help=f"Comma-separated sources (default: all). Choices: {', '.join(SOURCE_CHOICES)}",
    )
    group.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        help="Named source subset",
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    parser = argparse.ArgumentParser(
        prog="course-analytics",
        description="Course analytics data collection pipeline",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Collect and store")
    _add_selection_args(run_parser)
    run_parser.add_argument(
        "--mode", "-m",
        choices=WRITE_MODES,
        default=None,
        help="Write mode (default: COLLECTION_WRITE_MODE or upsert)",
    )
    run_parser.add_argument(
        "--no-save-files",
        action="store_true",
        help="Skip per-source CSV backups",
    )
    run_parser.set_defaults(func=cmd_run)

    collect_parser = subparsers.add_parser("collect", help="Collect only, write CSV files")
    _add_selection_args(collect_parser)
    collect_parser.set_defaults(func=cmd_collect)

    setup_parser = subparsers.add_parser("setup-db", help="Create database tables")
    setup_parser.set_defaults(func=cmd_setup_db)

    status_parser = subparsers.add_parser("status", help="Show recent run outcomes")
    status_parser.add_argument(
        "--source", "-p",
        choices=SOURCE_CHOICES,
        default="all",
        help="Filter by source",
    )
    status_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=20,
        help="Number of rows to show (default: 20)",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)
    try:
        args.func(args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
