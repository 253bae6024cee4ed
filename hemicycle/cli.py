#!/usr/bin/env python3
"""Command line entry point.

Usage:
    hemicycle sync [--deputes] [--scrutins] ... [--limit N] [--full] [--no-actions]
    hemicycle smart-sync [--all] [--force] [-s] [-A] [-I] [-L] [--scrutins-limit N] ...
    hemicycle stats [--chamber assemblee|senat] [--invalidate] [--legislator ID]
    hemicycle status [--no-probe]
    hemicycle schedule [--dry-run]
    hemicycle test [--legifrance]

Exit code is 0 on success and 1 when a source failed or the command could
not run at all.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from hemicycle import config
from hemicycle.errors import HemicycleError, LegislatorNotFoundError, SourceFetchError
from hemicycle.lib.legifrance_client import LegifranceClient
from hemicycle.lib.source_freshness import SOURCES, ChangeDetector
from hemicycle.lib.stats_calculator import StatsCalculator
from hemicycle.lib.storage import Store
from hemicycle.models import CHAMBERS
from hemicycle.orchestrator import CATEGORIES, DEFAULT_LIMITS, Orchestrator, RunOptions, SyncReport
from hemicycle.scheduler import Scheduler

logger = logging.getLogger(__name__)

# sync flag -> source key
SYNC_FLAGS = [
    ("deputes", "assemblee_nationale:deputes", "Députés and groups"),
    ("senateurs", "senat:senateurs", "Senators and groups"),
    ("scrutins", "assemblee_nationale:scrutins", "Assemblée ballots"),
    ("scrutins_senat", "senat:scrutins", "Senate ballots"),
    ("amendements", "assemblee_nationale:amendements", "Assemblée amendments"),
    ("amendements_senat", "senat:amendements", "Senate amendments (AMELI)"),
    ("interventions", "dila:interventions", "Assemblée floor speeches (DILA)"),
    ("interventions_senat", "senat:interventions", "Senate floor speeches"),
    ("lobbying", "hatvp:lobbyistes", "HATVP lobbying registry"),
]

SMART_FLAGS = [
    ("-s", "--scrutins", "scrutins"),
    ("-A", "--amendements", "amendements"),
    ("-I", "--interventions", "interventions"),
    ("-L", "--lobbying", "lobbying"),
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hemicycle",
        description="Sync French parliamentary open data and compute legislator statistics",
    )
    parser.add_argument("--db", default=None, help=f"DuckDB file (default: {config.DB_PATH})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Sync sources unconditionally")
    for dest, key, label in SYNC_FLAGS:
        sync.add_argument(f"--{dest.replace('_', '-')}", dest=dest, action="store_true", help=f"{label} ({key})")
    sync.add_argument("--limit", type=int, default=None, help="Maximum records per source")
    sync.add_argument("--full", action="store_true", help="Deactivate legislators missing from the roster")
    sync.add_argument("--no-actions", action="store_true", help="Skip lobbying actions")

    smart = sub.add_parser("smart-sync", help="Sync only the sources that changed upstream")
    smart.add_argument("--all", action="store_true", help="Every source category")
    smart.add_argument("--force", action="store_true", help="Ignore freshness checks")
    for short, long, category in SMART_FLAGS:
        smart.add_argument(short, long, dest=category, action="store_true", help=f"Include {category} sources")
    for category in CATEGORIES:
        smart.add_argument(
            f"--{category}-limit", dest=f"{category}_limit", type=int,
            default=DEFAULT_LIMITS[category], help=f"Record limit for {category} (default: %(default)s)",
        )
    smart.add_argument("--sources", default=None, help="Comma separated source keys, overrides category flags")

    stats = sub.add_parser("stats", help="Recompute legislator statistics")
    stats.add_argument("--chamber", choices=CHAMBERS, default=None)
    stats.add_argument("--invalidate", action="store_true", help="Clear computation timestamps only")
    stats.add_argument("--legislator", default=None, help="Recompute a single legislator by id")

    status = sub.add_parser("status", help="Freshness report of every source")
    status.add_argument("--no-probe", action="store_true", help="Stored state only, no HTTP probe")

    schedule = sub.add_parser("schedule", help="Run the job scheduler")
    schedule.add_argument("--dry-run", action="store_true", help="Print the schedule and exit")

    test = sub.add_parser("test", help="Check that every source is reachable")
    test.add_argument("--legifrance", action="store_true", help="Also obtain a Légifrance OAuth token")

    return parser


def print_report(report: SyncReport) -> None:
    print(f"\n{'=' * 60}")
    print(f"Sync {'completed' if report.ok else 'completed with failures'} in {report.duration_seconds:.1f}s")
    print(f"{'=' * 60}")
    for key, run in report.runs.items():
        marker = {"succeeded": "✓", "skipped": "-", "failed": "✗"}.get(run.state.value, "?")
        line = f"  {marker} {key}: {run.state.value}"
        if run.state.value == "skipped":
            line += f" ({run.reason})"
        else:
            line += f" created={run.created} updated={run.updated} skipped={run.skipped_records}"
        if run.error:
            line += f" error={run.error}"
        print(line)
    for stats_run in report.stats_runs:
        print(f"  stats: {stats_run['updated']}/{stats_run['total']} updated, {stats_run['errors']} errors")
    if report.stats_error:
        print(f"  ✗ stats: {report.stats_error}")
    print(f"\nChecked {len(report.checked)}, changed {len(report.changed)}, "
          f"skipped {len(report.skipped)}, failed {len(report.failed)}\n")


def cmd_sync(args: argparse.Namespace, store: Store) -> int:
    sources = [key for dest, key, _ in SYNC_FLAGS if getattr(args, dest)]
    options = RunOptions(
        sources=sources or None,
        force=True,
        limits={category: args.limit for category in CATEGORIES} if args.limit else {},
        full=args.full,
        include_actions=not args.no_actions,
    )
    report = Orchestrator(store).run(options)
    print_report(report)
    return 0 if report.ok else 1


def smart_sync_options(args: argparse.Namespace) -> RunOptions:
    limits = {category: getattr(args, f"{category}_limit") for category in CATEGORIES}
    if args.sources:
        keys = [key.strip() for key in args.sources.split(",") if key.strip()]
        return RunOptions(sources=keys, force=args.force, limits=limits)

    selected = [category for _, _, category in SMART_FLAGS if getattr(args, category)]
    if args.all or not selected:
        return RunOptions(force=args.force, limits=limits)
    return RunOptions.for_categories(selected, force=args.force, limits=limits)


def cmd_smart_sync(args: argparse.Namespace, store: Store) -> int:
    report = Orchestrator(store).run(smart_sync_options(args))
    print_report(report)
    return 0 if report.ok else 1


def cmd_stats(args: argparse.Namespace, store: Store) -> int:
    calculator = StatsCalculator(store)
    if args.invalidate:
        count = calculator.invalidate(args.chamber)
        print(f"✓ Invalidated stats of {count} legislators")
        return 0

    if args.legislator:
        try:
            stats = calculator.recompute_one(args.legislator)
        except LegislatorNotFoundError as e:
            print(f"✗ {e}")
            return 1
        print(json.dumps(stats.to_row(), indent=2, default=str))
        return 0

    result = calculator.recompute_all(args.chamber)
    print(f"✓ Stats: {result.updated}/{result.total} legislators updated, "
          f"{result.errors} errors in {result.duration_seconds:.1f}s")
    return 0


def cmd_status(args: argparse.Namespace, store: Store) -> int:
    detector = ChangeDetector(store)
    print(f"\n{'=' * 60}")
    print("Source freshness")
    print(f"{'=' * 60}")
    for entry in detector.status_report(probe=not args.no_probe):
        print(f"\n{entry['source']} - {entry['description']}")
        print(f"  Last sync: {entry['last_sync_at'] or 'never'}")
        print(f"  ETag: {entry['etag'] or '-'}  Last-Modified: {entry['last_modified'] or '-'}")
        if "has_changed" in entry:
            verdict = "changed" if entry["has_changed"] else "up to date"
            print(f"  Upstream: {verdict} ({entry['reason']})")
    print()
    return 0


def cmd_schedule(args: argparse.Namespace, store: Store) -> int:
    scheduler = Scheduler(Orchestrator(store))
    print(f"\nScheduled jobs ({scheduler.tz.key}):")
    for entry in scheduler.dry_run():
        state = "" if entry["enabled"] else " [disabled]"
        print(f"  - {entry['name']}{state}: {entry['description']}")
        print(f"    Cron: {entry['cron']}  Next run: {entry['next_run'] or '-'}")
    print()
    if args.dry_run:
        return 0

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
    return 0


def cmd_test(args: argparse.Namespace, store: Store) -> int:
    detector = ChangeDetector(store)
    failures = 0
    print("\nProbing sources...")
    for key in SOURCES:
        try:
            etag, last_modified = detector.probe(key)
        except SourceFetchError as e:
            failures += 1
            print(f"  ✗ {key}: {e}")
            continue
        print(f"  ✓ {key} (etag={etag or '-'}, last-modified={last_modified or '-'})")

    if args.legifrance:
        success, message = LegifranceClient().test_connection()
        print(f"  {'✓' if success else '✗'} legifrance: {message}")
        if not success:
            failures += 1
    print()
    return 1 if failures else 0


COMMANDS = {
    "sync": cmd_sync,
    "smart-sync": cmd_smart_sync,
    "stats": cmd_stats,
    "status": cmd_status,
    "schedule": cmd_schedule,
    "test": cmd_test,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    try:
        with Store(args.db) as store:
            return COMMANDS[args.command](args, store)
    except HemicycleError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
