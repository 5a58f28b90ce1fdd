"""CLI entry point for ledgermatch.

Commands:
    ledgermatch ledgers                       List ledgers and record counts
    ledgermatch detect LEDGER FILE [--apply]  Check parsed rows for duplicates
    ledgermatch suggest LEDGER [--apply]      Suggest categories for a ledger
    ledgermatch sync SOURCE TARGET [--apply]  Copy new rows into an aggregated ledger

FILE is a JSON array of already-parsed rows, e.g.
    [{"date": "2025-03-24", "description": "LÖN", "amount": 33917}]
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on LEDGERMATCH_LOG_LEVEL env var."""
    level = os.environ.get("LEDGERMATCH_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load config, or None to use built-in defaults."""
    from ledgermatch.config import Config

    config_dir = os.environ.get("LEDGERMATCH_CONFIG_DIR", "config")
    try:
        return Config(config_dir=config_dir)
    except FileNotFoundError as e:
        logger.warning("%s; using built-in matching defaults", e)
        return None


def _get_repo(config=None):
    """Create a Repository connected to the configured database."""
    from ledgermatch.database.models import PLACEHOLDER_CATEGORIES
    from ledgermatch.database.repository import Repository

    db_path = os.environ.get("LEDGERMATCH_DB_PATH", "ledger.db")
    placeholders = config.placeholder_categories if config else PLACEHOLDER_CATEGORIES
    repo = Repository(db_path=db_path, placeholder_categories=placeholders)
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_migrations_dir() -> Path:
    """Get the migrations directory path."""
    from ledgermatch.database.repository import DEFAULT_MIGRATIONS_DIR

    return Path(os.environ.get("LEDGERMATCH_MIGRATIONS_DIR", DEFAULT_MIGRATIONS_DIR))


def _load_rows(path: Path):
    """Read a JSON array of parsed rows into Records."""
    from ledgermatch.database.models import Record

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array of rows")
    return [Record.from_mapping(row) for row in data]


def _fmt_record(record) -> str:
    amount = f"{record.amount:.2f}" if record.amount is not None else "?"
    return f"{record.date or '????-??-??'}  {amount:>12}  {record.description}"


# ── Command handlers ─────────────────────────────────────


def cmd_ledgers(args: argparse.Namespace) -> int:
    """List ledgers with their record counts."""
    repo = _get_repo(_get_config())
    try:
        counts = repo.ledger_record_counts()
    finally:
        repo.close()

    if not counts:
        print("No ledgers.")
        return 0
    for name, count in counts.items():
        print(f"  {name:<30} {count:>6} records")
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    """Analyze parsed rows for duplicates, optionally inserting the accepted ones."""
    from ledgermatch.api import (
        commit_resolved,
        detect_conflicts_in_store,
        initialize_default_decisions,
        resolve_conflicts,
    )
    from ledgermatch.database.store import LedgerError

    path = args.file.resolve()
    if not path.exists():
        print(f"Error: File not found: {path}")
        return 1
    try:
        candidates = _load_rows(path)
    except (ValueError, json.JSONDecodeError) as e:
        print(f"Error: {e}")
        return 1

    config = _get_config()
    thresholds = config.conflict_thresholds if config else None
    auto_skip = config.auto_skip_exact if config else True
    if args.review_exact:
        auto_skip = False

    repo = _get_repo(config)
    try:
        analysis = detect_conflicts_in_store(
            repo, args.ledger, candidates,
            thresholds=thresholds, auto_skip_exact=auto_skip,
        )
        counts = analysis.counts()
        print(f"Ledger {args.ledger}: {counts['existing']} existing records")
        print(f"  Safe to add:  {counts['safe_to_add']}")
        print(f"  Conflicts:    {counts['conflicts']}")
        print(f"  Auto-skipped: {counts['auto_skipped']}")
        if counts["dropped"]:
            print(f"  Dropped:      {counts['dropped']} (no date or description)")

        for match in analysis.conflicts:
            print(
                f"\n[{match.position}] level {int(match.match_level)} "
                f"({match.match_score}%) default={match.default_action}: "
                f"{match.match_reason}"
            )
            print(f"    new:      {_fmt_record(match.new_record)}")
            for dup in match.possible_duplicates:
                print(f"    existing: {_fmt_record(dup)}")

        decisions = initialize_default_decisions(analysis.conflicts)
        for pos in args.add or []:
            decisions[pos] = "add"
        for pos in args.skip or []:
            decisions[pos] = "skip"

        to_insert = resolve_conflicts(analysis, decisions)
        if not args.apply:
            print(f"\n{len(to_insert)} record(s) would be added. Re-run with --apply to insert.")
            return 0

        ids = commit_resolved(repo, analysis, decisions)
        print(f"\nInserted {len(ids)} record(s) into {args.ledger}.")
        return 0
    except LedgerError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()


def cmd_suggest(args: argparse.Namespace) -> int:
    """Suggest categories for a ledger's uncategorized records."""
    from ledgermatch.api import (
        apply_category_decisions,
        initialize_decisions,
        suggest_categories,
    )
    from ledgermatch.categorize.history import DEFAULT_CONCURRENCY
    from ledgermatch.database.models import PLACEHOLDER_CATEGORIES
    from ledgermatch.database.store import LedgerError

    config = _get_config()
    weights = config.category_weights if config else None
    placeholders = config.placeholder_categories if config else PLACEHOLDER_CATEGORIES
    concurrency = config.fetch_concurrency if config else DEFAULT_CONCURRENCY

    repo = _get_repo(config)
    try:
        pending = repo.get_uncategorized_records(args.ledger, limit=args.limit)
        if not pending:
            print(f"No uncategorized records in {args.ledger}.")
            return 0

        analysis = suggest_categories(
            repo, args.ledger, pending,
            weights=weights, placeholders=placeholders, concurrency=concurrency,
        )
        for match in analysis.matches:
            print(
                f"  #{match.new_record.id!s:<6} {match.confidence:>3}% {match.match_reason:<8}"
                f" {match.suggested_category:<20} {match.new_record.description}"
            )
        stats = analysis.stats
        print(
            f"\n{stats.high_confidence} high, {stats.medium_confidence} medium,"
            f" {stats.low_confidence} low, {stats.no_match} without a match"
        )

        accept_cutoff = weights.accept_cutoff if weights else 85
        decisions = initialize_decisions(analysis.matches, placeholders, accept_cutoff)
        accepted = sum(1 for d in decisions.values() if d.action != "skip")
        if not args.apply:
            print(f"{accepted} suggestion(s) would be applied. Re-run with --apply to write.")
            return 0

        result = apply_category_decisions(repo, args.ledger, decisions)
        if not result.success:
            print(
                f"Error: stopped after {result.updated_count} update(s);"
                f" record {result.failed_record_id} failed: {result.error}"
            )
            return 1
        print(f"Updated {result.updated_count} record(s) in {args.ledger}.")
        return 0
    except LedgerError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()


def cmd_sync(args: argparse.Namespace) -> int:
    """Preview or copy new records from a bank ledger into an aggregated ledger."""
    from ledgermatch.database.aggregate import execute_sync, preview_sync
    from ledgermatch.database.store import LedgerError

    repo = _get_repo(_get_config())
    try:
        preview = preview_sync(repo, args.source, args.target)
        print(
            f"{preview.total_new} new record(s) in {args.source} not in {args.target}"
            f" (total {preview.total_amount:.2f},"
            f" {preview.date_from or '-'} to {preview.date_to or '-'})"
        )
        if not args.apply or not preview.total_new:
            return 0
        ids = execute_sync(repo, preview)
        print(f"Inserted {len(ids)} record(s) into {args.target}.")
        return 0
    except LedgerError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "ledgers": cmd_ledgers,
    "detect": cmd_detect,
    "suggest": cmd_suggest,
    "sync": cmd_sync,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="ledgermatch",
        description="Ledger reconciliation and category suggestions",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ledgers
    subparsers.add_parser("ledgers", help="List ledgers and record counts")

    # detect
    detect_p = subparsers.add_parser("detect", help="Check parsed rows for duplicates")
    detect_p.add_argument("ledger", help="Target ledger name")
    detect_p.add_argument("file", type=Path, help="JSON array of parsed rows")
    detect_p.add_argument("--add", type=int, nargs="+", metavar="POS",
                          help="Force-add candidates at these batch positions")
    detect_p.add_argument("--skip", type=int, nargs="+", metavar="POS",
                          help="Skip candidates at these batch positions")
    detect_p.add_argument("--review-exact", action="store_true",
                          help="Report exact duplicates as conflicts instead of auto-skipping")
    detect_p.add_argument("--apply", action="store_true", help="Insert the resolved rows")

    # suggest
    suggest_p = subparsers.add_parser("suggest", help="Suggest categories for a ledger")
    suggest_p.add_argument("ledger", help="Ledger name")
    suggest_p.add_argument("--limit", type=int, help="Max records to analyze")
    suggest_p.add_argument("--apply", action="store_true",
                           help="Write the default (high confidence) suggestions")

    # sync
    sync_p = subparsers.add_parser("sync", help="Copy new rows into an aggregated ledger")
    sync_p.add_argument("source", help="Source (bank) ledger")
    sync_p.add_argument("target", help="Target (aggregated) ledger")
    sync_p.add_argument("--apply", action="store_true", help="Insert the new rows")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
