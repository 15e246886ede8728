#!/usr/bin/env python3
"""
Run daily salary accrual, live or as a backfill.

Re-running any date is safe: each employee/date pair is credited at most
once.  Dates after today are refused.

Usage:
    python3 scripts/run_accrual.py [--date YYYY-MM-DD | --from YYYY-MM-DD --to YYYY-MM-DD | --month YYYY-MM]

Examples:
    # Today's accrual (the cron job)
    python3 scripts/run_accrual.py

    # A missed day
    python3 scripts/run_accrual.py --date 2024-03-14

    # A missed range, inclusive
    python3 scripts/run_accrual.py --from 2024-03-01 --to 2024-03-15

    # Everything in a month up to today
    python3 scripts/run_accrual.py --month 2024-03
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import date
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("DATABASE_URL", "sqlite:///ledger.db")


def _parse_month(value: str) -> tuple[int, int]:
    try:
        year, month = value.split("-")
        parsed = int(year), int(month)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}") from exc
    if not 1 <= parsed[1] <= 12:
        raise argparse.ArgumentTypeError(f"month out of range in {value!r}")
    return parsed


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Credit daily salary accruals for a date, a range or a month.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Single date to accrue (default: today).",
    )
    target.add_argument(
        "--from",
        dest="start",
        type=date.fromisoformat,
        default=None,
        help="First date of a backfill range (requires --to).",
    )
    target.add_argument(
        "--month",
        type=_parse_month,
        default=None,
        help="Backfill a calendar month, YYYY-MM, up to today.",
    )
    parser.add_argument(
        "--to",
        dest="end",
        type=date.fromisoformat,
        default=None,
        help="Last date of a backfill range, inclusive.",
    )
    parser.add_argument(
        "--database-url",
        default=DB_URL,
        help=f"Database URL (default: DATABASE_URL env or {DB_URL!r}).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Ledger config YAML (default: LEDGER_CONFIG_PATH env or packaged default).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG instead of INFO.",
    )
    args = parser.parse_args(argv)
    if (args.start is None) != (args.end is None):
        parser.error("--from and --to must be given together")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from ledger_config import get_active_config
    from ledger_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from ledger_kernel.db.immutability import register_immutability_listeners
    from ledger_kernel.exceptions import LedgerKernelError
    from ledger_kernel.logging_config import configure_logging
    from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(args.database_url)
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1
    if args.create_tables:
        create_tables()
    register_immutability_listeners()

    session = get_session()
    try:
        ledger = LedgerOrchestrator(session, config)
        if args.month is not None:
            year, month = args.month
            results = ledger.backfill_month(year, month)
        elif args.start is not None:
            results = ledger.backfill_range(args.start, args.end)
        else:
            results = [ledger.run_daily_accrual(args.date)]
    except LedgerKernelError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()

    for result in results:
        skipped = len(result.skipped)
        print(
            f"{result.run_date.isoformat()}: credited {result.processed_count} "
            f"({result.credited_total} {config.currency}), skipped {skipped}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
