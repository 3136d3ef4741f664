"""
app.py
Command line entry for the due-date audit and the monthly overview.
Run: gym-audit audit --gym-id <id> [--filter mismatch] [--csv out.csv]
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import asdict
from datetime import date
from pathlib import Path

import pandas as pd

import audit
import config
import db
import monthly
import utils
from errors import DueDateError
from logging_config import configure_logging

logger = logging.getLogger("gym_audit")


def _parse_month(value: str) -> date:
    # Accept "2024-03" as well as a full date inside the month
    v = value.strip()
    return utils.parse_iso(f"{v}-01" if len(v) == 7 else v, "month")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gym-audit")
    p.add_argument("--db", default="", help="Path to the SQLite snapshot (default: GYM_DB_FILE or gym.db)")
    p.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: LOG_LEVEL or INFO)")
    p.add_argument("--log-file", default=config.LOG_FILE or "", help="Also write logs to this file")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create the snapshot tables")

    aud = sub.add_parser("audit", help="Compare stored next due dates with the replayed ones")
    aud.add_argument("--gym-id", required=True)
    aud.add_argument("--filter", default="all", choices=audit.FILTERS, help="Show all, correct or mismatched rows")
    aud.add_argument("--search", default="", help="Filter by name or phone")
    aud.add_argument("--csv", default="", help="Write the filtered rows to this CSV file")

    mon = sub.add_parser("monthly", help="Monthly overview for one gym")
    mon.add_argument("--gym-id", required=True)
    mon.add_argument("--month", default="", help="YYYY-MM (default: current month)")
    mon.add_argument("--category", default="", choices=("",) + monthly.CATEGORIES, help="Only members in this category")

    rev = sub.add_parser("revenue", help="Revenue summary by month")
    rev.add_argument("--gym-id", required=True)
    return p


def _print_audit(args: argparse.Namespace, db_file: Path) -> None:
    rows = audit.run_audit(args.gym_id, db_file=db_file)
    shown = audit.filter_rows(rows, status=args.filter, query=args.search)
    correct, mismatch = audit.summarize(rows)

    print(f"Correct: {correct}  Mismatch: {mismatch}  Showing: {len(shown)}")
    df = audit.rows_to_dataframe(shown)
    if not df.empty:
        print(df.to_string(index=False))

    if args.csv:
        out = Path(args.csv)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(audit.rows_to_csv_bytes(shown))
        logger.info("Wrote %d rows to %s", len(shown), out)


def _print_monthly(args: argparse.Namespace, db_file: Path) -> None:
    month = _parse_month(args.month) if args.month else date.today()
    overview = monthly.fetch_monthly_overview(args.gym_id, month, db_file=db_file)
    rows = monthly.filter_by_category(overview, args.category) if args.category else overview.members

    print(f"{overview.gym_name} - {overview.month_label}".strip(" -"))
    for key, value in asdict(overview.stats).items():
        print(f"{key}: {value}")

    if rows:
        df = pd.DataFrame(
            [
                {
                    "Name": r.full_name,
                    "Status": r.status,
                    "Plan": r.plan_name,
                    "Stored Next Due": utils.iso_or_none(r.stored_next_due) or "",
                    "Expected Next Due": utils.iso_or_none(r.expected_next_due) or "",
                    "Note": r.due_date_note,
                    "Categories": ",".join(r.categories),
                }
                for r in rows
            ]
        )
        print(df.to_string(index=False))


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(level=args.log_level, file_path=args.log_file or None)

    db_file = Path(args.db) if args.db else config.DB_FILE

    try:
        if args.cmd == "init-db":
            db.init_db(db_file)
            logger.info("Initialized %s", db_file)
        elif args.cmd == "audit":
            _print_audit(args, db_file)
        elif args.cmd == "monthly":
            _print_monthly(args, db_file)
        elif args.cmd == "revenue":
            snapshot = db.load_snapshot(args.gym_id, db_file=db_file)
            print(monthly.revenue_by_month(snapshot.payments).to_string(index=False))
    except DueDateError as e:
        logger.error("%s failed: %s", args.cmd, e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
