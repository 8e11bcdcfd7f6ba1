"""Cron-friendly entrypoint for the SEIS/EIS reminder sweep."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime

from seis_compliance.models.compliance import SweepReport, ensure_utc
from seis_compliance.services.errors import ComplianceCoreError
from seis_compliance.services.reminders.notifier import LogOnlyNotifier
from seis_compliance.services.reminders.sweep import ReminderSweep, get_reminder_sweep

logger = logging.getLogger("pipelines.reminder_sweep")


def _parse_now(value: str) -> datetime:
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO8601 timestamp: {value!r}") from exc


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the SEIS/EIS reminder sweep (cron entrypoint).")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Override the current time (ISO8601, naive values are UTC) for testing or backfills.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log reminders instead of sending them. Authorisations are still expired.",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None, *, sweep: ReminderSweep | None = None) -> SweepReport:
    args = parse_args(argv)
    sweep = sweep or get_reminder_sweep()
    logger.info(
        "reminders.cli.start",
        extra={"now": args.now.isoformat() if args.now else None, "dry_run": args.dry_run},
    )
    notifier = LogOnlyNotifier() if args.dry_run else None
    report = sweep.run(args.now, notifier=notifier)
    logger.info(
        "reminders.cli.success",
        extra={
            "expired_authorisations_marked": report.expired_authorisations_marked,
            "reminders_sent": report.reminders_sent,
            "reminders_failed": report.reminders_failed,
            "malformed_records": report.malformed_records,
        },
    )
    return report


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        report = run()
    except ComplianceCoreError as exc:
        logger.error("reminders.cli.failed", extra={"code": exc.code, "error": str(exc)})
        raise SystemExit(1) from exc
    sys.stdout.write(report.model_dump_json(indent=2) + "\n")


if __name__ == "__main__":
    main()
