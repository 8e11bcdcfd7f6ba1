"""Periodic reminder sweep: expire authorisations, collect reminders, fan out."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID, uuid4

from seis_compliance.config import settings
from seis_compliance.models.compliance import (
    Authorisation,
    ComplianceRecord,
    ComplianceState,
    ReminderItem,
    ReminderLogEntry,
    ReminderType,
    SweepReport,
    ensure_utc,
    overdue_days,
)
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.compliance.repositories import (
    AuthorisationRepository,
    CompanyDirectory,
    ComplianceRepository,
    get_authorisation_repository,
    get_company_directory,
    get_compliance_repository,
)
from seis_compliance.services.errors import ComplianceCoreError, SweepInProgressError
from seis_compliance.services.reminders.lease import SweepLease, build_sweep_lease
from seis_compliance.services.reminders.log import ReminderLogRepository, get_reminder_log
from seis_compliance.services.reminders.notifier import (
    Notifier,
    build_notifier,
    render_subject,
    render_text,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderSweep:
    """Runs one sweep at a time; the scheduled and manual triggers share it."""

    def __init__(
        self,
        compliance_repository: ComplianceRepository | None = None,
        authorisation_repository: AuthorisationRepository | None = None,
        directory: CompanyDirectory | None = None,
        notifier: Notifier | None = None,
        lease: SweepLease | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        lease_ttl: timedelta | None = None,
        expiring_window: timedelta | None = None,
        reminder_log: ReminderLogRepository | None = None,
    ) -> None:
        self._compliance = compliance_repository or get_compliance_repository()
        self._authorisations = authorisation_repository or get_authorisation_repository()
        self._directory = directory or get_company_directory()
        self._notifier = notifier or build_notifier()
        self._lease = lease or build_sweep_lease()
        self._reminder_log = reminder_log or get_reminder_log()
        self._clock = clock
        self._lease_ttl = lease_ttl or timedelta(seconds=settings.sweep_lease_ttl_seconds)
        self._expiring_window = (
            expiring_window
            if expiring_window is not None
            else timedelta(days=settings.reminder_expiring_window_days)
        )

    def run(self, now: datetime | None = None, *, notifier: Notifier | None = None) -> SweepReport:
        """Execute a full sweep and return its report.

        ``now`` overrides the evaluation instant (the lease always uses the
        wall clock). Raises SweepInProgressError when another sweep holds the
        lease.
        """
        holder = uuid4().hex
        if not self._lease.acquire(holder, self._clock(), self._lease_ttl):
            metrics.increment("reminders.sweep.rejected", tags={"reason": "in_progress"})
            logger.warning("reminders.sweep.in_progress")
            raise SweepInProgressError("A reminder sweep is already in progress.")
        try:
            return self._run(ensure_utc(now or self._clock()), notifier or self._notifier)
        finally:
            self._lease.release(holder)

    def _run(self, now: datetime, notifier: Notifier) -> SweepReport:
        start = time.perf_counter()
        logger.info("reminders.sweep.started", extra={"now": now.isoformat()})

        expired = self._authorisations.expire_due(now)
        if expired:
            logger.info("reminders.authorisations.expired", extra={"count": len(expired)})
        metrics.increment("reminders.authorisations.expired", len(expired))

        # Flips are already committed, so every collection step below must
        # degrade per record rather than abort the sweep.
        items: list[ReminderItem] = []
        unresolved = 0
        for authorisation in expired:
            item, resolved = self._authorisation_item(
                authorisation, ReminderType.AUTHORISATION_EXPIRED, now
            )
            items.append(item)
            unresolved += not resolved
        for authorisation in self._list_expiring(now):
            item, resolved = self._authorisation_item(
                authorisation, ReminderType.AUTHORISATION_EXPIRING, now
            )
            items.append(item)
            unresolved += not resolved
        compliance_items, malformed = self._collect_compliance(now)
        items.extend(item for item, _ in compliance_items)
        unresolved += sum(1 for _, resolved in compliance_items if not resolved)
        malformed += unresolved

        sent, failed = self._dispatch(items, notifier, now)
        report = SweepReport(
            expired_authorisations_marked=len(expired),
            reminders_sent=sent,
            reminders_failed=failed,
            malformed_records=malformed,
            items=items,
        )
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.timing("reminders.sweep.duration_ms", duration_ms)
        metrics.gauge("reminders.sweep.items", len(items))
        logger.info(
            "reminders.sweep.completed",
            extra={
                "expired_authorisations_marked": report.expired_authorisations_marked,
                "reminders_sent": sent,
                "reminders_failed": failed,
                "malformed_records": malformed,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return report

    def _list_expiring(self, now: datetime) -> list[Authorisation]:
        if self._expiring_window <= timedelta(0):
            return []
        try:
            return self._authorisations.list_expiring(now, now + self._expiring_window)
        except ComplianceCoreError as exc:
            logger.error("reminders.authorisations.unavailable", extra={"code": exc.code})
            metrics.increment("reminders.sweep.source_failed", tags={"source": "authorisations"})
            return []

    def _collect_compliance(
        self, now: datetime
    ) -> tuple[list[tuple[ReminderItem, bool]], int]:
        try:
            records = self._compliance.list_open()
        except ComplianceCoreError as exc:
            logger.error("reminders.compliance.unavailable", extra={"code": exc.code})
            metrics.increment("reminders.sweep.source_failed", tags={"source": "compliance"})
            return [], 0
        items: list[tuple[ReminderItem, bool]] = []
        malformed = 0
        for record in records:
            problems = record.invariant_violations()
            if problems:
                malformed += 1
                logger.warning(
                    "reminders.compliance.malformed",
                    extra={
                        "company_id": str(record.company_id),
                        "round_id": str(record.round_id),
                        "problems": problems,
                    },
                )
                continue
            if not self._is_due(record, now):
                continue
            due = ensure_utc(record.next_reminder_due)
            items.append(
                self._item(
                    record.company_id,
                    ReminderType.COMPLIANCE_SUBMISSION_DUE,
                    due,
                    overdue=overdue_days(due, now),
                    related_id=record.round_id,
                )
            )
        if malformed:
            metrics.increment("reminders.compliance.malformed", malformed)
        return items, malformed

    @staticmethod
    def _is_due(record: ComplianceRecord, now: datetime) -> bool:
        return (
            record.state is ComplianceState.AWAITING_SUBMISSION
            and record.next_reminder_due is not None
            and ensure_utc(record.next_reminder_due) <= now
        )

    def _authorisation_item(
        self, authorisation: Authorisation, reminder_type: ReminderType, now: datetime
    ) -> tuple[ReminderItem, bool]:
        due = ensure_utc(authorisation.expires_at)
        return self._item(
            authorisation.company_id,
            reminder_type,
            due,
            overdue=overdue_days(due, now),
            related_id=authorisation.id,
        )

    def _item(
        self,
        company_id: UUID,
        reminder_type: ReminderType,
        due: datetime,
        *,
        overdue: int,
        related_id: UUID,
    ) -> tuple[ReminderItem, bool]:
        """Build a reminder; the flag is False when the company lookup failed."""
        resolved = True
        try:
            contact = self._directory.lookup(company_id)
        except ComplianceCoreError as exc:
            resolved = False
            contact = None
            logger.warning(
                "reminders.company.lookup_failed",
                extra={
                    "company_id": str(company_id),
                    "reminder_type": reminder_type.value,
                    "code": exc.code,
                },
            )
        else:
            if contact is None:
                logger.warning(
                    "reminders.company.missing",
                    extra={"company_id": str(company_id), "reminder_type": reminder_type.value},
                )
        item = ReminderItem(
            company_id=company_id,
            company_name=contact.name if contact else str(company_id),
            contact_email=contact.contact_email if contact else None,
            reminder_type=reminder_type,
            due_date=due,
            overdue_days=overdue,
            related_id=related_id,
        )
        return item, resolved

    def _dispatch(
        self, items: list[ReminderItem], notifier: Notifier, now: datetime
    ) -> tuple[int, int]:
        sent = failed = 0
        for item in items:
            try:
                delivered = notifier.send(item)
            except Exception:  # noqa: BLE001 - one failed reminder must not stop the fan-out
                logger.exception(
                    "reminders.notification.error",
                    extra={
                        "company_id": str(item.company_id),
                        "reminder_type": item.reminder_type.value,
                    },
                )
                delivered = False
            if delivered:
                sent += 1
                self._record(item, now)
            else:
                failed += 1
        metrics.increment("reminders.sweep.sent", sent)
        metrics.increment("reminders.sweep.failed", failed)
        return sent, failed

    def _record(self, item: ReminderItem, now: datetime) -> None:
        entry = ReminderLogEntry(
            company_id=item.company_id,
            reminder_type=item.reminder_type,
            recipient=item.contact_email,
            subject=render_subject(item),
            message=render_text(item),
            related_id=item.related_id,
            sent_at=now,
        )
        try:
            self._reminder_log.add(entry)
        except ComplianceCoreError as exc:
            logger.error(
                "reminders.log.failed",
                extra={
                    "company_id": str(item.company_id),
                    "reminder_type": item.reminder_type.value,
                    "code": exc.code,
                },
            )
            metrics.increment("reminders.log.failed")


_SWEEP: ReminderSweep | None = None


def get_reminder_sweep() -> ReminderSweep:
    """Singleton accessor used by API routes."""
    global _SWEEP  # noqa: PLW0603
    if _SWEEP is None:
        _SWEEP = ReminderSweep()
    return _SWEEP
