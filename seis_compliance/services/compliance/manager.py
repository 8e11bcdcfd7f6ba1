"""Lifecycle of the post-issuance SEIS1/EIS1 compliance clock."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable
from uuid import UUID

from seis_compliance.models.compliance import (
    ComplianceRecord,
    ComplianceState,
    TransitionOutcome,
    TransitionResult,
    compliance_due,
    ensure_utc,
)
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.compliance.repositories import (
    ComplianceRepository,
    get_compliance_repository,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _issue(record: ComplianceRecord, issued_on: date, now: datetime) -> TransitionResult:
    if record.state is not ComplianceState.NO_ISSUE:
        return TransitionResult(
            record=record,
            outcome=TransitionOutcome.REDUNDANT,
            detail="shares already issued; compliance clock left unchanged",
        )
    updated = record.model_copy(
        update={
            "share_issue_date": issued_on,
            "next_reminder_due": compliance_due(issued_on),
            "updated_at": now,
        }
    )
    return TransitionResult(record=updated, outcome=TransitionOutcome.APPLIED)


def _submit(record: ComplianceRecord, submitted_at: datetime, now: datetime) -> TransitionResult:
    state = record.state
    if state is ComplianceState.COMPLETE:
        return TransitionResult(
            record=record,
            outcome=TransitionOutcome.REDUNDANT,
            detail="submission already recorded",
        )
    if state is ComplianceState.NO_ISSUE:
        return TransitionResult(
            record=record,
            outcome=TransitionOutcome.INVALID_TRANSITION,
            detail="submission recorded before shares were issued",
        )
    updated = record.model_copy(
        update={
            "submitted_at": ensure_utc(submitted_at),
            "next_reminder_due": None,
            "updated_at": now,
        }
    )
    return TransitionResult(record=updated, outcome=TransitionOutcome.APPLIED)


class ComplianceRecordManager:
    """Applies the "shares issued" and "submission recorded" events.

    Each call is a single atomic read-modify-write on the repository, so
    concurrent events for the same (company, round) serialize instead of
    overwriting each other. Invalid transitions are reported through the
    returned outcome and never written.
    """

    def __init__(
        self,
        repository: ComplianceRepository | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository or get_compliance_repository()
        self._clock = clock

    def get(self, company_id: UUID, round_id: UUID) -> ComplianceRecord | None:
        return self._repository.get(company_id, round_id)

    def record_share_issue(
        self, company_id: UUID, round_id: UUID, issued_on: date
    ) -> TransitionResult:
        return self.apply_update(company_id, round_id, share_issue_date=issued_on)

    def record_submission(
        self, company_id: UUID, round_id: UUID, submitted_at: datetime | None = None
    ) -> TransitionResult:
        return self.apply_update(
            company_id, round_id, submitted_at=submitted_at or self._clock()
        )

    def apply_update(
        self,
        company_id: UUID,
        round_id: UUID,
        *,
        share_issue_date: date | None = None,
        submitted_at: datetime | None = None,
    ) -> TransitionResult:
        """Apply one or both events atomically.

        When both are supplied the issue is applied first and the submission
        immediately after, so the stored record goes straight to COMPLETE
        with no reminder due date left behind.
        """
        if share_issue_date is None and submitted_at is None:
            raise ValueError("share_issue_date or submitted_at is required")
        now = self._clock()

        def _mutate(
            current: ComplianceRecord | None,
        ) -> tuple[ComplianceRecord | None, TransitionResult]:
            existing = current or ComplianceRecord(
                company_id=company_id, round_id=round_id, created_at=now, updated_at=now
            )
            steps: list[TransitionResult] = []
            record = existing
            if share_issue_date is not None:
                steps.append(_issue(record, share_issue_date, now))
                record = steps[-1].record
            if submitted_at is not None:
                steps.append(_submit(record, submitted_at, now))
                record = steps[-1].record
            for step in steps:
                if step.outcome is TransitionOutcome.INVALID_TRANSITION:
                    return None, step.model_copy(update={"record": existing})
            if record == existing:
                detail = "; ".join(step.detail for step in steps if step.detail)
                return None, TransitionResult(
                    record=existing, outcome=TransitionOutcome.REDUNDANT, detail=detail or None
                )
            return record, TransitionResult(record=record, outcome=TransitionOutcome.APPLIED)

        result = self._repository.transition(company_id, round_id, _mutate)
        self._log_transition(result, share_issue_date=share_issue_date, submitted_at=submitted_at)
        return result

    def _log_transition(
        self,
        result: TransitionResult,
        *,
        share_issue_date: date | None,
        submitted_at: datetime | None,
    ) -> None:
        record = result.record
        event = (
            "both"
            if share_issue_date is not None and submitted_at is not None
            else ("shares_issued" if share_issue_date is not None else "submission_recorded")
        )
        extra = {
            "company_id": str(record.company_id),
            "round_id": str(record.round_id),
            "event": event,
            "state": record.state.value,
            "outcome": result.outcome.value,
        }
        metrics.increment(
            f"compliance.transition.{result.outcome.value}", tags={"event": event}
        )
        if result.outcome is TransitionOutcome.APPLIED:
            logger.info("compliance.transition.applied", extra=extra)
        elif result.outcome is TransitionOutcome.REDUNDANT:
            logger.info("compliance.transition.redundant", extra=extra)
        else:
            logger.warning("compliance.transition.invalid", extra=extra)


_MANAGER: ComplianceRecordManager | None = None


def get_compliance_manager() -> ComplianceRecordManager:
    """Singleton accessor used by API routes."""
    global _MANAGER  # noqa: PLW0603
    if _MANAGER is None:
        _MANAGER = ComplianceRecordManager()
    return _MANAGER
