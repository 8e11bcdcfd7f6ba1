"""Domain models for the post-issuance compliance clock and reminder sweep."""
# ruff: noqa: UP017

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

COMPLIANCE_WINDOW = timedelta(days=90)
SECONDS_PER_DAY = 86400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Pin naive timestamps to UTC and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compliance_due(issued_on: date) -> datetime:
    """Return the reminder due timestamp for shares issued on ``issued_on``."""
    start = datetime.combine(issued_on, time.min, tzinfo=timezone.utc)
    return start + COMPLIANCE_WINDOW


def overdue_days(due: datetime, now: datetime) -> int:
    """Whole days elapsed since ``due``; never negative."""
    elapsed = (ensure_utc(now) - ensure_utc(due)).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_DAY))


class ComplianceState(str, Enum):
    NO_ISSUE = "NO_ISSUE"
    AWAITING_SUBMISSION = "AWAITING_SUBMISSION"
    COMPLETE = "COMPLETE"


class TransitionOutcome(str, Enum):
    """Result signalled to callers of the compliance event handlers."""

    APPLIED = "applied"
    REDUNDANT = "redundant"
    INVALID_TRANSITION = "invalid_transition"


class ComplianceRecord(BaseModel):
    """Compliance clock for one funding round.

    The model is deliberately permissive so that rows written outside the
    manager can still be loaded; ``invariant_violations`` reports anything
    the manager itself would never produce.
    """

    model_config = ConfigDict(frozen=True)

    company_id: UUID
    round_id: UUID
    share_issue_date: date | None = None
    next_reminder_due: datetime | None = None
    submitted_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def state(self) -> ComplianceState:
        if self.submitted_at is not None:
            return ComplianceState.COMPLETE
        if self.share_issue_date is not None:
            return ComplianceState.AWAITING_SUBMISSION
        return ComplianceState.NO_ISSUE

    def is_overdue(self, now: datetime) -> bool:
        """Derived OVERDUE condition: awaiting submission past the due timestamp."""
        if self.state is not ComplianceState.AWAITING_SUBMISSION or self.next_reminder_due is None:
            return False
        return ensure_utc(now) > ensure_utc(self.next_reminder_due)

    def invariant_violations(self) -> list[str]:
        problems: list[str] = []
        if self.submitted_at is not None and self.next_reminder_due is not None:
            problems.append("next_reminder_due set after submission")
        if self.next_reminder_due is not None and self.share_issue_date is None:
            problems.append("next_reminder_due set without share_issue_date")
        if (
            self.next_reminder_due is not None
            and self.share_issue_date is not None
            and ensure_utc(self.next_reminder_due) != compliance_due(self.share_issue_date)
        ):
            problems.append("next_reminder_due does not match share_issue_date + 90 days")
        if self.state is ComplianceState.AWAITING_SUBMISSION and self.next_reminder_due is None:
            problems.append("awaiting submission without next_reminder_due")
        return problems


class TransitionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: ComplianceRecord
    outcome: TransitionOutcome
    detail: str | None = None


class Authorisation(BaseModel):
    """Time-bounded grant allowing the agent to act for a company."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    company_id: UUID
    expires_at: datetime
    is_valid: bool = True


class CompanyContact(BaseModel):
    """Company details the directory exposes for reminder addressing."""

    model_config = ConfigDict(frozen=True)

    company_id: UUID
    name: str
    contact_email: str | None = None


class ReminderType(str, Enum):
    COMPLIANCE_SUBMISSION_DUE = "compliance_reminder"
    AUTHORISATION_EXPIRED = "authorisation_expired"
    AUTHORISATION_EXPIRING = "authorisation_expiring"


class ReminderItem(BaseModel):
    """Derived, non-persisted reminder produced by a sweep."""

    model_config = ConfigDict(frozen=True)

    company_id: UUID
    company_name: str
    contact_email: str | None = None
    reminder_type: ReminderType
    due_date: datetime
    overdue_days: int = Field(default=0, ge=0)
    related_id: UUID | None = None


class SweepReport(BaseModel):
    """Report shared by the scheduled and manual sweep triggers."""

    expired_authorisations_marked: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    malformed_records: int = 0
    items: list[ReminderItem] = Field(default_factory=list)


class ReminderLogEntry(BaseModel):
    """Record of one delivered reminder, as addressed and rendered."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    reminder_type: ReminderType
    recipient: str | None = None
    subject: str
    message: str
    related_id: UUID | None = None
    sent_at: datetime = Field(default_factory=_utcnow)
