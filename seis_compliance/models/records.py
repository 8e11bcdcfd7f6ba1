"""SQLModel mappings for persisted compliance-core rows."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, Date, DateTime, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from seis_compliance.models.compliance import (
    Authorisation,
    CompanyContact,
    ComplianceRecord,
    ReminderLogEntry,
    ReminderType,
)
from seis_compliance.models.eligibility import (
    CheckOutcome,
    EligibilityCheck,
    EligibilityResult,
    Scheme,
    Verdict,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


class EligibilityCheckRecord(SQLModel, table=True):
    """Append-only audit row for one eligibility evaluation."""

    __tablename__ = "eligibility_checks"
    __table_args__ = (
        sa.Index("ix_eligibility_checks_round_id", "round_id"),
        sa.Index("ix_eligibility_checks_company_id", "company_id"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    round_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    scheme: str = Field(sa_column=Column(String(length=8), nullable=False))
    result: str = Field(sa_column=Column(String(length=16), nullable=False))
    reasons: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    checks_performed: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    performed_by: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    evaluated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_check(cls, check: EligibilityCheck) -> EligibilityCheckRecord:
        result = check.result
        return cls(
            id=check.id,
            company_id=check.company_id,
            round_id=check.round_id,
            scheme=result.scheme.value,
            result=result.verdict.value,
            reasons=list(result.reasons),
            checks_performed=[entry.model_dump(mode="json") for entry in result.checks],
            performed_by=check.performed_by,
            evaluated_at=result.evaluated_at,
        )

    def to_check(self) -> EligibilityCheck:
        result = EligibilityResult(
            verdict=Verdict(self.result),
            reasons=tuple(self.reasons),
            checks=tuple(CheckOutcome(**entry) for entry in self.checks_performed),
            scheme=Scheme(self.scheme),
            evaluated_at=self.evaluated_at,
        )
        return EligibilityCheck(
            id=self.id,
            company_id=self.company_id,
            round_id=self.round_id,
            performed_by=self.performed_by,
            result=result,
        )


class ComplianceTrackingRecord(SQLModel, table=True):
    """ORM row backing ComplianceRecord; one per (company, round)."""

    __tablename__ = "compliance_tracking"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "round_id", name="uq_compliance_company_round"),
        sa.Index("ix_compliance_next_reminder_due", "next_reminder_due"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    round_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    share_issue_date: date | None = Field(default=None, sa_column=Column(Date, nullable=True))
    next_reminder_due: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    seis1_eis1_submitted_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
            onupdate=UtcNow(),
        ),
    )

    def to_record(self) -> ComplianceRecord:
        return ComplianceRecord(
            company_id=self.company_id,
            round_id=self.round_id,
            share_issue_date=self.share_issue_date,
            next_reminder_due=self.next_reminder_due,
            submitted_at=self.seis1_eis1_submitted_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply(self, record: ComplianceRecord) -> None:
        """Copy the mutable compliance fields from a domain record."""
        self.share_issue_date = record.share_issue_date
        self.next_reminder_due = record.next_reminder_due
        self.seis1_eis1_submitted_at = record.submitted_at
        self.updated_at = record.updated_at


class AuthorisationRecord(SQLModel, table=True):
    """Persisted agent authorisation; validity is flipped only by the sweep."""

    __tablename__ = "authorisations"
    __table_args__ = (sa.Index("ix_authorisations_valid_expiry", "is_valid", "expires_at"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_valid: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, server_default=sa.true())
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_authorisation(cls, authorisation: Authorisation) -> AuthorisationRecord:
        return cls(
            id=authorisation.id,
            company_id=authorisation.company_id,
            expires_at=authorisation.expires_at,
            is_valid=authorisation.is_valid,
        )

    def to_authorisation(self) -> Authorisation:
        return Authorisation(
            id=self.id,
            company_id=self.company_id,
            expires_at=self.expires_at,
            is_valid=self.is_valid,
        )


class SweepLeaseRecord(SQLModel, table=True):
    """Lease row acting as a "sweep in progress" flag with an expiry."""

    __tablename__ = "sweep_leases"

    name: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    holder: str = Field(sa_column=Column(String(length=64), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ReminderLogRecord(SQLModel, table=True):
    """Append-only row written for each reminder a notifier accepted."""

    __tablename__ = "reminder_logs"
    __table_args__ = (sa.Index("ix_reminder_logs_company_sent", "company_id", "sent_at"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    reminder_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    recipient: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    subject: str = Field(sa_column=Column(String(length=255), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    related_id: UUID | None = Field(
        default=None, sa_column=Column(Uuid(as_uuid=True), nullable=True)
    )
    sent_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_entry(cls, entry: ReminderLogEntry) -> ReminderLogRecord:
        return cls(
            id=entry.id,
            company_id=entry.company_id,
            reminder_type=entry.reminder_type.value,
            recipient=entry.recipient,
            subject=entry.subject,
            message=entry.message,
            related_id=entry.related_id,
            sent_at=entry.sent_at,
        )

    def to_entry(self) -> ReminderLogEntry:
        return ReminderLogEntry(
            id=self.id,
            company_id=self.company_id,
            reminder_type=ReminderType(self.reminder_type),
            recipient=self.recipient,
            subject=self.subject,
            message=self.message,
            related_id=self.related_id,
            sent_at=self.sent_at,
        )


class CompanyRecord(SQLModel, table=True):
    """Read-only view of the company-record collaborator's table."""

    __tablename__ = "companies"

    id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False))
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    contact_email: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )

    def to_contact(self) -> CompanyContact:
        return CompanyContact(company_id=self.id, name=self.name, contact_email=self.contact_email)
