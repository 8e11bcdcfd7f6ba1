"""Domain models for SEIS/EIS eligibility evaluation."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Scheme(str, Enum):
    """Tax-advantaged scheme targeted by a funding round."""

    SEIS = "SEIS"
    EIS = "EIS"
    BOTH = "BOTH"

    def components(self) -> tuple[Scheme, ...]:
        """Return the single schemes a round must independently satisfy."""
        if self is Scheme.BOTH:
            return (Scheme.SEIS, Scheme.EIS)
        return (self,)


class Verdict(str, Enum):
    ELIGIBLE = "ELIGIBLE"
    INELIGIBLE = "INELIGIBLE"
    CONDITIONAL = "CONDITIONAL"


class Severity(str, Enum):
    """How a failed check affects the verdict."""

    HARD = "hard"
    CAVEAT = "caveat"


class CompanySnapshot(BaseModel):
    """Read-only view of a company supplied by the company-record collaborator."""

    model_config = ConfigDict(frozen=True)

    incorporation_date: date
    gross_assets: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    employees: int | None = Field(default=None, ge=0)
    trading_activity: bool = True
    company_status: str = Field(default="active", description="Companies House company_status.")
    company_type: str | None = Field(default=None, description="Companies House company_type.")
    sic_codes: tuple[str, ...] = ()
    previous_seis_rounds: int = Field(default=0, ge=0)
    previous_eis_rounds: int = Field(default=0, ge=0)
    is_parent_company: bool = False
    has_subsidiaries: bool = False

    @field_validator("company_status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("company_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("sic_codes", mode="before")
    @classmethod
    def _strip_sic_codes(cls, value: object) -> object:
        if isinstance(value, (list, tuple)):
            return tuple(str(code).strip() for code in value if str(code).strip())
        return value


class FundingRoundSnapshot(BaseModel):
    """Read-only view of the funding round under evaluation."""

    model_config = ConfigDict(frozen=True)

    scheme: Scheme
    amount_to_raise: float = Field(allow_inf_nan=False)
    use_of_funds: str | None = None
    first_time_applicant: bool = True


class CheckOutcome(BaseModel):
    """A single check recorded in the audit trail of an evaluation."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    scheme: Scheme | None = None
    severity: Severity = Severity.HARD
    value: float | str | None = None
    threshold: float | str | None = None
    notes: str | None = None


class EligibilityResult(BaseModel):
    """Immutable verdict of one evaluation; re-evaluation creates a new result."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    reasons: tuple[str, ...] = ()
    checks: tuple[CheckOutcome, ...] = ()
    scheme: Scheme
    evaluated_at: datetime


class EligibilityCheck(BaseModel):
    """Persisted audit entry tying an EligibilityResult to a company and round."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    company_id: UUID
    round_id: UUID
    performed_by: str | None = None
    result: EligibilityResult
