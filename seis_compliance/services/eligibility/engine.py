"""SEIS/EIS eligibility rule engine.

Based on HMRC guidance for the Seed Enterprise Investment Scheme and the
Enterprise Investment Scheme. Evaluation is a pure function of the two
snapshots and an explicit ``as_of`` timestamp: it performs no I/O and never
reads the wall clock, so identical inputs always yield identical results.

Each check appends one ``CheckOutcome`` to the audit trail and, when it
fails, one human-readable reason. Hard failures make the verdict
INELIGIBLE; caveats only downgrade an otherwise clean verdict to
CONDITIONAL. Reasons that apply to a single scheme are prefixed with the
scheme name so that a combined SEIS+EIS evaluation stays unambiguous.
"""
# ruff: noqa: UP017

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Final

from seis_compliance.models.eligibility import (
    CheckOutcome,
    CompanySnapshot,
    EligibilityResult,
    FundingRoundSnapshot,
    Scheme,
    Severity,
    Verdict,
)
from seis_compliance.services.errors import EligibilityInputError

DAYS_PER_YEAR: Final = 365.25
SEIS_MAX_PRIOR_ROUNDS: Final = 1
ACTIVE_STATUS: Final = "active"
ELIGIBLE_COMPANY_TYPES: Final[frozenset[str]] = frozenset(
    {
        "ltd",
        "private-limited-guarant-nsc",
        "private-limited-guarant-nsc-limited-exemption",
    }
)


@dataclass(frozen=True)
class SchemeLimits:
    max_age_years: float
    max_gross_assets: float
    max_gross_assets_after: float | None
    max_employees: int
    max_investment: float


# Knowledge-intensive extensions (10 years / 500 employees / £10m) are not
# applied; the qualifying criterion is not confirmed.
SCHEME_LIMITS: Final[dict[Scheme, SchemeLimits]] = {
    Scheme.SEIS: SchemeLimits(
        max_age_years=2,
        max_gross_assets=200_000,
        max_gross_assets_after=None,
        max_employees=25,
        max_investment=150_000,
    ),
    Scheme.EIS: SchemeLimits(
        max_age_years=7,
        max_gross_assets=15_000_000,
        max_gross_assets_after=16_000_000,
        max_employees=250,
        max_investment=5_000_000,
    ),
}


@dataclass
class _Ledger:
    checks: list[CheckOutcome] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    caveats: list[str] = field(default_factory=list)

    def record(
        self,
        name: str,
        passed: bool,
        *,
        reason: str,
        scheme: Scheme | None = None,
        severity: Severity = Severity.HARD,
        value: float | str | None = None,
        threshold: float | str | None = None,
        notes: str | None = None,
    ) -> None:
        self.checks.append(
            CheckOutcome(
                name=name,
                passed=passed,
                scheme=scheme,
                severity=severity,
                value=value,
                threshold=threshold,
                notes=notes,
            )
        )
        if passed:
            return
        message = f"{scheme.value}: {reason}" if scheme else reason
        if severity is Severity.HARD:
            self.failures.append(message)
        else:
            self.caveats.append(message)

    def verdict(self) -> tuple[Verdict, tuple[str, ...]]:
        if self.failures:
            return Verdict.INELIGIBLE, tuple(self.failures + self.caveats)
        if self.caveats:
            return Verdict.CONDITIONAL, tuple(self.caveats)
        return Verdict.ELIGIBLE, ()


def company_age_years(company: CompanySnapshot, as_of: datetime) -> float:
    """Return the company's age in years at ``as_of`` (days / 365.25)."""
    as_of_date = _require_aware(as_of).astimezone(timezone.utc).date()
    age_days = (as_of_date - company.incorporation_date).days
    if age_days < 0:
        raise EligibilityInputError(
            "incorporation_date is after the evaluation date.", field="incorporation_date"
        )
    return age_days / DAYS_PER_YEAR


def evaluate(
    company: CompanySnapshot,
    funding_round: FundingRoundSnapshot,
    *,
    as_of: datetime,
) -> EligibilityResult:
    """Evaluate a company/round pair against the round's target scheme(s)."""
    as_of = _require_aware(as_of)
    age_years = company_age_years(company, as_of)
    schemes = funding_round.scheme.components()
    ledger = _Ledger()

    for scheme in schemes:
        _check_age(ledger, scheme, age_years)
    _check_operating_status(ledger, company)
    type_ok = _check_company_type(ledger, company)
    if type_ok:
        _check_group_structure(ledger, company)
    if Scheme.SEIS in schemes:
        _check_prior_seis_rounds(ledger, company)
    _check_use_of_funds(ledger, funding_round)
    _check_raise_amount(ledger, funding_round)
    for scheme in schemes:
        _check_scheme_limits(ledger, scheme, company, funding_round)

    verdict, reasons = ledger.verdict()
    return EligibilityResult(
        verdict=verdict,
        reasons=reasons,
        checks=tuple(ledger.checks),
        scheme=funding_round.scheme,
        evaluated_at=as_of,
    )


def _require_aware(as_of: datetime) -> datetime:
    if as_of.tzinfo is None or as_of.utcoffset() is None:
        raise EligibilityInputError("as_of must be timezone-aware.", field="as_of")
    return as_of


def _check_age(ledger: _Ledger, scheme: Scheme, age_years: float) -> None:
    limit = SCHEME_LIMITS[scheme].max_age_years
    ledger.record(
        "company_age",
        age_years < limit,
        scheme=scheme,
        value=round(age_years, 2),
        threshold=limit,
        reason=f"company is {age_years:.1f} years old; must be less than {limit:g} years",
        notes=f"Company must be less than {limit:g} years old",
    )


def _check_operating_status(ledger: _Ledger, company: CompanySnapshot) -> None:
    active = company.trading_activity and company.company_status == ACTIVE_STATUS
    ledger.record(
        "operating_status",
        active,
        value=company.company_status if company.trading_activity else "not trading",
        threshold=ACTIVE_STATUS,
        reason="company is not active",
    )


def _check_company_type(ledger: _Ledger, company: CompanySnapshot) -> bool:
    if company.company_type is None:
        return True
    eligible = company.company_type in ELIGIBLE_COMPANY_TYPES
    ledger.record(
        "company_type",
        eligible,
        value=company.company_type,
        reason=f"company type '{company.company_type}' is not eligible",
        notes="Must be an unquoted private limited company",
    )
    return eligible


def _check_group_structure(ledger: _Ledger, company: CompanySnapshot) -> None:
    in_group = company.is_parent_company or company.has_subsidiaries
    ledger.record(
        "group_structure",
        not in_group,
        severity=Severity.CAVEAT,
        reason=(
            "company is part of a group structure; qualifying subsidiary and "
            "independence rules need manual review"
        ),
        notes="Parent company or subsidiaries present" if in_group else "No group structure",
    )


def _check_prior_seis_rounds(ledger: _Ledger, company: CompanySnapshot) -> None:
    ledger.record(
        "prior_rounds",
        company.previous_seis_rounds <= SEIS_MAX_PRIOR_ROUNDS,
        scheme=Scheme.SEIS,
        value=company.previous_seis_rounds,
        threshold=SEIS_MAX_PRIOR_ROUNDS,
        reason=(
            f"company has {company.previous_seis_rounds} prior SEIS rounds; "
            f"at most {SEIS_MAX_PRIOR_ROUNDS} allowed"
        ),
    )


def _check_use_of_funds(ledger: _Ledger, funding_round: FundingRoundSnapshot) -> None:
    described = bool((funding_round.use_of_funds or "").strip())
    ledger.record(
        "use_of_funds",
        described,
        reason="use of funds must be described",
    )


def _check_raise_amount(ledger: _Ledger, funding_round: FundingRoundSnapshot) -> None:
    ledger.record(
        "raise_amount",
        funding_round.amount_to_raise > 0,
        value=funding_round.amount_to_raise,
        threshold=0,
        reason="amount to raise must be greater than zero",
    )


def _check_scheme_limits(
    ledger: _Ledger,
    scheme: Scheme,
    company: CompanySnapshot,
    funding_round: FundingRoundSnapshot,
) -> None:
    limits = SCHEME_LIMITS[scheme]
    if company.gross_assets is not None:
        ledger.record(
            "gross_assets",
            company.gross_assets <= limits.max_gross_assets,
            scheme=scheme,
            value=company.gross_assets,
            threshold=limits.max_gross_assets,
            reason=f"gross assets exceed £{limits.max_gross_assets:,.0f}",
        )
        if limits.max_gross_assets_after is not None:
            assets_after = company.gross_assets + funding_round.amount_to_raise
            ledger.record(
                "gross_assets_after",
                assets_after <= limits.max_gross_assets_after,
                scheme=scheme,
                value=assets_after,
                threshold=limits.max_gross_assets_after,
                reason=(
                    f"gross assets after investment exceed £{limits.max_gross_assets_after:,.0f}"
                ),
            )
    if company.employees is not None:
        ledger.record(
            "employee_count",
            company.employees <= limits.max_employees,
            scheme=scheme,
            value=company.employees,
            threshold=limits.max_employees,
            reason=f"company has {company.employees} employees; maximum is {limits.max_employees}",
        )
    ledger.record(
        "investment_limit",
        funding_round.amount_to_raise <= limits.max_investment,
        scheme=scheme,
        value=funding_round.amount_to_raise,
        threshold=limits.max_investment,
        reason=f"amount to raise exceeds the £{limits.max_investment:,.0f} limit",
    )
