from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from seis_compliance.models.eligibility import (
    CompanySnapshot,
    FundingRoundSnapshot,
    Scheme,
    Severity,
    Verdict,
)
from seis_compliance.services.eligibility.engine import company_age_years, evaluate
from seis_compliance.services.errors import EligibilityInputError

AS_OF = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _company(days_old: int = 400, **overrides) -> CompanySnapshot:
    payload = {
        "incorporation_date": AS_OF.date() - timedelta(days=days_old),
        "trading_activity": True,
        "previous_seis_rounds": 0,
    }
    payload.update(overrides)
    return CompanySnapshot(**payload)


def _round(scheme: Scheme = Scheme.SEIS, amount: float = 150_000, **overrides) -> FundingRoundSnapshot:
    payload = {"scheme": scheme, "amount_to_raise": amount, "use_of_funds": "working capital"}
    payload.update(overrides)
    return FundingRoundSnapshot(**payload)


def test_young_active_company_is_eligible_for_seis():
    result = evaluate(_company(), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.ELIGIBLE
    assert result.reasons == ()
    assert result.scheme is Scheme.SEIS
    assert result.evaluated_at == AS_OF
    assert {check.name for check in result.checks} >= {
        "company_age",
        "operating_status",
        "prior_rounds",
        "use_of_funds",
        "raise_amount",
        "investment_limit",
    }


def test_three_year_old_company_is_ineligible_for_seis():
    result = evaluate(_company(days_old=3 * 365), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert any("years old" in reason for reason in result.reasons)


@pytest.mark.parametrize("days_old", [731, 800, 1500, 4000])
def test_seis_age_limit_never_eligible(days_old: int):
    result = evaluate(_company(days_old=days_old), _round(), as_of=AS_OF)

    assert result.verdict is not Verdict.ELIGIBLE
    assert any("years old" in reason for reason in result.reasons)


def test_age_uses_fractional_years():
    company = _company(days_old=730)

    assert company_age_years(company, AS_OF) == pytest.approx(730 / 365.25)
    assert evaluate(company, _round(), as_of=AS_OF).verdict is Verdict.ELIGIBLE


@pytest.mark.parametrize("amount", [0, -1, -150_000])
def test_non_positive_raise_is_always_ineligible(amount: float):
    result = evaluate(_company(), _round(amount=amount), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "amount to raise must be greater than zero" in result.reasons


def test_non_positive_raise_beats_caveats():
    company = _company(is_parent_company=True)

    result = evaluate(company, _round(amount=0), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE


def test_missing_use_of_funds_fails():
    result = evaluate(_company(), _round(use_of_funds="   "), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "use of funds must be described" in result.reasons


def test_inactive_company_fails():
    result = evaluate(_company(company_status="Dissolved"), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "company is not active" in result.reasons


def test_not_trading_company_fails():
    result = evaluate(_company(trading_activity=False), _round(), as_of=AS_OF)

    assert "company is not active" in result.reasons


def test_second_prior_seis_round_fails_but_first_is_allowed():
    assert evaluate(_company(previous_seis_rounds=1), _round(), as_of=AS_OF).verdict is (
        Verdict.ELIGIBLE
    )

    result = evaluate(_company(previous_seis_rounds=2), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert any(reason.startswith("SEIS: company has 2 prior SEIS rounds") for reason in result.reasons)


def test_prior_seis_rounds_ignored_for_eis():
    result = evaluate(
        _company(previous_seis_rounds=3), _round(scheme=Scheme.EIS, amount=500_000), as_of=AS_OF
    )

    assert result.verdict is Verdict.ELIGIBLE


def test_group_structure_is_a_caveat():
    result = evaluate(_company(has_subsidiaries=True), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.CONDITIONAL
    assert len(result.reasons) == 1
    assert "group structure" in result.reasons[0]
    caveat = next(check for check in result.checks if check.name == "group_structure")
    assert caveat.severity is Severity.CAVEAT


def test_ineligible_lists_failures_before_caveats():
    result = evaluate(_company(days_old=1000, is_parent_company=True), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "years old" in result.reasons[0]
    assert "group structure" in result.reasons[-1]


def test_ineligible_company_type_fails_and_skips_group_caveat():
    result = evaluate(_company(company_type="PLC", has_subsidiaries=True), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "company type 'plc' is not eligible" in result.reasons
    assert all("group structure" not in reason for reason in result.reasons)


def test_private_limited_company_type_passes():
    result = evaluate(_company(company_type="ltd"), _round(), as_of=AS_OF)

    assert result.verdict is Verdict.ELIGIBLE


def test_both_schemes_name_the_failing_scheme():
    # 3 years old: too old for SEIS, fine for EIS.
    result = evaluate(_company(days_old=3 * 365), _round(scheme=Scheme.BOTH), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert result.scheme is Scheme.BOTH
    age_reasons = [reason for reason in result.reasons if "years old" in reason]
    assert len(age_reasons) == 1
    assert age_reasons[0].startswith("SEIS: ")
    age_checks = [check for check in result.checks if check.name == "company_age"]
    assert [(check.scheme, check.passed) for check in age_checks] == [
        (Scheme.SEIS, False),
        (Scheme.EIS, True),
    ]


def test_both_schemes_eligible_when_every_component_passes():
    result = evaluate(_company(), _round(scheme=Scheme.BOTH, amount=100_000), as_of=AS_OF)

    assert result.verdict is Verdict.ELIGIBLE


def test_eis_age_limit_is_seven_years():
    eis_round = _round(scheme=Scheme.EIS, amount=1_000_000)

    assert evaluate(_company(days_old=6 * 365), eis_round, as_of=AS_OF).verdict is Verdict.ELIGIBLE
    result = evaluate(_company(days_old=8 * 365), eis_round, as_of=AS_OF)
    assert result.verdict is Verdict.INELIGIBLE
    assert any(reason.startswith("EIS: company is") for reason in result.reasons)


def test_scheme_limits_apply_only_when_figures_are_known():
    company = _company(gross_assets=250_000, employees=30)

    result = evaluate(company, _round(amount=200_000), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "SEIS: gross assets exceed £200,000" in result.reasons
    assert "SEIS: company has 30 employees; maximum is 25" in result.reasons
    assert "SEIS: amount to raise exceeds the £150,000 limit" in result.reasons


def test_eis_gross_assets_after_investment():
    company = _company(gross_assets=14_000_000)

    result = evaluate(company, _round(scheme=Scheme.EIS, amount=2_500_000), as_of=AS_OF)

    assert result.verdict is Verdict.INELIGIBLE
    assert "EIS: gross assets after investment exceed £16,000,000" in result.reasons


def test_evaluation_is_deterministic():
    company, funding_round = _company(has_subsidiaries=True), _round(scheme=Scheme.BOTH)

    assert evaluate(company, funding_round, as_of=AS_OF) == evaluate(
        company, funding_round, as_of=AS_OF
    )


def test_naive_as_of_is_rejected():
    with pytest.raises(EligibilityInputError) as excinfo:
        evaluate(_company(), _round(), as_of=datetime(2024, 6, 1))

    assert excinfo.value.field == "as_of"
    assert excinfo.value.code == "422_INVALID_SNAPSHOT"


def test_incorporation_after_as_of_is_rejected():
    company = CompanySnapshot(incorporation_date=date(2024, 7, 1))

    with pytest.raises(EligibilityInputError) as excinfo:
        evaluate(company, _round(), as_of=AS_OF)

    assert excinfo.value.field == "incorporation_date"


@pytest.mark.parametrize(
    "payload",
    [
        {"incorporation_date": "2024-01-01", "gross_assets": -1},
        {"incorporation_date": "2024-01-01", "employees": -3},
        {"incorporation_date": "2024-01-01", "previous_seis_rounds": -1},
        {"incorporation_date": "not-a-date"},
    ],
)
def test_invalid_company_snapshot_is_rejected(payload: dict):
    with pytest.raises(ValidationError):
        CompanySnapshot(**payload)


def test_unknown_scheme_is_rejected():
    with pytest.raises(ValidationError):
        FundingRoundSnapshot(scheme="VCT", amount_to_raise=1000, use_of_funds="growth")
