from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from seis_compliance.models.compliance import (
    ComplianceState,
    TransitionOutcome,
    compliance_due,
    overdue_days,
)
from seis_compliance.services.compliance import manager as manager_module
from seis_compliance.services.compliance.manager import ComplianceRecordManager
from seis_compliance.services.compliance.repositories import InMemoryComplianceRepository
from tests.helpers.metrics_stub import StubMetrics

NOW = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def metrics_stub(monkeypatch: pytest.MonkeyPatch) -> StubMetrics:
    stub = StubMetrics()
    monkeypatch.setattr(manager_module, "metrics", stub)
    return stub


@pytest.fixture
def repository() -> InMemoryComplianceRepository:
    return InMemoryComplianceRepository()


@pytest.fixture
def manager(repository: InMemoryComplianceRepository, metrics_stub: StubMetrics) -> ComplianceRecordManager:
    return ComplianceRecordManager(repository, clock=lambda: NOW)


def test_share_issue_sets_due_date_ninety_days_later(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()

    result = manager.record_share_issue(company_id, round_id, date(2024, 1, 1))

    assert result.outcome is TransitionOutcome.APPLIED
    record = manager.get(company_id, round_id)
    assert record is not None
    assert record.state is ComplianceState.AWAITING_SUBMISSION
    assert record.share_issue_date == date(2024, 1, 1)
    assert record.next_reminder_due == datetime(2024, 3, 31, tzinfo=timezone.utc)
    assert record.invariant_violations() == []


def test_second_share_issue_is_redundant_and_keeps_clock(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))

    result = manager.record_share_issue(company_id, round_id, date(2024, 2, 1))

    assert result.outcome is TransitionOutcome.REDUNDANT
    assert result.record.share_issue_date == date(2024, 1, 1)
    assert manager.get(company_id, round_id).next_reminder_due == compliance_due(date(2024, 1, 1))


def test_submission_completes_and_clears_due(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))
    submitted_at = datetime(2024, 2, 10, 15, 0, tzinfo=timezone.utc)

    result = manager.record_submission(company_id, round_id, submitted_at)

    assert result.outcome is TransitionOutcome.APPLIED
    assert result.record.state is ComplianceState.COMPLETE
    assert result.record.next_reminder_due is None
    assert result.record.submitted_at == submitted_at


def test_submission_twice_is_idempotent(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))
    manager.record_submission(company_id, round_id, datetime(2024, 2, 10, tzinfo=timezone.utc))
    after_first = manager.get(company_id, round_id)

    result = manager.record_submission(
        company_id, round_id, datetime(2024, 2, 11, tzinfo=timezone.utc)
    )

    assert result.outcome is TransitionOutcome.REDUNDANT
    assert manager.get(company_id, round_id) == after_first


def test_submission_before_issue_is_invalid_and_not_persisted(
    manager: ComplianceRecordManager, metrics_stub: StubMetrics
):
    company_id, round_id = uuid4(), uuid4()

    result = manager.record_submission(company_id, round_id)

    assert result.outcome is TransitionOutcome.INVALID_TRANSITION
    assert result.record.state is ComplianceState.NO_ISSUE
    assert manager.get(company_id, round_id) is None
    assert metrics_stub.counted("compliance.transition.invalid_transition") == 1


def test_submission_defaults_to_clock(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))

    result = manager.record_submission(company_id, round_id)

    assert result.record.submitted_at == NOW


def test_combined_update_goes_straight_to_complete(
    manager: ComplianceRecordManager, repository: InMemoryComplianceRepository
):
    company_id, round_id = uuid4(), uuid4()
    seen: list = []
    original_transition = repository.transition

    def _spy(company, round_, mutate):
        result = original_transition(company, round_, mutate)
        seen.append(repository.get(company, round_))
        return result

    repository.transition = _spy  # type: ignore[method-assign]

    result = manager.apply_update(
        company_id,
        round_id,
        share_issue_date=date(2024, 1, 1),
        submitted_at=datetime(2024, 1, 1, 17, 0, tzinfo=timezone.utc),
    )

    assert result.outcome is TransitionOutcome.APPLIED
    assert result.record.state is ComplianceState.COMPLETE
    assert result.record.next_reminder_due is None
    assert result.record.share_issue_date == date(2024, 1, 1)
    # Only one write happened, and it never held a dangling due date.
    assert len(seen) == 1
    assert seen[0].next_reminder_due is None


def test_combined_update_on_awaiting_record_completes(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))

    result = manager.apply_update(
        company_id,
        round_id,
        share_issue_date=date(2024, 1, 5),
        submitted_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
    )

    assert result.outcome is TransitionOutcome.APPLIED
    assert result.record.state is ComplianceState.COMPLETE
    assert result.record.share_issue_date == date(2024, 1, 1)


def test_apply_update_requires_an_event(manager: ComplianceRecordManager):
    with pytest.raises(ValueError):
        manager.apply_update(uuid4(), uuid4())


def test_concurrent_issue_and_submit_serialize(
    repository: InMemoryComplianceRepository, metrics_stub: StubMetrics
):
    manager = ComplianceRecordManager(repository, clock=lambda: NOW)
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))
    barrier = threading.Barrier(8)
    outcomes: list[TransitionOutcome] = []
    lock = threading.Lock()

    def _submit(offset: int) -> None:
        barrier.wait()
        result = manager.record_submission(
            company_id, round_id, datetime(2024, 2, 1, offset, tzinfo=timezone.utc)
        )
        with lock:
            outcomes.append(result.outcome)

    threads = [threading.Thread(target=_submit, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(TransitionOutcome.APPLIED) == 1
    assert outcomes.count(TransitionOutcome.REDUNDANT) == 7
    record = manager.get(company_id, round_id)
    assert record.state is ComplianceState.COMPLETE
    assert record.invariant_violations() == []


def test_overdue_is_derived_from_due_date(manager: ComplianceRecordManager):
    company_id, round_id = uuid4(), uuid4()
    manager.record_share_issue(company_id, round_id, date(2024, 1, 1))
    record = manager.get(company_id, round_id)

    assert not record.is_overdue(datetime(2024, 3, 31, tzinfo=timezone.utc))
    assert record.is_overdue(datetime(2024, 4, 5, tzinfo=timezone.utc))
    assert overdue_days(record.next_reminder_due, datetime(2024, 4, 5, tzinfo=timezone.utc)) == 5
    assert overdue_days(record.next_reminder_due, datetime(2024, 3, 1, tzinfo=timezone.utc)) == 0
