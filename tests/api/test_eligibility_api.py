from __future__ import annotations

from contextlib import contextmanager
from uuid import UUID, uuid4

from seis_compliance.main import app
from seis_compliance.services.eligibility.repositories import (
    InMemoryEligibilityCheckRepository,
    get_eligibility_repository,
)


@contextmanager
def _override_repository(repository: InMemoryEligibilityCheckRepository):
    app.dependency_overrides[get_eligibility_repository] = lambda: repository
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_eligibility_repository, None)


def _payload(round_id: str, **company_overrides) -> dict[str, object]:
    company = {
        "incorporation_date": "2023-04-28",
        "trading_activity": True,
        "company_status": "active",
        "previous_seis_rounds": 0,
    }
    company.update(company_overrides)
    return {
        "company_id": str(uuid4()),
        "round_id": round_id,
        "company": company,
        "funding_round": {
            "scheme": "SEIS",
            "amount_to_raise": 150000,
            "use_of_funds": "working capital",
        },
        "as_of": "2024-06-01T12:00:00+00:00",
        "performed_by": "analyst@example.test",
    }


def test_create_and_list_eligibility_checks(client):
    repository = InMemoryEligibilityCheckRepository()
    round_id = str(uuid4())
    with _override_repository(repository):
        created = client.post("/api/eligibility", json=_payload(round_id))
        rejected = client.post(
            "/api/eligibility", json=_payload(round_id, incorporation_date="2020-01-01")
        )
        history = client.get(f"/api/eligibility/{round_id}")

    assert created.status_code == 201
    body = created.json()
    assert body["result"]["verdict"] == "ELIGIBLE"
    assert body["result"]["reasons"] == []
    assert rejected.status_code == 201
    assert rejected.json()["result"]["verdict"] == "INELIGIBLE"
    assert history.status_code == 200
    assert len(history.json()) == 2


def test_naive_as_of_is_rejected_with_field(client):
    payload = _payload(str(uuid4()))
    payload["as_of"] = "2024-06-01T12:00:00"
    with _override_repository(InMemoryEligibilityCheckRepository()):
        response = client.post("/api/eligibility", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "as_of"


def test_invalid_snapshot_is_rejected_before_evaluation(client):
    repository = InMemoryEligibilityCheckRepository()
    round_id = str(uuid4())
    payload = _payload(round_id, gross_assets=-10)
    with _override_repository(repository):
        response = client.post("/api/eligibility", json=payload)

    assert response.status_code == 422
    assert repository.list_for_round(UUID(round_id)) == []
