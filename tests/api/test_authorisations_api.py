from __future__ import annotations

from uuid import uuid4

from seis_compliance.main import app
from seis_compliance.services.compliance.repositories import (
    InMemoryAuthorisationRepository,
    get_authorisation_repository,
)


def test_register_and_list_authorisations(client):
    repository = InMemoryAuthorisationRepository()
    app.dependency_overrides[get_authorisation_repository] = lambda: repository
    company_id = str(uuid4())
    payload = {"company_id": company_id, "expires_at": "2025-01-01T00:00:00Z"}

    created = client.post("/api/authorisations", json=payload)
    duplicate = client.post("/api/authorisations", json={**payload, "id": created.json()["id"]})
    listed = client.get(f"/api/authorisations/{company_id}")

    assert created.status_code == 201
    assert created.json()["is_valid"] is True
    assert duplicate.status_code == 409
    assert [item["id"] for item in listed.json()] == [created.json()["id"]]
