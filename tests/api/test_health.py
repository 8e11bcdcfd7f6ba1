from __future__ import annotations


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_without_database(client):
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["database"] == "not configured"
