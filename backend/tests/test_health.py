"""
Tests for the health endpoint.
"""
import pytest

import routes.health as health


@pytest.fixture
def database_up(monkeypatch):
    async def ok():
        return True

    monkeypatch.setattr(health, "ping_db", ok)


@pytest.mark.api
@pytest.mark.asyncio
async def test_healthy(client, database_up):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database_connected"] is True
    assert response.json()["cached_keys"] == []


@pytest.mark.api
@pytest.mark.asyncio
async def test_reports_cached_monobank_key(client, database_up, signature_service, sign_mono):
    body = b'{"reference":"ghost","status":"success"}'
    await signature_service.verify("monobank", body, sign_mono(body))

    response = await client.get("/health")

    assert response.json()["cached_keys"] == ["monobank"]


@pytest.mark.api
@pytest.mark.asyncio
async def test_database_down(client, monkeypatch):
    async def down():
        raise ConnectionError("no database")

    monkeypatch.setattr(health, "ping_db", down)

    response = await client.get("/health")

    assert response.status_code == 503
    assert response.json() == {
        "status": "unhealthy",
        "database_connected": False,
        "error": "database unavailable",
    }
