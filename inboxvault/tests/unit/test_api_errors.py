from __future__ import annotations

import json

import httpx
import pytest

from inboxvault.apps.api.main import create_app
from inboxvault.apps.api.routes.health import read_build_info
from inboxvault.core.errors import IsolationViolation, KeyNotFoundError, TagVerificationError, TenantPredicateError


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def app(config):
    app = create_app(config)

    @app.get("/raise/isolation")
    async def isolation_route() -> dict:
        raise IsolationViolation("row belongs to tenant 1f0e")

    @app.get("/raise/tamper")
    async def tamper_route() -> dict:
        raise TagVerificationError("credential envelope failed authentication")

    @app.get("/raise/unknown-key")
    async def unknown_key_route() -> dict:
        raise KeyNotFoundError("no token key registered for id 'k0'")

    @app.get("/raise/unscoped")
    async def unscoped_route() -> dict:
        raise TenantPredicateError("Tenant scope required but missing")

    return app


@pytest.mark.asyncio
async def test_healthz(app) -> None:
    async with _client(app) as client:
        response = await client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_version_falls_back_without_build_info(app, monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    async with _client(app) as client:
        response = await client.get("/version")
    body = response.json()
    assert response.status_code == 200
    assert body["version"] == "0.0.0"
    assert body["gitSha"] == "unknown"


def test_read_build_info_from_file(tmp_path) -> None:
    path = tmp_path / "build-info.json"
    path.write_text(
        json.dumps({"name": "inboxvault", "version": "1.4.0", "gitSha": "abc1234", "builtAt": "2026-09-01T00:00:00Z"}),
        encoding="utf-8",
    )
    info = read_build_info(path)
    assert (info.version, info.gitSha) == ("1.4.0", "abc1234")


@pytest.mark.asyncio
async def test_isolation_violation_is_plain_not_found(app) -> None:
    async with _client(app) as client:
        isolated = await client.get("/raise/isolation", headers={"X-Request-Id": "req-1"})
        missing = await client.get("/no/such/route")
    assert isolated.status_code == 404
    assert isolated.json() == {
        "error": {"code": "NOT_FOUND", "message": "Resource not found"},
        "meta": {"request_id": "req-1"},
    }
    assert "1f0e" not in isolated.text
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/raise/tamper", "/raise/unknown-key", "/raise/unscoped"])
async def test_internal_failures_carry_no_detail(app, path: str) -> None:
    async with _client(app) as client:
        response = await client.get(path)
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == {"code": "INTERNAL_ERROR", "message": "Internal server error"}
    assert "k0" not in response.text
    assert "authentication" not in response.text


@pytest.mark.asyncio
async def test_lifespan_opens_no_database(config, caplog) -> None:
    app = create_app(config)
    with caplog.at_level("INFO", logger="inboxvault.apps.api.main"):
        async with app.router.lifespan_context(app):
            assert not hasattr(app.state, "database")
            assert not hasattr(app.state, "cipher")
    assert "api_started env=test" in caplog.text
    assert "api_stopped env=test" in caplog.text
