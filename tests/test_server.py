"""Tests for the FastAPI server."""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from aisessions.backends import get_providers
from aisessions.server import app

CODEX_SESSION_ID = "0199a213-81c0-7800-8aa1-bbab2a035a53"


@pytest.fixture(autouse=True)
def reset_service_cache():
    """Reset the service cache before each test."""
    import aisessions.server as srv
    srv._service = None
    yield
    srv._service = None


@pytest.fixture
def api_home(full_home, monkeypatch):
    monkeypatch.setenv("AISESSIONS_HOME", str(full_home))
    return full_home


async def _get(path, **params):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path, params=params)


@pytest.mark.asyncio
async def test_get_sources(api_home):
    resp = await _get("/api/sources")
    assert resp.status_code == 200
    data = resp.json()
    assert [s["name"] for s in data] == [
        "claude_code", "opencode", "codex", "amp", "junie", "gemini", "droid", "kilo_code",
    ]
    assert all(s["available"] for s in data)
    assert data[7]["displayName"] == "Kilo Code"


@pytest.mark.asyncio
async def test_get_sources_empty_home(tmp_path, monkeypatch):
    monkeypatch.setenv("AISESSIONS_HOME", str(tmp_path))
    data = (await _get("/api/sources")).json()
    assert not any(s["available"] for s in data)


@pytest.mark.asyncio
async def test_get_sessions(api_home):
    resp = await _get("/api/sessions")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 9
    for session in data["sessions"]:
        assert {"sessionId", "title", "source", "provider", "created", "updated", "messageCount"} <= set(session)


@pytest.mark.asyncio
async def test_get_sessions_filtered(api_home):
    data = (await _get("/api/sessions", source="codex")).json()
    assert [s["sessionId"] for s in data["sessions"]] == [CODEX_SESSION_ID]

    data = (await _get("/api/sessions", search="dark mode")).json()
    assert [s["sessionId"] for s in data["sessions"]] == ["T-abc123"]

    data = (await _get("/api/sessions", project="/Users/test/dev/myapp")).json()
    assert data["total"] == 2


@pytest.mark.asyncio
async def test_get_sessions_pagination(api_home):
    data = (await _get("/api/sessions", limit=3, offset=2)).json()
    assert data["total"] == 9
    assert len(data["sessions"]) == 3


@pytest.mark.asyncio
async def test_get_sessions_unknown_source(api_home):
    resp = await _get("/api/sessions", source="cursor")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_session(api_home):
    resp = await _get("/api/session/session-001", source="claude_code")
    assert resp.status_code == 200
    data = resp.json()
    assert data["provider"] == "Claude Code"
    assert data["messages"][0]["role"] == "user"
    assert data["metadata"]["cwd"] == "/Users/test/dev/myapp"


@pytest.mark.asyncio
async def test_get_session_without_source(api_home):
    resp = await _get("/api/session/kilo-session-1")
    assert resp.status_code == 200
    assert resp.json()["provider"] == "Kilo Code"


@pytest.mark.asyncio
async def test_get_session_not_found(api_home):
    resp = await _get("/api/session/nonexistent")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_search(api_home):
    resp = await _get("/api/search", q="dark mode")
    assert resp.status_code == 200
    data = resp.json()
    assert data["query"] == "dark mode"
    assert data["results"][0]["sessionId"] == "T-abc123"
    assert data["totalSessions"] == len(data["results"])


@pytest.mark.asyncio
async def test_search_blank_query(api_home):
    resp = await _get("/api/search", q="  ")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_search_limit_clamped(api_home):
    resp = await _get("/api/search", q="e", limit=1)
    assert resp.status_code == 200
    assert len(resp.json()["results"]) == 1

    resp = await _get("/api/search", q="e", limit=500)
    assert resp.status_code == 200
    assert 1 < len(resp.json()["results"]) <= 50


@pytest.mark.asyncio
async def test_service_cached_between_requests(api_home):
    with patch("aisessions.server.get_providers", wraps=get_providers) as spy:
        await _get("/api/sources")
        await _get("/api/sessions")
    assert spy.call_count == 1


@pytest.mark.asyncio
async def test_export_markdown(api_home):
    resp = await _get("/api/export/session-001", format="md", source="claude_code")
    assert resp.status_code == 200
    assert "text/markdown" in resp.headers["content-type"]
    assert resp.headers["content-disposition"].endswith('.md"')
    assert resp.text.startswith("# Help me refactor the auth module")


@pytest.mark.asyncio
async def test_export_json(api_home):
    resp = await _get("/api/export/ses_001", format="json")
    assert resp.status_code == 200
    assert "application/json" in resp.headers["content-type"]
    assert resp.json()["provider"] == "OpenCode"


@pytest.mark.asyncio
async def test_export_not_found(api_home):
    resp = await _get("/api/export/nonexistent")
    assert resp.status_code == 404
