"""FastAPI web server for aisessions."""

import logging

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response

from . import __version__
from .backends import get_providers
from .core import Source
from .export import detail_to_dict, session_to_json, session_to_markdown
from .search import DEFAULT_SEARCH_LIMIT, search_result_to_dict, search_sessions
from .service import SessionService

logger = logging.getLogger(__name__)

app = FastAPI(title="aisessions", version=__version__)

# Service cache (populated on first request)
_service: SessionService | None = None


def _get_service() -> SessionService:
    """Lazily initialize and cache the session service."""
    global _service
    if _service is None:
        providers = get_providers()
        _service = SessionService(providers)
        logger.info("Detected sources: %s", [p.name for p in providers if p.is_available()])
    return _service


def _parse_source(source: str | None) -> Source | None:
    if source is None:
        return None
    try:
        return Source(source)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown source: {source}")


def _session_to_dict(session) -> dict:
    """Convert a SessionListItem to a JSON-serializable dict."""
    return {
        "sessionId": session.session_id,
        "title": session.title,
        "source": session.source.value,
        "provider": session.source.display_name,
        "created": session.created,
        "updated": session.updated,
        "messageCount": session.message_count,
    }


def _load_detail(session_id: str, source: str | None):
    service = _get_service()
    detail = service.get_session_detail(session_id, _parse_source(source))
    if detail is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return detail


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/sources")
async def get_sources():
    """Return every source and whether its data exists on this machine."""
    return [
        {"name": p.name, "displayName": p.source.display_name, "available": p.is_available()}
        for p in _get_service().providers
    ]


@app.get("/api/sessions")
async def get_sessions(
    source: str | None = Query(None, description="Filter by source"),
    search: str | None = Query(None, description="Search in titles"),
    project: str | None = Query(None, description="Filter by project path"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return sessions across all sources, most recent first."""
    source_filter = _parse_source(source)
    all_sessions = _get_service().get_all_sessions(project_path=project)

    if source_filter:
        all_sessions = [s for s in all_sessions if s.source == source_filter]

    if search:
        search_lower = search.lower()
        all_sessions = [s for s in all_sessions if search_lower in s.title.lower()]

    total = len(all_sessions)
    all_sessions = all_sessions[offset: offset + limit]

    return {
        "total": total,
        "sessions": [_session_to_dict(s) for s in all_sessions],
    }


@app.get("/api/session/{session_id:path}")
async def get_session(
    session_id: str,
    source: str | None = Query(None, description="Source owning the session"),
):
    """Return the full parsed session."""
    return detail_to_dict(_load_detail(session_id, source))


@app.get("/api/search")
async def search(
    q: str = Query(..., description="Text to search for"),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, description="Maximum number of hits"),
):
    """Search the content of every session."""
    try:
        result = search_sessions(_get_service(), q, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return search_result_to_dict(result)


@app.get("/api/export/{session_id:path}")
async def export_session(
    session_id: str,
    format: str = Query("md", description="Export format: md or json"),
    source: str | None = Query(None, description="Source owning the session"),
):
    """Export a session as Markdown or JSON."""
    detail = _load_detail(session_id, source)
    safe_title = "".join(c if c.isalnum() or c in "-_ " else "" for c in detail.title)[:50] or "session"

    if format == "json":
        return Response(
            content=session_to_json(detail),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    return Response(
        content=session_to_markdown(detail),
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
    )
