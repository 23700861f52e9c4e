"""Full-text search across every session of every source.

There is no index: each search lists all sessions, parses each one and
scans its rendered text for the query.
"""

import logging
import re
from dataclasses import dataclass, field

from .concurrency import map_isolated
from .core import SessionDetail, SessionListItem, render_message
from .service import SessionService

logger = logging.getLogger(__name__)

MAX_SNIPPETS = 5
SNIPPET_CONTEXT_CHARS = 300
DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 50
SEARCH_WORKERS = 8

ELLIPSIS = "..."


@dataclass
class SearchHit:
    session_id: str
    title: str
    provider: str  # source display name
    score: int
    snippets: list[str] = field(default_factory=list)


@dataclass
class SearchResult:
    query: str
    total_sessions: int
    results: list[SearchHit] = field(default_factory=list)


def find_snippets(detail: SessionDetail, query: str, max_snippets: int = MAX_SNIPPETS) -> list[str]:
    """Collect up to ``max_snippets`` excerpts around case-insensitive matches.

    Each excerpt is a window of at most ``SNIPPET_CONTEXT_CHARS`` characters
    centred on the match, with ``...`` on any side that was cut. Scanning
    resumes after the end of each match.
    """
    if not query:
        return []
    # offsets index the original text, not a lowercased copy
    pattern = re.compile(re.escape(query), re.IGNORECASE)
    pad = max(0, (SNIPPET_CONTEXT_CHARS - len(query)) // 2)

    snippets = []
    for msg in detail.messages:
        if len(snippets) >= max_snippets:
            break
        text = render_message(msg)
        for match in pattern.finditer(text):
            if len(snippets) >= max_snippets:
                break
            start = max(0, match.start() - pad)
            end = min(len(text), match.end() + pad)
            snippet = text[start:end]
            if start > 0:
                snippet = ELLIPSIS + snippet
            if end < len(text):
                snippet += ELLIPSIS
            snippets.append(snippet)
    return snippets


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_SEARCH_LIMIT))


def search_sessions(
    service: SessionService,
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> SearchResult:
    """Search every session for ``query``, best matches first.

    Raises ValueError for a blank query. Sessions that fail to load are
    skipped.
    """
    if not query or not query.strip():
        raise ValueError("Search query must not be empty")
    limit = clamp_limit(limit)

    def search_one(item: SessionListItem) -> SearchHit | None:
        detail = service.get_session_detail(item.session_id, item.source)
        if detail is None:
            return None
        snippets = find_snippets(detail, query)
        if not snippets:
            return None
        return SearchHit(
            session_id=item.session_id,
            title=item.title,
            provider=item.source.display_name,
            score=len(snippets),
            snippets=snippets,
        )

    sessions = service.get_all_sessions()
    hits = map_isolated(search_one, sessions, SEARCH_WORKERS, label="search")
    logger.debug("Search %r matched %d of %d sessions", query, len(hits), len(sessions))

    # sorted() is stable, so equal scores keep recency order
    results = sorted(hits, key=lambda h: h.score, reverse=True)[:limit]
    return SearchResult(query=query, total_sessions=len(results), results=results)


def search_result_to_dict(result: SearchResult) -> dict:
    """Return the structured JSON shape of a search result."""
    return {
        "query": result.query,
        "totalSessions": result.total_sessions,
        "results": [
            {
                "sessionId": hit.session_id,
                "title": hit.title,
                "provider": hit.provider,
                "score": hit.score,
                "snippets": hit.snippets,
            }
            for hit in result.results
        ],
    }
