"""Cross-source session listing and detail resolution."""

import logging

from .backends import get_providers
from .concurrency import map_isolated
from .core import SessionDetail, SessionListItem, Source
from .provider import SessionProvider

logger = logging.getLogger(__name__)

LISTING_WORKERS = 4


class SessionService:
    """Aggregates every source provider behind one listing/detail API.

    Providers are held in source enumeration order; that order is also the
    lookup order when a session id is resolved without a source.
    """

    def __init__(self, providers: list[SessionProvider] | None = None):
        self.providers = providers if providers is not None else get_providers()

    def get_provider(self, source: Source | str) -> SessionProvider | None:
        try:
            source = Source(source)
        except ValueError:
            return None
        for provider in self.providers:
            if provider.source == source:
                return provider
        return None

    def get_all_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        """List sessions from every source, most recent first.

        Sources are listed concurrently; a source that fails contributes
        nothing and the others are unaffected.
        """
        per_source = map_isolated(
            lambda p: p.list_sessions(project_path),
            self.providers,
            LISTING_WORKERS,
            label="listing",
        )

        sessions = []
        seen = set()
        for items in per_source:
            for item in items:
                key = (item.source, item.session_id)
                if key in seen:
                    continue
                seen.add(key)
                sessions.append(item)

        sessions.sort(key=lambda s: s.sort_timestamp, reverse=True)
        return sessions

    def get_session_detail(
        self, session_id: str, source: Source | str | None = None
    ) -> SessionDetail | None:
        """Resolve a session id to its parsed detail.

        With no ``source`` the providers are tried in enumeration order and
        the first match wins, even if another source has the same id.
        """
        if source is not None:
            provider = self.get_provider(source)
            candidates = [provider] if provider else []
        else:
            candidates = self.providers

        for provider in candidates:
            try:
                detail = provider.get_session_detail(session_id)
            except Exception as e:
                logger.warning("%s failed to load session %s: %s", provider.name, session_id, e)
                continue
            if detail is not None:
                if detail.source is None:
                    detail.source = provider.source
                return detail
        return None
