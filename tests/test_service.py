"""Tests for the cross-source session service."""

from pathlib import Path
from unittest.mock import patch

from aisessions.backends import get_available_providers, get_providers
from aisessions.core import SessionDetail, SessionListItem, Source
from aisessions.provider import SessionProvider
from aisessions.service import SessionService


class StubProvider(SessionProvider):
    """In-memory provider returning canned listings and details."""

    def __init__(self, source, sessions=(), details=None):
        super().__init__(home=Path("/nonexistent"))
        self.source = source
        self.sessions = list(sessions)
        self.details = details or {}

    def get_base_path(self) -> Path:
        return self.home

    def list_sessions(self, project_path=None):
        return list(self.sessions)

    def find_session_file(self, session_id):
        return None

    def get_session_detail(self, session_id):
        return self.details.get(session_id)


def _item(source, session_id, updated, created=0):
    return SessionListItem(session_id, session_id.title(), source, created=created, updated=updated)


class TestGetAllSessions:
    def test_union_of_every_source(self, full_home):
        sessions = SessionService(get_providers(home=full_home)).get_all_sessions()
        assert {s.source for s in sessions} == set(Source)
        stamps = [s.sort_timestamp for s in sessions]
        assert stamps == sorted(stamps, reverse=True)

    def test_failing_source_is_isolated(self, full_home):
        providers = get_providers(home=full_home)
        claude = providers[0]
        with patch.object(claude, "list_sessions", side_effect=RuntimeError("disk on fire")):
            sessions = SessionService(providers).get_all_sessions()
        assert Source.CLAUDE_CODE not in {s.source for s in sessions}
        assert len({s.source for s in sessions}) == 7

    def test_project_filter(self, full_home):
        sessions = SessionService(get_providers(home=full_home)).get_all_sessions(
            project_path="/Users/test/dev/myapp"
        )
        assert {s.session_id for s in sessions} == {"session-001", "session-002"}

    def test_sort_falls_back_to_created(self):
        stub = StubProvider(Source.AMP, [
            _item(Source.AMP, "old", updated=0, created=100),
            _item(Source.AMP, "new", updated=0, created=300),
            _item(Source.AMP, "mid", updated=200),
        ])
        sessions = SessionService([stub]).get_all_sessions()
        assert [s.session_id for s in sessions] == ["new", "mid", "old"]

    def test_duplicates_within_a_source_dropped(self):
        stub = StubProvider(Source.AMP, [_item(Source.AMP, "a", 2), _item(Source.AMP, "a", 1)])
        other = StubProvider(Source.DROID, [_item(Source.DROID, "a", 3)])
        sessions = SessionService([stub, other]).get_all_sessions()
        assert [(s.source, s.session_id) for s in sessions] == [(Source.DROID, "a"), (Source.AMP, "a")]


class TestGetSessionDetail:
    def test_with_source(self, full_home):
        service = SessionService(get_providers(home=full_home))
        detail = service.get_session_detail("session-001", Source.CLAUDE_CODE)
        assert detail.source == Source.CLAUDE_CODE
        assert service.get_session_detail("session-001", "amp") is None

    def test_tries_every_source(self, full_home):
        service = SessionService(get_providers(home=full_home))
        assert service.get_session_detail("T-abc123").source == Source.AMP
        assert service.get_session_detail("kilo-session-1").source == Source.KILO_CODE
        assert service.get_session_detail("does-not-exist") is None

    def test_first_source_wins_on_shared_id(self):
        first = StubProvider(Source.CLAUDE_CODE, details={"x": SessionDetail("x", "From Claude")})
        second = StubProvider(Source.AMP, details={"x": SessionDetail("x", "From Amp")})
        detail = SessionService([first, second]).get_session_detail("x")
        assert detail.title == "From Claude"
        assert detail.source == Source.CLAUDE_CODE

    def test_unknown_source(self):
        service = SessionService([StubProvider(Source.AMP, details={"x": SessionDetail("x", "ok")})])
        assert service.get_provider("bogus") is None
        assert service.get_session_detail("x", "bogus") is None
        assert service.get_session_detail("x", "amp").title == "ok"

    def test_failing_provider_is_skipped(self):
        broken = StubProvider(Source.CLAUDE_CODE)
        working = StubProvider(Source.AMP, details={"x": SessionDetail("x", "ok")})
        with patch.object(broken, "get_session_detail", side_effect=ValueError("bad")):
            detail = SessionService([broken, working]).get_session_detail("x")
        assert detail.title == "ok"


def test_available_providers(claude_home):
    providers = get_available_providers(home=claude_home)
    assert [p.source for p in providers] == [Source.CLAUDE_CODE]
