"""Tests for the Amp backend."""

import json

from aisessions.backends.amp import AmpProvider, extract_cwd, parse_content
from aisessions.core import (
    AssistantText,
    AssistantThinking,
    Code,
    Markdown,
    Source,
    Text,
    ToolResult,
    ToolUse,
    User,
)


def _thread(messages, **extra):
    return json.dumps({"id": "T-1", "created": 0, "messages": messages, **extra})


class TestAmpProvider:
    def test_list_sessions(self, amp_home):
        sessions = AmpProvider(home=amp_home).list_sessions()
        assert len(sessions) == 1
        s = sessions[0]
        assert s.session_id == "T-abc123"
        assert s.title == "Add a dark mode toggle"
        assert s.source == Source.AMP
        assert s.message_count == 4
        assert s.updated >= s.created

    def test_list_sessions_by_project(self, amp_home):
        provider = AmpProvider(home=amp_home)
        assert len(provider.list_sessions(project_path="/Users/test/dev/web")) == 1
        assert provider.list_sessions(project_path="/Users/test/dev/api") == []

    def test_get_session_detail(self, amp_home):
        detail = AmpProvider(home=amp_home).get_session_detail("T-abc123")
        assert [type(m) for m in detail.messages] == [User, AssistantThinking, AssistantText, ToolUse, AssistantText]

        tool = detail.messages[3]
        assert tool.tool_name == "Read"
        assert tool.input == {"path": "app.css"}
        assert tool.results[0].output == [Code("body { color: black }")]
        assert tool.results[0].tool_name == "Read"

        meta = detail.metadata
        assert meta.cwd == "/Users/test/dev/web"
        assert meta.models == [("claude-sonnet-4", 2)]
        assert meta.created == "2025-01-20T10:00:00Z"

    def test_sibling_project_not_matched(self, amp_home):
        assert AmpProvider(home=amp_home).list_sessions(project_path="/Users/test/dev/we") == []

    def test_non_finite_created_listed(self, amp_home):
        threads = amp_home / ".local" / "share" / "amp" / "threads"
        (threads / "T-inf.json").write_text(
            json.dumps({"id": "T-inf", "created": float("inf"), "messages": []}), encoding="utf-8"
        )
        sessions = {s.session_id: s for s in AmpProvider(home=amp_home).list_sessions()}
        assert sessions["T-inf"].created == 0
        assert sessions["T-inf"].updated > 0

    def test_get_session_detail_missing(self, amp_home):
        assert AmpProvider(home=amp_home).get_session_detail("T-missing") is None


class TestParseContent:
    def test_malformed_document(self):
        assert parse_content("{not json") is None
        assert parse_content(json.dumps(["a list"])) is None

    def test_non_finite_created(self):
        detail = parse_content('{"id": "T-1", "created": Infinity, "messages": []}')
        assert detail.session_id == "T-1"
        assert detail.metadata.created == "1970-01-01T00:00:00Z"

    def test_deeply_nested_document(self):
        assert parse_content("[" * 200000 + "]" * 200000) is None

    def test_malformed_inner_records_skipped(self):
        detail = parse_content(_thread([
            "not a record",
            {"role": "user", "content": [{"type": "text", "text": "hi"}]},
            {"role": "assistant", "content": "not a list"},
        ]))
        assert detail.messages == [User(timestamp="", content=[Text("hi")])]

    def test_diff_only_result_dropped(self):
        detail = parse_content(_thread([
            {"role": "assistant", "content": [{"type": "tool_use", "id": "e1", "name": "edit_file", "input": {}}]},
            {"role": "user", "content": [
                {"type": "tool_result", "toolUseID": "e1", "run": {"status": "done", "result": {"diff": "+x"}}},
            ]},
        ]))
        assert detail.messages[0].results == []

    def test_error_result(self):
        detail = parse_content(_thread([
            {"role": "user", "content": [
                {"type": "tool_result", "toolUseID": "x1", "run": {"status": "error", "error": "boom"}},
            ]},
        ]))
        assert detail.messages == [ToolResult(timestamp="", output=[Code("Error: boom")], tool_call_id="x1", is_error=True)]

    def test_text_flushed_before_each_tool_call(self):
        detail = parse_content(_thread([
            {"role": "assistant", "content": [
                {"type": "text", "text": "one"},
                {"type": "tool_use", "id": "a", "name": "A", "input": {}},
                {"type": "text", "text": "two"},
            ]},
        ]))
        assert [type(m) for m in detail.messages] == [AssistantText, ToolUse, AssistantText]
        assert detail.messages[2].content == [Markdown("two")]

    def test_empty_assistant_message(self):
        detail = parse_content(_thread([{"role": "assistant", "content": []}]))
        assert detail.messages[0].content == [Text("[Empty assistant message]")]


def test_extract_cwd():
    data = {"env": {"initial": {"trees": [{"uri": "file:///srv/app"}]}}}
    assert extract_cwd(data) == "/srv/app"
    assert extract_cwd({}) is None
