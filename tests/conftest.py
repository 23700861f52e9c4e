"""Shared test fixtures for aisessions.

Each source fixture writes a small but realistic session tree under one
synthetic home directory and returns that home.
"""

import json
from datetime import date, datetime, timezone

import pytest

CODEX_SESSION_ID = "0199a213-81c0-7800-8aa1-bbab2a035a53"


def ms(year, month, day, hour=0, minute=0, second=0) -> int:
    return int(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).timestamp() * 1000)


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def write_jsonl(path, entries):
    """Write entries one per line; str entries are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


@pytest.fixture
def home(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def claude_home(home):
    """Claude Code project with one full session and one short one.

    Includes:
    - User text, assistant text + tool_use, user tool_result
    - Assistant with thinking + text + tool_use
    - file-history-snapshot (skipped), a malformed line (skipped)
    - system turn_duration record
    """
    project_dir = home / ".claude" / "projects" / "-Users-test-dev-myapp"
    common = {"cwd": "/Users/test/dev/myapp", "gitBranch": "main", "version": "1.0.98"}
    write_jsonl(project_dir / "session-001.jsonl", [
        {
            "type": "user",
            "message": {"role": "user", "content": [{"type": "text", "text": "Help me refactor the auth module"}]},
            "timestamp": "2025-01-20T10:00:00Z",
            **common,
        },
        {
            "type": "assistant",
            "message": {"role": "assistant", "model": "claude-sonnet-4", "content": [
                {"type": "text", "text": "Let me read the current code."},
                {"type": "tool_use", "id": "toolu_001", "name": "Read", "input": {"file_path": "/src/auth.ts"}},
            ]},
            "timestamp": "2025-01-20T10:00:30Z",
            **common,
        },
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_001", "content": "export function authenticate() {}"},
            ]},
            "timestamp": "2025-01-20T10:00:31Z",
            **common,
        },
        {
            "type": "assistant",
            "message": {"role": "assistant", "model": "claude-sonnet-4", "content": [
                {"type": "thinking", "thinking": "Split validation from refresh."},
                {"type": "text", "text": "I will split it into separate concerns."},
                {"type": "tool_use", "id": "toolu_002", "name": "Edit", "input": {"file_path": "/src/auth.ts", "limit": 5}},
            ]},
            "timestamp": "2025-01-20T10:01:00Z",
            **common,
        },
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_002", "content": [{"type": "text", "text": "File edited"}]},
            ]},
            "timestamp": "2025-01-20T10:01:01Z",
            **common,
        },
        {"type": "file-history-snapshot", "messageId": "m1", "snapshot": {"files": []}},
        "{this is not json",
        {"type": "system", "subtype": "turn_duration", "durationMs": 65000, "timestamp": "2025-01-20T10:01:05Z"},
    ])
    write_jsonl(project_dir / "session-002.jsonl", [
        {
            "type": "user",
            "message": {"role": "user", "content": "Write tests for the API"},
            "timestamp": "2025-01-21T09:00:00Z",
            **common,
        },
    ])
    return home


@pytest.fixture
def codex_home(home):
    """Codex rollout in today's day bucket."""
    today = date.today()
    day_dir = home / ".codex" / "sessions" / f"{today:%Y}" / f"{today:%m}" / f"{today:%d}"
    write_jsonl(day_dir / f"rollout-2025-01-20T10-00-00-{CODEX_SESSION_ID}.jsonl", [
        {"timestamp": "2025-01-20T10:00:00Z", "type": "session_meta", "payload": {
            "id": CODEX_SESSION_ID, "cwd": "/Users/test/dev/api", "cli_version": "0.40.0",
            "git": {"branch": "feature/tests"},
        }},
        {"timestamp": "2025-01-20T10:00:01Z", "type": "turn_context", "payload": {"model": "gpt-5-codex"}},
        {"timestamp": "2025-01-20T10:00:01Z", "type": "response_item", "payload": {
            "type": "message", "role": "developer", "content": [{"type": "input_text", "text": "sandbox rules"}],
        }},
        {"timestamp": "2025-01-20T10:00:01Z", "type": "response_item", "payload": {
            "type": "message", "role": "user",
            "content": [{"type": "input_text", "text": "<environment_context>cwd</environment_context>"}],
        }},
        {"timestamp": "2025-01-20T10:00:02Z", "type": "event_msg", "payload": {
            "type": "user_message", "message": "Fix the failing test",
        }},
        {"timestamp": "2025-01-20T10:00:02Z", "type": "response_item", "payload": {
            "type": "message", "role": "user", "content": [{"type": "input_text", "text": "Fix the failing test"}],
        }},
        {"timestamp": "2025-01-20T10:00:03Z", "type": "response_item", "payload": {
            "type": "function_call", "name": "shell", "arguments": "{\"command\":[\"pytest\"]}", "call_id": "call_1",
        }},
        {"timestamp": "2025-01-20T10:00:04Z", "type": "response_item", "payload": {
            "type": "function_call_output", "call_id": "call_1", "output": "1 passed",
        }},
        {"timestamp": "2025-01-20T10:00:05Z", "type": "response_item", "payload": {
            "type": "reasoning", "summary": [{"type": "summary_text", "text": "Tests pass now."}],
        }},
        {"timestamp": "2025-01-20T10:00:06Z", "type": "response_item", "payload": {
            "type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "All tests pass."}],
        }},
    ])
    return home


@pytest.fixture
def amp_home(home):
    """Amp thread with thinking, a tool call and its result."""
    write_json(home / ".local" / "share" / "amp" / "threads" / "T-abc123.json", {
        "id": "T-abc123",
        "created": ms(2025, 1, 20, 10),
        "env": {"initial": {"trees": [{"uri": "file:///Users/test/dev/web"}]}},
        "messages": [
            {"role": "user", "content": [{"type": "text", "text": "Add a dark mode toggle"}]},
            {"role": "assistant", "usage": {"model": "claude-sonnet-4", "timestamp": "2025-01-20T10:00:05Z"}, "content": [
                {"type": "thinking", "thinking": "Check the stylesheet first."},
                {"type": "text", "text": "Let me look at the CSS."},
                {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {"path": "app.css"}},
            ]},
            {"role": "user", "content": [
                {"type": "tool_result", "toolUseID": "tu_1", "run": {"status": "done", "result": "body { color: black }"}},
            ]},
            {"role": "assistant", "usage": {"model": "claude-sonnet-4"}, "content": [
                {"type": "text", "text": "Dark mode added."},
            ]},
        ],
    })
    return home


@pytest.fixture
def junie_home(home):
    """Junie session with a re-sent terminal step."""
    base = home / ".junie" / "sessions"
    write_jsonl(base / "index.jsonl", [
        {"sessionId": "session-260101", "taskName": "Refactor the parser",
         "createdAt": ms(2025, 1, 20, 10), "updatedAt": ms(2025, 1, 20, 11)},
    ])

    def agent(event):
        return {"kind": "SessionA2uxEvent", "event": {"agentEvent": event}}

    write_jsonl(base / "session-260101" / "events.jsonl", [
        {"kind": "UserPromptEvent", "prompt": "Refactor the parser"},
        agent({"kind": "TerminalBlockUpdatedEvent", "stepId": "s1",
               "command": "cd /Users/test/dev/parser && ls", "output": ""}),
        "{broken",
        agent({"kind": "TerminalBlockUpdatedEvent", "stepId": "s1",
               "command": "cd /Users/test/dev/parser && ls", "output": "parser.py"}),
        agent({"kind": "LlmResponseMetadataEvent", "modelUsage": [{"model": "gpt-4.1"}]}),
        agent({"kind": "ResultBlockUpdatedEvent", "stepId": "s2", "result": "Refactored the parser."}),
    ])
    return home


@pytest.fixture
def gemini_home(home):
    """Gemini project directory with one chat."""
    project_dir = home / ".gemini" / "tmp" / "5f2a9c"
    project_dir.mkdir(parents=True)
    (project_dir / ".project_root").write_text("/Users/test/dev/gem\n", encoding="utf-8")
    write_json(project_dir / "chats" / "session-2025-01-20T10-00-gem001.json", {
        "sessionId": "gem-001",
        "startTime": "2025-01-20T10:00:00Z",
        "lastUpdated": "2025-01-20T10:05:00Z",
        "messages": [
            {"type": "user", "timestamp": "2025-01-20T10:00:00Z", "content": "Explain the build"},
            {
                "type": "gemini",
                "timestamp": "2025-01-20T10:00:10Z",
                "model": "gemini-2.5-pro",
                "content": "It uses make.",
                "thoughts": [{"subject": "Build", "description": "Check the Makefile"}],
                "toolCalls": [{
                    "id": "c1", "name": "read_file", "args": {"path": "Makefile"}, "status": "success",
                    "result": [{"functionResponse": {"response": {"output": "all: build"}}}],
                }],
            },
            {"type": "error", "timestamp": "2025-01-20T10:05:00Z", "content": "Quota exceeded"},
        ],
    })
    return home


@pytest.fixture
def droid_home(home):
    """Droid session whose recorded title is the placeholder."""
    project_dir = home / ".factory" / "sessions" / "-Users-test-dev-droid"
    write_jsonl(project_dir / "d-001.jsonl", [
        {"type": "session_start", "id": "d-001", "title": "New Session", "cwd": "/Users/test/dev/droid"},
        {"type": "message", "timestamp": "2025-01-20T10:00:00Z", "message": {
            "role": "user", "content": [{"type": "text", "text": "Write a README"}],
        }},
        {"type": "message", "timestamp": "2025-01-20T10:00:05Z", "message": {
            "role": "assistant", "model": "glm-4.6", "content": [
                {"type": "text", "text": "Sure."},
                {"type": "tool_use", "id": "t1", "name": "Create", "input": {"path": "README.md"}},
            ],
        }},
        {"type": "message", "timestamp": "2025-01-20T10:00:06Z", "message": {
            "role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "File created"}],
        }},
    ])
    write_jsonl(project_dir / "d-001.settings.jsonl", [{"model": "glm-4.6"}])
    return home


@pytest.fixture
def kilo_home(home):
    """Kilo Code task with UI log, API history and task metadata."""
    base = home / ".kilocode" / "cli"
    write_json(base / "workspaces" / "workspace-map.json", {"/Users/test/dev/kilo": "ws-1"})
    write_json(base / "workspaces" / "ws-1" / "session.json", {"taskSessionMap": {"task-1": "kilo-session-1"}})

    task_dir = base / "global" / "tasks" / "task-1"
    start = ms(2025, 1, 20, 10)
    write_json(task_dir / "ui_messages.json", [
        {"ts": start, "type": "say", "say": "text", "text": "Add logging"},
        {"ts": start + 1000, "type": "say", "say": "api_req_started", "text": "{}"},
        {"ts": start + 2000, "type": "ask", "ask": "tool",
         "text": json.dumps({"tool": "readFile", "path": "app.py", "id": "toolu_k1"})},
        {"ts": start + 3000, "type": "say", "say": "reasoning", "text": "Need to read app.py"},
        {"ts": start + 4000, "type": "say", "say": "completion_result", "text": "Logging added"},
    ])
    write_json(task_dir / "api_conversation_history.json", [
        {"role": "user", "content": [
            {"type": "text", "text": "<task>Add logging</task>"},
            {"type": "text", "text": "<environment_details><model>kilo/claude-sonnet-4</model></environment_details>"},
        ]},
        {"role": "assistant", "content": [
            {"type": "tool_use", "id": "toolu_k1", "name": "read_file", "input": {"path": "app.py"}},
        ]},
        {"role": "user", "content": [
            {"type": "tool_result", "tool_use_id": "toolu_k1", "content": "print('hi')"},
        ]},
    ])
    write_json(task_dir / "task_metadata.json", {"files_in_context": [{"path": "/Users/test/dev/kilo/app.py"}]})
    return home


@pytest.fixture
def opencode_home(home):
    """OpenCode v1.1+ storage with parts, a tool call and an errored turn."""
    storage = home / ".local" / "share" / "opencode" / "storage"
    write_json(storage / "session" / "proj1" / "ses_001.json", {
        "id": "ses_001",
        "version": "1.1.34",
        "title": "Debug API endpoint",
        "directory": "/Users/test/dev/api-server",
        "time": {"created": ms(2025, 1, 22, 8), "updated": ms(2025, 1, 22, 8, 30)},
    })

    msg_dir = storage / "message" / "ses_001"
    write_json(msg_dir / "msg_001.json", {
        "id": "msg_001", "role": "user", "time": {"created": ms(2025, 1, 22, 8)},
    })
    write_json(msg_dir / "msg_002.json", {
        "id": "msg_002", "role": "assistant", "time": {"created": ms(2025, 1, 22, 8, 0, 30)},
        "model": {"providerID": "anthropic", "modelID": "claude-sonnet-4"},
    })
    write_json(msg_dir / "msg_003.json", {
        "id": "msg_003", "role": "assistant", "time": {"created": ms(2025, 1, 22, 8, 1)},
        "modelID": "claude-sonnet-4",
    })
    write_json(msg_dir / "msg_004.json", {
        "id": "msg_004", "role": "assistant", "time": {"created": ms(2025, 1, 22, 8, 2)},
        "error": {"name": "APIError", "data": {"message": "Rate limited"}},
    })

    part = storage / "part"
    write_json(part / "msg_001" / "prt_001.json", {
        "id": "prt_001", "type": "text", "text": "Why is the /api/users endpoint returning 500?",
    })
    write_json(part / "msg_002" / "prt_001.json", {
        "id": "prt_002", "type": "text", "text": "The error is in the database query.",
    })
    write_json(part / "msg_003" / "prt_001.json", {
        "id": "prt_003a", "type": "step-start", "time": {"start": ms(2025, 1, 22, 8, 1)},
    })
    write_json(part / "msg_003" / "prt_002.json", {
        "id": "prt_003b",
        "type": "tool",
        "tool": "grep",
        "callID": "call_g1",
        "time": {"start": ms(2025, 1, 22, 8, 1, 5)},
        "state": {
            "status": "completed",
            "input": {"pattern": "SELECT.*FROM users", "include": "*.ts"},
            "output": "src/db.ts:15: SELECT * FROM users WHERE id = $1",
        },
    })
    return home


@pytest.fixture
def opencode_v1_home(home):
    """OpenCode v1.0 storage (no parts, summary only)."""
    storage = home / ".local" / "share" / "opencode" / "storage"
    write_json(storage / "session" / "proj_old" / "ses_old_001.json", {
        "id": "ses_old_001",
        "version": "1.0.218",
        "title": "Build login page",
        "directory": "/Users/test/dev/webapp",
        "time": {"created": ms(2025, 1, 10, 9), "updated": ms(2025, 1, 10, 10)},
    })
    msg_dir = storage / "message" / "ses_old_001"
    write_json(msg_dir / "msg_old_001.json", {
        "id": "msg_old_001", "role": "user", "time": {"created": ms(2025, 1, 10, 9)},
        "summary": {"title": "Build a login page with email and password", "diffs": []},
        "model": {"providerID": "opencode", "modelID": "big-pickle"},
    })
    write_json(msg_dir / "msg_old_002.json", {
        "id": "msg_old_002", "role": "assistant", "time": {"created": ms(2025, 1, 10, 9, 0, 30)},
        "mode": "code", "finish": "stop",
    })
    (storage / "part").mkdir(parents=True)
    return home


@pytest.fixture
def full_home(claude_home, opencode_home, codex_home, amp_home, junie_home, gemini_home, droid_home, kilo_home):
    """One home directory holding sessions from all eight sources."""
    return claude_home
