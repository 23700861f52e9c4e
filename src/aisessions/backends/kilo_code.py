"""Kilo Code CLI session backend.

Kilo keeps its data under ~/.kilocode/cli:

    workspaces/workspace-map.json      {"<project path>": "<workspace dir>"}
    workspaces/<dir>/session.json      {"taskSessionMap": {"<task id>": "<session id>"}}
    global/tasks/<task id>/
        ui_messages.json               UI log, required
        api_conversation_history.json  raw API messages, optional
        task_metadata.json             cwd and files in context, optional

The UI log is a list of ``{"ts": <epoch ms>, "type": "say"|"ask", ...}``
records. Tool calls recorded in the API history are authoritative; a UI
``ask: tool`` record carrying the same id is dropped.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ..concurrency import map_isolated
from ..config import get_kilo_code_path
from ..core import (
    AssistantText,
    AssistantThinking,
    Info,
    InfoStyle,
    Markdown,
    Message,
    SessionDetail,
    SessionListItem,
    SessionMetadata,
    Source,
    Text,
    ToolResult,
    ToolUse,
    User,
)
from ..correlation import correlate_tool_results
from ..formatting import (
    flatten_tool_content,
    format_tool_output,
    is_number,
    json_to_input_map,
    millis_to_iso,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

LISTING_WORKERS = 4

UI_MESSAGES_FILE = "ui_messages.json"
API_HISTORY_FILE = "api_conversation_history.json"
TASK_METADATA_FILE = "task_metadata.json"

_MODEL_TAG_RE = re.compile(r"<model>([^<]+)</model>")


@dataclass
class KiloTask:
    """One task directory and the ids and project it is filed under."""

    task_path: Path
    task_id: str
    session_id: str
    project_path: str


class KiloCodeProvider(SessionProvider):
    """Provider for Kilo Code CLI tasks."""

    source = Source.KILO_CODE

    def get_base_path(self) -> Path:
        return get_kilo_code_path(self.home)

    def list_tasks(self) -> list[KiloTask]:
        """Walk the workspace map and collect every task that exists on disk."""
        base = self.get_base_path()
        workspace_map = _load_json(base / "workspaces" / "workspace-map.json")
        if not isinstance(workspace_map, dict):
            return []

        tasks_dir = base / "global" / "tasks"
        tasks = []
        for project_path, workspace_dir in workspace_map.items():
            if not isinstance(workspace_dir, str):
                continue
            data = _load_json(base / "workspaces" / workspace_dir / "session.json")
            task_map = data.get("taskSessionMap") if isinstance(data, dict) else None
            if not isinstance(task_map, dict):
                continue
            for task_id, session_id in task_map.items():
                task_path = tasks_dir / task_id
                if isinstance(session_id, str) and task_path.is_dir():
                    tasks.append(KiloTask(task_path, task_id, session_id, project_path))
        return tasks

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        tasks = self.list_tasks()
        if project_path:
            tasks = [t for t in tasks if t.project_path == project_path]
        return map_isolated(self._list_item, tasks, LISTING_WORKERS, label="kilo_code listing")

    def find_task(self, session_id: str) -> KiloTask | None:
        """Match either the session id or the task id."""
        for task in self.list_tasks():
            if session_id in (task.session_id, task.task_id):
                return task
        return None

    def find_session_file(self, session_id: str) -> Path | None:
        task = self.find_task(session_id)
        return task.task_path if task else None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        task = self.find_task(session_id)
        if task is None:
            return None
        return parse_task_dir(task.task_path, task.session_id)

    # ── Private helpers ──────────────────────────────────────────────

    def _list_item(self, task: KiloTask) -> SessionListItem | None:
        detail = parse_task_dir(task.task_path, task.session_id)
        if detail is None:
            return None
        mtime = int(task.task_path.stat().st_mtime * 1000)
        return SessionListItem(
            session_id=task.session_id,
            title=detail.title,
            source=Source.KILO_CODE,
            created=mtime,
            updated=mtime,
            message_count=len(detail.messages),
        )


def _load_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, RecursionError, OSError) as e:
        logger.debug("Skipping unreadable %s: %s", path, e)
        return None


# ── Parsing ──────────────────────────────────────────────────────


def parse_task_dir(task_path: Path, session_id: str | None = None) -> SessionDetail | None:
    """Parse a task directory; None if its UI log is missing or malformed.

    The API history and task metadata sidecars are optional and degrade to
    empty when absent or unreadable.
    """
    try:
        ui_content = (task_path / UI_MESSAGES_FILE).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None

    api_history = _load_json(task_path / API_HISTORY_FILE)
    task_metadata = _load_json(task_path / TASK_METADATA_FILE)
    return parse_content(
        ui_content,
        api_history if isinstance(api_history, list) else [],
        task_metadata if isinstance(task_metadata, dict) else {},
        session_id or task_path.name,
    )


def parse_content(
    ui_content: str,
    api_history: list,
    task_metadata: dict,
    session_id: str,
) -> SessionDetail | None:
    """Merge the UI log with the API history into one session."""
    try:
        ui_messages = json.loads(ui_content)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.debug("Bad UI messages JSON for %s: %s", session_id, e)
        return None
    if not isinstance(ui_messages, list):
        return None

    messages: list[Message] = []
    api_call_ids = set()
    for index, entry in enumerate(api_history):
        if not isinstance(entry, dict):
            continue
        try:
            api_messages = _parse_api_entry(entry)
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Skipping API entry %d: %s", index, e)
            continue
        for msg in api_messages:
            if isinstance(msg, ToolUse) and msg.tool_call_id:
                api_call_ids.add(msg.tool_call_id)
        messages.extend(api_messages)

    first_ts = last_ts = None
    for entry in ui_messages:
        if not isinstance(entry, dict):
            continue
        ts = _as_millis(entry.get("ts"))
        if ts is not None:
            first_ts = first_ts if first_ts is not None else ts
            last_ts = ts
        msg = _parse_ui_message(entry)
        if msg is None:
            continue
        if isinstance(msg, ToolUse) and msg.tool_call_id in api_call_ids:
            continue
        messages.append(msg)

    messages = correlate_tool_results(messages)
    model = extract_model(api_history)
    title = extract_title(ui_messages, api_history) or f"Kilo Session {session_id[:8]}"
    return SessionDetail(
        session_id=session_id,
        title=title,
        messages=messages,
        metadata=SessionMetadata(
            cwd=extract_workspace(task_metadata),
            models=[(model, 1)] if model else [],
            created=millis_to_iso(first_ts) or None,
            modified=millis_to_iso(last_ts) or None,
            message_count=len(messages),
        ),
        source=Source.KILO_CODE,
    )


def extract_title(ui_messages: list, api_history: list) -> str | None:
    """First ``say: text`` of the UI log, else the first API user text."""
    for entry in ui_messages:
        if isinstance(entry, dict) and entry.get("type") == "say" and entry.get("say") == "text":
            text = entry.get("text")
            if isinstance(text, str) and text.strip():
                return truncate_title(text.strip())

    for entry in api_history:
        if not isinstance(entry, dict) or entry.get("role") != "user":
            continue
        content = entry.get("content")
        text = None
        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            text = next(
                (b.get("text") for b in content if isinstance(b, dict) and b.get("type") == "text"),
                None,
            )
        if isinstance(text, str) and text.strip():
            return truncate_title(text.strip())
    return None


def extract_model(api_history: list) -> str | None:
    """Read the model name from the ``<environment_details>`` Kilo injects."""
    for entry in api_history:
        if not isinstance(entry, dict) or entry.get("role") != "user":
            continue
        content = entry.get("content")
        if isinstance(content, str):
            texts = [content]
        elif isinstance(content, list):
            texts = [
                b["text"] for b in content
                if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
            ]
        else:
            continue
        for text in texts:
            if "<environment_details>" in text:
                match = _MODEL_TAG_RE.search(text)
                if match:
                    return match.group(1)
    return None


def extract_workspace(task_metadata: dict) -> str | None:
    cwd = task_metadata.get("cwd")
    if isinstance(cwd, str):
        return cwd
    files = task_metadata.get("files_in_context")
    if isinstance(files, list) and files and isinstance(files[0], dict):
        path = files[0].get("path")
        if isinstance(path, str):
            return str(PurePosixPath(path).parent)
    return None


# ── Private helpers ──────────────────────────────────────────────


def _as_millis(value) -> int | None:
    if is_number(value):
        return int(value)
    return None


def _parse_api_entry(entry: dict) -> list[Message]:
    """Tool calls from assistant turns, tool results from user turns."""
    content = entry.get("content")
    if not isinstance(content, list):
        return []
    timestamp = millis_to_iso(_as_millis(entry.get("ts")))

    messages: list[Message] = []
    role = entry.get("role")
    for block in content:
        if not isinstance(block, dict):
            continue
        if role == "assistant" and block.get("type") == "tool_use":
            call_id = block.get("id")
            if not isinstance(call_id, str):
                continue
            messages.append(ToolUse(
                timestamp=timestamp,
                tool_name=block.get("name") or "unknown",
                input=json_to_input_map(block.get("input")),
                tool_call_id=call_id,
            ))
        elif role == "user" and block.get("type") == "tool_result":
            messages.append(ToolResult(
                timestamp=timestamp,
                output=format_tool_output(flatten_tool_content(block.get("content"))),
                tool_call_id=block.get("tool_use_id"),
                is_error=bool(block.get("is_error")),
            ))
    return messages


def _parse_ui_message(entry: dict) -> Message | None:
    timestamp = millis_to_iso(_as_millis(entry.get("ts")))
    text = entry.get("text")
    if not isinstance(text, str):
        text = ""

    msg_type = entry.get("type")
    if msg_type == "say":
        return _parse_say(entry.get("say"), text, timestamp)
    if msg_type == "ask":
        return _parse_ask(entry.get("ask"), text, timestamp)
    return None


def _parse_say(say, text: str, timestamp: str) -> Message | None:
    if say in ("text", "user_feedback"):
        return User(timestamp=timestamp, content=[Text(text)])
    if say == "reasoning":
        return AssistantThinking(timestamp=timestamp, thinking=text)
    if say == "completion_result":
        return AssistantText(timestamp=timestamp, content=[Markdown(text)])
    if say == "error":
        return Info(
            timestamp=timestamp,
            title="error",
            content=Text(text or "Unknown error"),
            style=InfoStyle.ERROR,
        )
    # checkpoint_saved, api_req_started, api_req_finished, ...
    return None


def _parse_ask(ask, text: str, timestamp: str) -> Message | None:
    if ask == "tool":
        try:
            tool = json.loads(text)
        except (json.JSONDecodeError, RecursionError):
            tool = None
        if not isinstance(tool, dict):
            return Info(
                timestamp=timestamp,
                title="tool_error",
                content=Text(f"Failed to parse tool: {text}"),
                style=InfoStyle.ERROR,
            )
        call_id = tool.get("id") or tool.get("toolCallId")
        return ToolUse(
            timestamp=timestamp,
            tool_name=tool.get("tool") or "unknown",
            input=json_to_input_map({k: v for k, v in tool.items() if k not in ("tool", "id", "toolCallId")}),
            tool_call_id=call_id if isinstance(call_id, str) else None,
        )
    if ask == "followup":
        return Info(timestamp=timestamp, title="followup", subtitle="question", content=Text(text))
    if ask == "command":
        return Info(timestamp=timestamp, title="command", content=Text(text))
    return None
