"""OpenCode session backend.

Reads session data from ~/.local/share/opencode/storage/ directory.
Data is organized as a session/ -> message/ -> part/ hierarchy:

    session/<project id>/ses_*.json   {"id", "title", "directory", "time": {"created", "updated"}}
    message/<session id>/msg_*.json   {"id", "role", "time": {"created"}, "modelID" | "model": {...}, "error"}
    part/<message id>/prt_*.json      {"type": "text"|"reasoning"|"tool"|..., "time": {"start", "end"}}

Supports two storage versions:
- v1.0 (older): Messages contain only metadata; no part/ directories.
  Content is limited to summary.title on user messages.
- v1.1+ (newer): Full content stored in part/ directories.

Tool parts carry their state (input, output, status) inline, so results are
attached to the call directly.
"""

import json
import logging
from collections import Counter
from pathlib import Path

from ..config import get_opencode_path
from ..core import (
    AssistantText,
    AssistantThinking,
    Code,
    Info,
    InfoStyle,
    Json,
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
from ..formatting import (
    format_tool_output,
    is_number,
    json_to_input_map,
    millis_to_iso,
    model_histogram,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

_UNKNOWN_TIME = float("inf")


class OpenCodeProvider(SessionProvider):
    """Provider for OpenCode sessions."""

    source = Source.OPENCODE

    def get_base_path(self) -> Path:
        return get_opencode_path(self.home)

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        base = self.get_base_path()
        sessions = []
        for ses_file in self._session_files():
            data = _load(ses_file)
            if data is None or not isinstance(data.get("id"), str):
                continue
            if project_path and data.get("directory") != project_path:
                continue
            sessions.append(self._list_item(data, base))
        return sessions

    def find_session_file(self, session_id: str) -> Path | None:
        for ses_file in self._session_files():
            data = _load(ses_file)
            if data is not None and data.get("id") == session_id:
                return ses_file
        return None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        ses_file = self.find_session_file(session_id)
        if ses_file is None:
            return None
        data = _load(ses_file)
        if data is None:
            return None

        messages, models, file_count = self.load_messages(session_id)
        title = data.get("title")
        time_data = data.get("time") if isinstance(data.get("time"), dict) else {}
        directory = data.get("directory")
        return SessionDetail(
            session_id=session_id,
            title=truncate_title(title) if isinstance(title, str) and title else "Untitled",
            messages=messages,
            metadata=SessionMetadata(
                cwd=directory if isinstance(directory, str) else None,
                models=model_histogram(models),
                created=millis_to_iso(time_data.get("created")) or None,
                modified=millis_to_iso(time_data.get("updated")) or None,
                message_count=file_count,
            ),
            source=Source.OPENCODE,
        )

    def load_messages(self, session_id: str) -> tuple[list[Message], Counter, int]:
        """Load and parse a session's messages in creation order.

        Returns the messages, the model usage counter and the number of
        message files read.
        """
        base = self.get_base_path()
        msg_dir = base / "message" / session_id
        if not msg_dir.is_dir():
            return [], Counter(), 0

        loaded = []
        for msg_file in sorted(msg_dir.glob("*.json")):
            data = _load(msg_file)
            if data is None:
                continue
            loaded.append((data, self._load_parts(base, data.get("id"))))

        # messages without a creation time go last
        loaded.sort(key=lambda item: _time_field(item[0], "created"))

        messages: list[Message] = []
        models: Counter = Counter()
        for data, parts in loaded:
            model = _model_id(data)
            if model:
                models[model] += 1
            try:
                messages.extend(parse_message(data, parts))
            except (AttributeError, TypeError, ValueError, OverflowError) as e:
                logger.debug("Skipping message %s: %s", data.get("id"), e)
        return messages, models, len(loaded)

    # ── Private helpers ──────────────────────────────────────────────

    def _session_files(self) -> list[Path]:
        session_dir = self.get_base_path() / "session"
        if not session_dir.is_dir():
            return []
        files = []
        try:
            for project_dir in sorted(d for d in session_dir.iterdir() if d.is_dir()):
                files.extend(sorted(project_dir.glob("*.json")))
        except OSError as e:
            logger.warning("Failed to list %s: %s", session_dir, e)
        return files

    def _list_item(self, data: dict, base: Path) -> SessionListItem:
        ses_id = data["id"]
        title = data.get("title")
        time_data = data.get("time") if isinstance(data.get("time"), dict) else {}

        msg_dir = base / "message" / ses_id
        msg_count = 0
        if msg_dir.is_dir():
            msg_count = sum(1 for _ in msg_dir.glob("*.json"))

        return SessionListItem(
            session_id=ses_id,
            title=truncate_title(title) if isinstance(title, str) and title else "Untitled",
            source=Source.OPENCODE,
            created=_as_millis(time_data.get("created")),
            updated=_as_millis(time_data.get("updated")),
            message_count=msg_count,
        )

    def _load_parts(self, base: Path, message_id) -> list[dict]:
        if not isinstance(message_id, str):
            return []
        part_dir = base / "part" / message_id
        if not part_dir.is_dir():
            return []
        parts = []
        for part_file in sorted(part_dir.glob("*.json")):
            part = _load(part_file)
            if part is not None:
                parts.append(part)
        parts.sort(key=_part_sort_key)
        return parts


def _load(path: Path) -> dict | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, RecursionError, OSError) as e:
        logger.debug("Skipping unreadable %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


# ── Parsing ──────────────────────────────────────────────────────


def parse_message(data: dict, parts: list[dict]) -> list[Message]:
    """Convert one message file and its parts into messages."""
    timestamp = millis_to_iso(_time_field(data, "created", None))
    role = data.get("role")

    if role == "user":
        return [_parse_user(data, parts, timestamp)]
    if role == "assistant":
        return _parse_assistant(data, parts, timestamp)
    return [Info(timestamp=timestamp, title=str(role), content=Json(json.dumps(data, ensure_ascii=False)))]


def _parse_user(data: dict, parts: list[dict], timestamp: str) -> User:
    text = "\n\n".join(
        p["text"].strip() for p in parts
        if p.get("type") == "text" and isinstance(p.get("text"), str) and p["text"].strip()
    )
    if text:
        return User(timestamp=timestamp, content=[Text(text)])

    # v1.0: no parts, only the summary title survives
    summary = data.get("summary")
    title = summary.get("title") if isinstance(summary, dict) else None
    if isinstance(title, str) and title:
        return User(timestamp=timestamp, content=[Text(title)])

    raw = json.dumps(data, ensure_ascii=False)
    if not parts:
        return User(timestamp=timestamp, content=[Code(raw)])
    return User(timestamp=timestamp, content=[
        Text(f"User message with {len(parts)} part(s), no text content"),
        Code(raw),
    ])


def _parse_assistant(data: dict, parts: list[dict], timestamp: str) -> list[Message]:
    messages: list[Message] = []
    for part in parts:
        time_data = part.get("time") if isinstance(part.get("time"), dict) else {}
        start = time_data.get("start") if time_data.get("start") is not None else time_data.get("end")
        part_ts = millis_to_iso(start) or timestamp

        part_type = part.get("type")
        text = part.get("text")
        text = text.strip() if isinstance(text, str) else ""
        if part_type == "text":
            if text:
                messages.append(AssistantText(timestamp=part_ts, content=[Markdown(text)]))
        elif part_type == "reasoning":
            if text:
                messages.append(AssistantThinking(timestamp=part_ts, thinking=text))
        elif part_type == "tool":
            messages.append(_parse_tool_part(part, part_ts))
        # step-start, step-finish, patch, ...: lifecycle markers

    if messages:
        return messages

    error = data.get("error")
    if isinstance(error, dict):
        error_data = error.get("data")
        message = error_data.get("message") if isinstance(error_data, dict) else None
        name = error.get("name")
        return [Info(
            timestamp=timestamp,
            title="error",
            subtitle=name if isinstance(name, str) else None,
            content=Text(message if isinstance(message, str) else json.dumps(data, ensure_ascii=False)),
            style=InfoStyle.ERROR,
        )]

    raw = json.dumps(data, ensure_ascii=False)
    return [AssistantText(timestamp=timestamp, content=[Code(f"Assistant message with 0 part(s)\n{raw}")])]


def _parse_tool_part(part: dict, timestamp: str) -> ToolUse:
    state = part.get("state") if isinstance(part.get("state"), dict) else {}
    call_id = part.get("callID") if isinstance(part.get("callID"), str) else None
    name = part.get("tool") or "tool"

    results = []
    status = state.get("status")
    if status in ("completed", "error"):
        output = state.get("error") if status == "error" else state.get("output")
        results.append(ToolResult(
            timestamp=timestamp,
            output=format_tool_output(output),
            tool_name=name,
            tool_call_id=call_id,
            is_error=status == "error",
        ))

    return ToolUse(
        timestamp=timestamp,
        tool_name=name,
        input=json_to_input_map(state.get("input")),
        tool_call_id=call_id,
        results=results,
    )


# ── Private helpers ──────────────────────────────────────────────


def _as_millis(value) -> int:
    if is_number(value):
        return int(value)
    return 0


def _time_field(data: dict, key: str, default=_UNKNOWN_TIME):
    time_data = data.get("time")
    value = time_data.get(key) if isinstance(time_data, dict) else None
    if is_number(value) and value:
        return value
    return default


def _part_sort_key(part: dict):
    start = _time_field(part, "start", None)
    if start is not None:
        return start
    return _time_field(part, "end")


def _model_id(data: dict) -> str | None:
    model = data.get("model")
    if isinstance(model, dict) and isinstance(model.get("modelID"), str):
        return model["modelID"]
    if isinstance(data.get("modelID"), str):
        return data["modelID"]
    return None
