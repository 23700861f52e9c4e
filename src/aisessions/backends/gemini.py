"""Gemini CLI session backend.

Reads sessions from ~/.gemini/tmp/<project hash>/chats/session-*.json. The
project directory holds a ``.project_root`` file with the real project path.
Each session file is one JSON document:

    {"sessionId": "...", "startTime": "...", "lastUpdated": "...",
     "messages": [{"type": "user"|"gemini"|"error"|"info", "timestamp": "...",
                   "content": str | [{"text": ...}], "model": "...",
                   "thoughts": [...], "toolCalls": [...]}]}

Tool calls carry their results inline, so no cross-record pairing is needed.
"""

import json
import logging
from collections import Counter
from pathlib import Path

from ..config import get_gemini_path
from ..core import (
    AssistantText,
    AssistantThinking,
    Code,
    ContentBlock,
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
from ..formatting import (
    iso_to_millis,
    json_to_input_map,
    model_histogram,
    primitive_text,
    to_json,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Gemini Session"


class GeminiProvider(SessionProvider):
    """Provider for Gemini CLI sessions."""

    source = Source.GEMINI

    def get_base_path(self) -> Path:
        return get_gemini_path(self.home)

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        sessions = []
        for project_dir in self._project_dirs():
            project_root = read_project_root(project_dir)
            if project_root is None:
                continue
            if project_path and project_root != project_path:
                continue
            for path in _chat_files(project_dir):
                item = self._list_item(path)
                if item:
                    sessions.append(item)
        return sessions

    def find_session_file(self, session_id: str) -> Path | None:
        for project_dir in self._project_dirs():
            for path in _chat_files(project_dir):
                data = _load(path)
                if data is not None and data.get("sessionId") == session_id:
                    return path
        return None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read session %s: %s", path, e)
            return None
        return parse_content(content)

    # ── Private helpers ──────────────────────────────────────────────

    def _project_dirs(self) -> list[Path]:
        base = self.get_base_path()
        if not base.is_dir():
            return []
        try:
            return sorted(d for d in base.iterdir() if d.is_dir())
        except OSError as e:
            logger.warning("Failed to list %s: %s", base, e)
            return []

    def _list_item(self, path: Path) -> SessionListItem | None:
        data = _load(path)
        if data is None or not isinstance(data.get("sessionId"), str):
            return None
        messages = data.get("messages")
        messages = messages if isinstance(messages, list) else []
        return SessionListItem(
            session_id=data["sessionId"],
            title=extract_title(messages),
            source=Source.GEMINI,
            created=iso_to_millis(data.get("startTime")),
            updated=iso_to_millis(data.get("lastUpdated")),
            message_count=len(messages),
        )


def read_project_root(project_dir: Path) -> str | None:
    """Return the project path recorded in ``.project_root``, if any."""
    try:
        text = (project_dir / ".project_root").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


def _chat_files(project_dir: Path) -> list[Path]:
    chats = project_dir / "chats"
    if not chats.is_dir():
        return []
    return sorted(chats.glob("session-*.json"))


def _load(path: Path) -> dict | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (json.JSONDecodeError, RecursionError, OSError) as e:
        logger.debug("Skipping unreadable session %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


# ── Parsing ──────────────────────────────────────────────────────


def parse_content(content: str) -> SessionDetail | None:
    """Parse a session document; None if it is not a JSON object."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.debug("Bad session JSON: %s", e)
        return None
    if not isinstance(data, dict):
        return None

    raw_messages = data.get("messages")
    if not isinstance(raw_messages, list):
        raw_messages = []

    messages: list[Message] = []
    models: Counter = Counter()
    for index, raw in enumerate(raw_messages):
        if not isinstance(raw, dict):
            continue
        if isinstance(raw.get("model"), str):
            models[raw["model"]] += 1
        try:
            messages.extend(_parse_message(raw))
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Skipping message %d: %s", index, e)

    session_id = data.get("sessionId")
    start, last = data.get("startTime"), data.get("lastUpdated")
    return SessionDetail(
        session_id=session_id if isinstance(session_id, str) else "",
        title=extract_title(raw_messages),
        messages=messages,
        metadata=SessionMetadata(
            models=model_histogram(models),
            created=start if isinstance(start, str) else None,
            modified=last if isinstance(last, str) else None,
            message_count=len(messages),
        ),
        source=Source.GEMINI,
    )


def extract_title(raw_messages: list) -> str:
    for raw in raw_messages:
        if isinstance(raw, dict) and raw.get("type") == "user":
            text = _extract_text(raw.get("content"))
            if text.strip():
                return truncate_title(text)
    return FALLBACK_TITLE


# ── Private helpers ──────────────────────────────────────────────


def _extract_text(content) -> str:
    """Content is either a string or a list of ``{"text": ...}`` parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item["text"] for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        )
    return ""


def _parse_message(raw: dict) -> list[Message]:
    timestamp = raw.get("timestamp")
    if not isinstance(timestamp, str):
        timestamp = ""
    msg_type = raw.get("type")
    text = _extract_text(raw.get("content"))

    if msg_type == "user":
        return [User(timestamp=timestamp, content=[Text(text)])]

    if msg_type == "gemini":
        messages: list[Message] = []
        for thought in raw.get("thoughts") or []:
            if not isinstance(thought, dict):
                continue
            thought_ts = thought.get("timestamp")
            messages.append(AssistantThinking(
                timestamp=thought_ts if isinstance(thought_ts, str) else timestamp,
                thinking=f"[{thought.get('subject') or ''}]\n{thought.get('description') or ''}",
            ))
        for call in raw.get("toolCalls") or []:
            if isinstance(call, dict):
                messages.append(_parse_tool_call(call, timestamp))
        if text.strip():
            messages.append(AssistantText(timestamp=timestamp, content=[Markdown(text)]))
        return messages

    if msg_type == "error":
        return [Info(timestamp=timestamp, title="error", content=Text(text), style=InfoStyle.ERROR)]

    if msg_type == "info":
        return [Info(timestamp=timestamp, title="info", content=Text(text))]

    return []


def _parse_tool_call(call: dict, timestamp: str) -> ToolUse:
    """Build a ToolUse with its function responses and file diff attached."""
    call_id = call.get("id") or ""
    name = call.get("displayName") or call.get("name") or "tool"
    is_error = call.get("status") == "error"

    results = []
    for item in call.get("result") or []:
        response = item.get("functionResponse", {}).get("response") if isinstance(item, dict) else None
        if not isinstance(response, dict) or "output" not in response:
            continue
        output = response["output"]
        text = primitive_text(output)
        results.append(ToolResult(
            timestamp=timestamp,
            output=_format_output(text if text is not None else to_json(output)),
            tool_name=name,
            tool_call_id=call_id,
            is_error=is_error,
        ))

    display = call.get("resultDisplay")
    file_diff = display.get("fileDiff") if isinstance(display, dict) else None
    if isinstance(file_diff, str) and file_diff:
        results.append(ToolResult(
            timestamp=timestamp,
            output=[Code(file_diff, "diff")],
            tool_name=name,
            tool_call_id=call_id,
        ))

    return ToolUse(
        timestamp=timestamp,
        tool_name=name,
        input=json_to_input_map(call.get("args")),
        tool_call_id=call_id,
        results=results,
    )


def _format_output(output: str) -> list[ContentBlock]:
    if "---" in output and "+++" in output:
        return [Code(output, "diff")]
    return [Code(output)]
