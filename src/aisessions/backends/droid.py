"""Droid (Factory CLI) session backend.

Reads sessions from ~/.factory/sessions/<sanitized project>/<id>.jsonl.
The first line is a ``session_start`` record carrying the id, title and cwd;
every following ``message`` line wraps an Anthropic-style message with
text, tool_use and tool_result blocks. ``*.settings.jsonl`` files sit
beside the sessions and are ignored.
"""

import json
import logging
from collections import Counter
from pathlib import Path

from ..config import get_droid_path
from ..core import (
    AssistantText,
    Code,
    ContentBlock,
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
from ..correlation import correlate_tool_results
from ..formatting import (
    first_user_text,
    flatten_tool_content,
    json_to_input_map,
    model_histogram,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Droid Session"


class DroidProvider(SessionProvider):
    """Provider for Droid sessions."""

    source = Source.DROID

    def get_base_path(self) -> Path:
        return get_droid_path(self.home)

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        sessions = []
        for project_dir, path in self._session_files():
            item = self._list_item(path, project_dir.name, project_path)
            if item:
                sessions.append(item)
        return sessions

    def find_session_file(self, session_id: str) -> Path | None:
        candidates = self._session_files()
        # file names usually are the id; fall back to reading session_start
        for _, path in candidates:
            if path.stem == session_id:
                return path
        for _, path in candidates:
            start = _read_session_start(path)
            if start and start.get("id") == session_id:
                return path
        return None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read JSONL %s: %s", path, e)
            return None
        return parse_content(content)

    # ── Private helpers ──────────────────────────────────────────────

    def _session_files(self) -> list[tuple[Path, Path]]:
        base = self.get_base_path()
        if not base.is_dir():
            return []
        files = []
        try:
            for project_dir in sorted(d for d in base.iterdir() if d.is_dir()):
                for path in sorted(project_dir.glob("*.jsonl")):
                    if not path.name.endswith(".settings.jsonl"):
                        files.append((project_dir, path))
        except OSError as e:
            logger.warning("Failed to list %s: %s", base, e)
        return files

    def _list_item(self, path: Path, dir_name: str, project_path: str | None) -> SessionListItem | None:
        start = _read_session_start(path)
        if start is None or not isinstance(start.get("id"), str):
            return None

        cwd = start.get("cwd")
        recorded_path = cwd if isinstance(cwd, str) else unsanitize_project_name(dir_name)
        if project_path and recorded_path != project_path:
            return None

        try:
            with path.open(encoding="utf-8", errors="replace") as f:
                line_count = sum(1 for line in f if line.strip())
            mtime = int(path.stat().st_mtime * 1000)
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return None

        title = start.get("title") or start.get("sessionTitle") or FALLBACK_TITLE
        return SessionListItem(
            session_id=start["id"],
            title=truncate_title(title),
            source=Source.DROID,
            created=mtime,
            updated=mtime,
            message_count=line_count - 1,
        )


def sanitize_project_path(project_path: str) -> str:
    """Map a project path to Droid's directory name ("/a/b" -> "-a-b")."""
    return project_path.replace("/", "-")


def unsanitize_project_name(name: str) -> str:
    """Best-effort inverse of ``sanitize_project_path``.

    Lossy: a dash that was part of a directory name becomes a separator.
    """
    return name.replace("-", "/")


def _read_session_start(path: Path) -> dict | None:
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            first = f.readline()
        entry = json.loads(first)
    except (json.JSONDecodeError, RecursionError, OSError):
        return None
    if isinstance(entry, dict) and entry.get("type") == "session_start":
        return entry
    return None


# ── Parsing ──────────────────────────────────────────────────────


def parse_content(content: str) -> SessionDetail | None:
    """Parse a session file; None unless it opens with a valid session_start."""
    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        start = json.loads(lines[0])
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(start, dict) or start.get("type") != "session_start":
        return None
    session_id = start.get("id")
    if not isinstance(session_id, str):
        return None

    messages: list[Message] = []
    tool_names: dict[str, str] = {}
    models: Counter = Counter()
    created = modified = None

    for line_num, line in enumerate(lines[1:], 2):
        try:
            entry = json.loads(line)
        except (json.JSONDecodeError, RecursionError) as e:
            logger.debug("Bad JSON at line %d: %s", line_num, e)
            continue
        if not isinstance(entry, dict) or entry.get("type") != "message":
            continue
        message = entry.get("message")
        if not isinstance(message, dict):
            continue
        content_blocks = message.get("content")
        if not isinstance(content_blocks, list):
            continue

        timestamp = entry.get("timestamp")
        if isinstance(timestamp, str):
            created = created or timestamp
            modified = timestamp
        else:
            timestamp = ""
        if isinstance(message.get("model"), str):
            models[message["model"]] += 1

        role = message.get("role")
        if role == "user":
            messages.extend(_parse_user_blocks(content_blocks, timestamp, tool_names))
        elif role == "assistant":
            messages.extend(_parse_assistant_blocks(content_blocks, timestamp, tool_names))

    messages = correlate_tool_results(messages)
    cwd = start.get("cwd")
    return SessionDetail(
        session_id=session_id,
        title=extract_title(start.get("title"), messages),
        messages=messages,
        metadata=SessionMetadata(
            cwd=cwd if isinstance(cwd, str) else None,
            models=model_histogram(models),
            created=created,
            modified=modified,
            message_count=len(messages),
        ),
        source=Source.DROID,
    )


def extract_title(session_title: str | None, messages: list[Message]) -> str:
    """Prefer the recorded title unless it is the "New Session" placeholder."""
    if isinstance(session_title, str) and session_title and session_title != "New Session":
        return session_title
    text = first_user_text(messages)
    return truncate_title(text) if text else FALLBACK_TITLE


def format_tool_result(content: str) -> list[ContentBlock]:
    """Render a tool result as a diff, JSON, or plain code block."""
    if "---" in content and "+++" in content:
        return [Code(content, "diff")]
    if content.lstrip().startswith("{"):
        try:
            json.loads(content)
        except (json.JSONDecodeError, RecursionError):
            pass
        else:
            return [Json(content)]
    return [Code(content)]


# ── Private helpers ──────────────────────────────────────────────


def _parse_user_blocks(blocks: list, timestamp: str, tool_names: dict[str, str]) -> list[Message]:
    messages: list[Message] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "tool_result":
            call_id = block.get("tool_use_id")
            messages.append(ToolResult(
                timestamp=timestamp,
                output=format_tool_result(flatten_tool_content(block.get("content"))),
                tool_name=tool_names.get(call_id) if call_id else None,
                tool_call_id=call_id,
                is_error=bool(block.get("is_error")),
            ))
        elif block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                messages.append(User(timestamp=timestamp, content=[Text(text)]))
    return messages


def _parse_assistant_blocks(blocks: list, timestamp: str, tool_names: dict[str, str]) -> list[Message]:
    messages: list[Message] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "tool_use":
            call_id = block.get("id") or ""
            name = block.get("name") or "tool"
            tool_names[call_id] = name
            messages.append(ToolUse(
                timestamp=timestamp,
                tool_name=name,
                input=json_to_input_map(block.get("input")),
                tool_call_id=call_id,
            ))
        elif block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                messages.append(AssistantText(timestamp=timestamp, content=[Markdown(text)]))
    return messages
