"""Amp session backend.

Reads threads from ~/.local/share/amp/threads/T-*.json. Each thread is a
single JSON document:

    {"id": "T-...", "created": <epoch ms>,
     "env": {"initial": {"trees": [{"uri": "file:///path/to/project"}]}},
     "messages": [{"role": "user"|"assistant", "content": [...],
                   "usage": {"model": "...", "timestamp": "..."}}]}

Assistant content holds text, thinking and tool_use blocks; user content
holds text and tool_result blocks, which point back at their call via
``toolUseID``.
"""

import json
import logging
from collections import Counter
from pathlib import Path

from ..config import get_amp_path
from ..core import (
    AssistantText,
    AssistantThinking,
    Code,
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
    derive_title,
    is_number,
    json_to_input_map,
    millis_to_iso,
    model_histogram,
    path_in_project,
    primitive_text,
    to_json,
    truncate_content,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)


class AmpProvider(SessionProvider):
    """Provider for Amp threads."""

    source = Source.AMP

    def get_base_path(self) -> Path:
        return get_amp_path(self.home)

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        base = self.get_base_path()
        if not base.is_dir():
            return []

        sessions = []
        for path in sorted(base.glob("T-*.json")):
            item = self._list_item(path, project_path)
            if item:
                sessions.append(item)
        return sessions

    def find_session_file(self, session_id: str) -> Path | None:
        path = self.get_base_path() / f"{session_id}.json"
        return path if path.is_file() else None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read thread %s: %s", path, e)
            return None
        return parse_content(content)

    # ── Private helpers ──────────────────────────────────────────────

    def _list_item(self, path: Path, project_path: str | None) -> SessionListItem | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
            mtime = int(path.stat().st_mtime * 1000)
        except (json.JSONDecodeError, RecursionError, OSError) as e:
            logger.warning("Failed to read thread %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            return None

        if project_path:
            cwd = extract_cwd(data)
            if cwd and not path_in_project(cwd, project_path):
                return None

        messages = data.get("messages")
        created = _as_millis(data.get("created"))
        prompt = _first_prompt(data)
        return SessionListItem(
            session_id=path.stem,
            title=truncate_title(prompt) if prompt else "Untitled",
            source=Source.AMP,
            created=created,
            updated=max(created, mtime),
            message_count=len(messages) if isinstance(messages, list) else 0,
        )


def extract_cwd(data: dict) -> str | None:
    """Return the thread's workspace root from ``env.initial.trees[0].uri``."""
    env = data.get("env")
    initial = env.get("initial") if isinstance(env, dict) else None
    trees = initial.get("trees") if isinstance(initial, dict) else None
    if not isinstance(trees, list) or not trees or not isinstance(trees[0], dict):
        return None
    uri = trees[0].get("uri")
    if not isinstance(uri, str):
        return None
    return uri.removeprefix("file://")


# ── Parsing ──────────────────────────────────────────────────────


def parse_content(content: str) -> SessionDetail | None:
    """Parse a thread document; None if it is not valid JSON or has no id."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.debug("Bad thread JSON: %s", e)
        return None
    if not isinstance(data, dict) or not isinstance(data.get("id"), str):
        return None

    raw_messages = data.get("messages")
    if not isinstance(raw_messages, list):
        raw_messages = []

    messages: list[Message] = []
    models: Counter = Counter()
    for index, raw in enumerate(raw_messages):
        if not isinstance(raw, dict):
            continue
        usage = raw.get("usage")
        if isinstance(usage, dict) and isinstance(usage.get("model"), str):
            models[usage["model"]] += 1
        try:
            messages.extend(_parse_message(raw))
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Skipping message %d: %s", index, e)

    messages = correlate_tool_results(messages)
    created = millis_to_iso(_as_millis(data.get("created")))
    return SessionDetail(
        session_id=data["id"],
        title=derive_title(messages),
        messages=messages,
        metadata=SessionMetadata(
            cwd=extract_cwd(data),
            models=model_histogram(models),
            created=created,
            modified=created,
            message_count=len(messages),
        ),
        source=Source.AMP,
    )


# ── Private helpers ──────────────────────────────────────────────


def _as_millis(value) -> int:
    if is_number(value):
        return int(value)
    return 0


def _first_prompt(data: dict) -> str | None:
    messages = data.get("messages")
    for message in messages if isinstance(messages, list) else []:
        if not isinstance(message, dict) or message.get("role") != "user":
            continue
        content = message.get("content")
        for block in content if isinstance(content, list) else []:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str) and text.strip():
                    return text
    return None


def _parse_message(message: dict) -> list[Message]:
    role = message.get("role")
    usage = message.get("usage")
    timestamp = usage.get("timestamp") if isinstance(usage, dict) else None
    if not isinstance(timestamp, str):
        timestamp = ""

    content = message.get("content")
    if not isinstance(content, list):
        return []
    if role == "user":
        return _parse_user_message(timestamp, content)
    if role == "assistant":
        return _parse_assistant_message(timestamp, content)
    return []


def _parse_user_message(timestamp: str, content: list) -> list[Message]:
    """Text blocks form one User message; tool results stand alone."""
    blocks = []
    results: list[Message] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                blocks.append(Text(text))
        elif block_type == "tool_result":
            result = _parse_tool_result(timestamp, block)
            if result is not None:
                results.append(result)

    messages: list[Message] = []
    if blocks:
        messages.append(User(timestamp=timestamp, content=blocks))
    messages.extend(results)
    return messages


def _parse_tool_result(timestamp: str, block: dict) -> ToolResult | None:
    run = block.get("run")
    if not isinstance(run, dict):
        return None

    result = run.get("result")
    # edit results that only carry a diff repeat what the tool_use input shows
    if isinstance(result, dict) and "diff" in result and len(result) <= 2:
        return None

    error = run.get("error")
    if error is not None:
        text = primitive_text(error)
        output = f"Error: {text if text is not None else to_json(error)}"
    elif isinstance(result, dict):
        text = primitive_text(result.get("content"))
        output = text if text is not None else to_json(result)
    elif result is not None:
        text = primitive_text(result)
        output = text if text is not None else to_json(result)
    else:
        output = f"[{run.get('status')}]"

    return ToolResult(
        timestamp=timestamp,
        output=[Code(truncate_content(output))],
        tool_call_id=block.get("toolUseID") or block.get("tool_use_id"),
        is_error=error is not None or run.get("status") == "error",
    )


def _parse_assistant_message(timestamp: str, content: list) -> list[Message]:
    """Thinking goes first, text is flushed before each tool call."""
    messages: list[Message] = []
    text_blocks = []
    thinking = None

    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "thinking":
            text = block.get("thinking")
            if isinstance(text, str) and text.strip():
                thinking = AssistantThinking(timestamp=timestamp, thinking=text)
        elif block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                text_blocks.append(Markdown(text))
        elif block_type == "tool_use":
            if text_blocks:
                messages.append(AssistantText(timestamp=timestamp, content=text_blocks))
                text_blocks = []
            messages.append(ToolUse(
                timestamp=timestamp,
                tool_name=block.get("name") or "tool",
                input=json_to_input_map(block.get("input")),
                tool_call_id=block.get("id"),
            ))

    if thinking is not None:
        messages.insert(0, thinking)
    if text_blocks:
        messages.append(AssistantText(timestamp=timestamp, content=text_blocks))
    if not messages:
        messages.append(AssistantText(timestamp=timestamp, content=[Text("[Empty assistant message]")]))
    return messages
