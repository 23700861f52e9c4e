"""Claude Code session backend.

Reads sessions from ~/.claude/projects/<project>/<session id>.jsonl, where
<project> is the project path with "/" replaced by "-" and ":" dropped.

JSONL entry types:
- "user": prompts (string or array of text blocks) and/or tool_result blocks.
- "assistant": text, thinking, tool_use and server_tool_use blocks.
- "tool_use", "tool_result", "thinking": standalone variants of the above.
- "queue-operation", "system", "summary": rendered as Info entries.
- anything else (file-history-snapshot, progress, ...): skipped.

Tool results are paired with their calls by ``tool_use_id``.
"""

import json
import logging
from collections import Counter
from pathlib import Path

from ..concurrency import map_isolated
from ..config import get_claude_code_path
from ..core import (
    AssistantText,
    AssistantThinking,
    Code,
    Info,
    InfoStyle,
    Json,
    ListingMetadata,
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
    extract_timestamp,
    flatten_tool_content,
    format_duration,
    is_number,
    iso_to_millis,
    json_to_input_map,
    model_histogram,
    to_json,
    truncate_content,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

LISTING_WORKERS = 4
METADATA_PARSE_LINES = 10


class ClaudeCodeProvider(SessionProvider):
    """Provider for Claude Code sessions."""

    source = Source.CLAUDE_CODE

    def get_base_path(self) -> Path:
        return get_claude_code_path(self.home)

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        files = []
        for project_dir in self._project_dirs(project_path):
            try:
                files.extend(sorted(project_dir.glob("*.jsonl")))
            except OSError as e:
                logger.warning("Failed to list %s: %s", project_dir, e)
        return map_isolated(self._list_item, files, LISTING_WORKERS, label="claude_code listing")

    def find_session_file(self, session_id: str) -> Path | None:
        for project_dir in self._project_dirs():
            candidate = project_dir / f"{session_id}.jsonl"
            if candidate.is_file():
                return candidate
        return None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        return parse_file(path)

    # ── Private helpers ──────────────────────────────────────────────

    def _project_dirs(self, project_path: str | None = None) -> list[Path]:
        base = self.get_base_path()
        if not base.is_dir():
            return []
        if project_path:
            project_dir = base / project_path_to_dir_name(project_path)
            return [project_dir] if project_dir.is_dir() else []
        try:
            return sorted(d for d in base.iterdir() if d.is_dir())
        except OSError as e:
            logger.warning("Failed to list %s: %s", base, e)
            return []

    def _list_item(self, path: Path) -> SessionListItem | None:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
            mtime = int(path.stat().st_mtime * 1000)
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return None

        meta = parse_listing_metadata(content)
        return SessionListItem(
            session_id=path.stem,
            title=meta.summary or "Untitled",
            source=Source.CLAUDE_CODE,
            created=iso_to_millis(meta.created) or mtime,
            updated=iso_to_millis(meta.modified) or mtime,
            message_count=meta.message_count,
        )


def project_path_to_dir_name(project_path: str) -> str:
    """Map a project path to Claude Code's project directory name."""
    return project_path.replace("/", "-").replace(":", "")


def dir_name_to_project_path(dir_name: str) -> str:
    """Best-effort inverse of ``project_path_to_dir_name``.

    Lossy: a dash in the original path comes back as a separator.
    """
    return dir_name.replace("-", "/")


# ── Parsing ──────────────────────────────────────────────────────


def parse_file(path: Path) -> SessionDetail | None:
    """Parse a session file into a SessionDetail, None if unreadable."""
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Failed to read JSONL %s: %s", path, e)
        return None

    messages, metadata = parse_content(content)
    return SessionDetail(
        session_id=path.stem,
        title=derive_title(messages),
        messages=messages,
        metadata=metadata,
        source=Source.CLAUDE_CODE,
    )


def parse_content(content: str) -> tuple[list[Message], SessionMetadata | None]:
    """Parse JSONL content into messages and session metadata.

    Malformed lines are skipped. Metadata is None when the content has no
    user or assistant entries.
    """
    messages: list[Message] = []
    metadata: SessionMetadata | None = None
    created = modified = None
    message_count = 0
    models: Counter = Counter()

    for line_num, line in enumerate(content.splitlines(), 1):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            entry = json.loads(line)
        except (json.JSONDecodeError, RecursionError) as e:
            logger.debug("Bad JSON at line %d: %s", line_num, e)
            continue
        if not isinstance(entry, dict):
            continue

        entry_type = entry.get("type")
        timestamp = entry.get("timestamp")
        if not isinstance(timestamp, str):
            snapshot = entry.get("snapshot")
            timestamp = snapshot.get("timestamp") if isinstance(snapshot, dict) else None
        if isinstance(timestamp, str):
            created = created or timestamp
            modified = timestamp

        if metadata is None and entry_type in ("user", "assistant"):
            metadata = SessionMetadata(
                version=entry.get("version"),
                git_branch=entry.get("gitBranch") or None,
                cwd=entry.get("cwd"),
            )

        message = entry.get("message")
        if not isinstance(message, dict):
            message = {}
        model = message.get("model")
        if isinstance(model, str):
            models[model] += 1

        # entries without a timestamp (e.g. summary records) are not rendered
        if not isinstance(timestamp, str):
            continue
        try:
            parsed = _entry_to_messages(entry_type, message, entry, line, timestamp)
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Unexpected entry shape at line %d: %s", line_num, e)
            continue
        if parsed:
            messages.extend(parsed)
            message_count += 1

    messages = correlate_tool_results(messages)

    if metadata is not None:
        metadata.created = created
        metadata.modified = modified
        metadata.message_count = message_count
        metadata.models = model_histogram(models)
    return messages, metadata


def parse_listing_metadata(content: str) -> ListingMetadata:
    """Cheap metadata pass for list views.

    Every JSON line is counted and its timestamp pulled out by substring
    search; only the first few lines are decoded to find the title.
    """
    meta = ListingMetadata()
    parsed_lines = 0

    for line in content.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        meta.message_count += 1

        timestamp = extract_timestamp(line)
        if timestamp is not None:
            meta.created = meta.created or timestamp
            meta.modified = timestamp

        if parsed_lines >= METADATA_PARSE_LINES or meta.summary is not None:
            continue
        parsed_lines += 1
        try:
            entry = json.loads(line)
        except (json.JSONDecodeError, RecursionError):
            continue
        if not isinstance(entry, dict) or entry.get("isMeta") or entry.get("type") != "user":
            continue

        message = entry.get("message")
        body = message.get("content") if isinstance(message, dict) else None
        if isinstance(body, str):
            if "<command-name>" in body or "<local-command-stdout>" in body:
                continue
            text = body
        elif isinstance(body, list):
            text = "".join(
                item["text"] for item in body
                if isinstance(item, dict) and isinstance(item.get("text"), str)
            )
        else:
            continue
        if text:
            meta.summary = truncate_title(text)

    return meta


# ── Private helpers ──────────────────────────────────────────────


def _entry_to_messages(
    entry_type: str | None,
    message: dict,
    entry: dict,
    raw_line: str,
    timestamp: str,
) -> list[Message]:
    """Convert one JSONL entry to zero or more messages."""
    if entry_type is None:
        return [Info(
            timestamp=timestamp,
            title="error",
            subtitle="schema",
            content=Text(f"Schema Error: Missing 'type' field in this conversation entry.\n{raw_line}"),
            style=InfoStyle.ERROR,
        )]

    if entry_type == "user":
        return _parse_user_entry(message, timestamp)
    if entry_type == "assistant":
        return _parse_assistant_entry(message, timestamp)
    if entry_type == "tool_use":
        return _parse_tool_use_entry(message, timestamp)
    if entry_type == "tool_result":
        return [_parse_tool_result_entry(message, entry, timestamp)]
    if entry_type == "thinking":
        return [_parse_thinking_entry(message, timestamp)]
    if entry_type == "queue-operation":
        queued = entry.get("content")
        return [Info(
            timestamp=timestamp,
            title="queue",
            subtitle=entry.get("operation") or "unknown",
            content=Text(queued) if isinstance(queued, str) and queued else None,
        )]
    if entry_type == "system":
        return [_parse_system_entry(message, entry, raw_line, timestamp)]
    if entry_type == "summary":
        summary = entry.get("summary")
        return [Info(
            timestamp=timestamp,
            title="summary",
            content=Markdown(summary) if isinstance(summary, str) else Json(raw_line),
        )]
    return []


def _parse_user_entry(message: dict, timestamp: str) -> list[Message]:
    """Parse a user entry.

    Text blocks become one User message; each tool_result block becomes its
    own ToolResult so it can be attached to the matching call.
    """
    content = message.get("content")
    if isinstance(content, str):
        return [User(timestamp=timestamp, content=[Text(content)])]
    if not isinstance(content, list):
        return [User(timestamp=timestamp, content=[
            Code(f"[User Message - Unrecognized format] {to_json(message)[:1000]}"),
        ])]

    blocks = []
    results = []
    for item in content:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text":
            text = item.get("text") or ""
            if text:
                blocks.append(Text(text))
        elif item_type == "tool_result":
            output = flatten_tool_content(item.get("content"))
            results.append(ToolResult(
                timestamp=timestamp,
                output=[Code(truncate_content(output))] if output else [],
                tool_call_id=item.get("tool_use_id"),
                is_error=bool(item.get("is_error")),
            ))
        else:
            blocks.append(Code(f"[Unknown Content: {item_type}] {to_json(item)[:1000]}"))

    messages: list[Message] = []
    if blocks:
        messages.append(User(timestamp=timestamp, content=blocks))
    messages.extend(results)
    if not messages:
        messages.append(User(timestamp=timestamp, content=[
            Code(f"[User Message - No parsable content] {to_json(message)[:1000]}"),
        ]))
    return messages


def _parse_assistant_entry(message: dict, timestamp: str) -> list[Message]:
    """Parse an assistant entry.

    A thinking-only entry becomes AssistantThinking. Otherwise text and
    thinking blocks form one AssistantText, followed by one ToolUse per
    tool_use block. tool_result blocks in the same entry are attached to
    their call directly.
    """
    content = message.get("content")
    if isinstance(content, str):
        content = [{"type": "text", "text": content}]
    if not isinstance(content, list):
        content = []

    blocks = []
    thinking = []
    has_text = False
    tool_uses: list[ToolUse] = []
    results: list[ToolResult] = []

    for item in content:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text":
            has_text = True
            text = item.get("text") or ""
            if text:
                blocks.append(Markdown(text))
        elif item_type == "thinking":
            text = item.get("thinking")
            if isinstance(text, str):
                thinking.append(text)
                blocks.append(Markdown(text))
        elif item_type in ("tool_use", "server_tool_use"):
            tool_uses.append(ToolUse(
                timestamp=timestamp,
                tool_name=item.get("name") or "tool",
                input=json_to_input_map(item.get("input")),
                tool_call_id=item.get("id"),
            ))
        elif item_type == "tool_result":
            output = flatten_tool_content(item.get("content"))
            results.append(ToolResult(
                timestamp=timestamp,
                output=[Code(truncate_content(output))] if output else [],
                tool_call_id=item.get("tool_use_id"),
                is_error=bool(item.get("is_error")),
            ))
        else:
            has_text = True
            blocks.append(Code(f"[Unknown Content: {item_type}] {to_json(item)[:1000]}"))

    messages: list[Message] = []
    if thinking and not has_text:
        messages.append(AssistantThinking(timestamp=timestamp, thinking="\n\n".join(thinking)))
    elif blocks:
        messages.append(AssistantText(timestamp=timestamp, content=blocks))

    by_id = {t.tool_call_id: t for t in tool_uses if t.tool_call_id}
    for result in results:
        call = by_id.get(result.tool_call_id)
        if call is not None:
            result.tool_name = call.tool_name
            call.results.append(result)
    messages.extend(tool_uses)
    messages.extend(r for r in results if r.tool_call_id not in by_id)

    if not messages:
        messages.append(AssistantText(timestamp=timestamp, content=[
            Code(f"[Assistant Message - No parsable content] {to_json(message)[:1000]}"),
        ]))
    return messages


def _parse_tool_use_entry(message: dict, timestamp: str) -> list[Message]:
    content = message.get("content")
    tool_uses: list[Message] = [
        ToolUse(
            timestamp=timestamp,
            tool_name=item.get("name") or "tool",
            input=json_to_input_map(item.get("input")),
            tool_call_id=item.get("id"),
        )
        for item in (content if isinstance(content, list) else [])
        if isinstance(item, dict) and item.get("type") == "tool_use"
    ]
    return tool_uses or [ToolUse(timestamp=timestamp, tool_name="tool")]


def _parse_tool_result_entry(message: dict, entry: dict, timestamp: str) -> ToolResult:
    body = entry.get("content", message.get("content"))
    if body is None:
        result = message.get("result", entry.get("result"))
        output = result if isinstance(result, str) else to_json(message or entry)[:1000]
    else:
        output = flatten_tool_content(body)
    return ToolResult(
        timestamp=timestamp,
        output=[Code(truncate_content(output))] if output else [],
        tool_call_id=entry.get("tool_use_id") or message.get("tool_use_id"),
        is_error=bool(entry.get("is_error") or message.get("is_error")),
    )


def _parse_thinking_entry(message: dict, timestamp: str) -> AssistantThinking:
    content = message.get("content")
    parts = [
        item["thinking"]
        for item in (content if isinstance(content, list) else [])
        if isinstance(item, dict) and item.get("type") == "thinking" and isinstance(item.get("thinking"), str)
    ]
    return AssistantThinking(
        timestamp=timestamp,
        thinking="\n\n".join(parts) or "[Thinking message with no parsable content]",
    )


def _parse_system_entry(message: dict, entry: dict, raw_line: str, timestamp: str) -> Info:
    subtype = entry.get("subtype")
    if subtype == "turn_duration":
        duration = entry.get("durationMs")
        return Info(
            timestamp=timestamp,
            title="duration",
            subtitle="turn_duration",
            content=Text(format_duration(int(duration))) if is_number(duration) else Json(raw_line),
        )

    text = message.get("content")
    if not isinstance(text, str):
        text = entry.get("content")
    return Info(
        timestamp=timestamp,
        title="system",
        subtitle=subtype,
        content=Text(text) if isinstance(text, str) else Json(raw_line),
        style=InfoStyle.ERROR if entry.get("level") == "error" else InfoStyle.DEFAULT,
    )
