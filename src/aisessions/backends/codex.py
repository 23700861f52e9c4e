"""Codex session backend.

Reads rollout logs from ~/.codex/sessions/YYYY/MM/DD/rollout-<ts>-<uuid>.jsonl
and from IDE-managed copies of the same tree. Only the last 30 days are
searched. The session id is the UUID at the end of the file name.

JSONL line types:
- "session_meta": cli version, cwd and git info.
- "response_item": the structured response log (messages, function calls
  and their outputs, custom tool calls, reasoning). Authoritative.
- "event_msg": the UI event stream. It repeats what response_item already
  records, so it is only used for list titles.
- "turn_context": per-turn settings, including the model.

Function call outputs are paired with their calls by ``call_id``.
"""

import json
import logging
import re
from collections import Counter
from datetime import date, timedelta
from pathlib import Path

from ..concurrency import map_isolated
from ..config import get_codex_paths
from ..core import (
    AssistantText,
    AssistantThinking,
    Code,
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
    iso_to_millis,
    json_to_input_map,
    model_histogram,
    to_json,
    truncate_content,
    truncate_title,
)
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

MAX_DAYS_TO_SEARCH = 30
LISTING_WORKERS = 4
METADATA_PARSE_LINES = 10
CUSTOM_INPUT_MAX_LENGTH = 2000

_SESSION_ID_RE = re.compile(r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$")
_INSTRUCTION_MARKERS = (
    "<permissions instructions>",
    "<environment_context>",
    "<user_instructions>",
    "# AGENTS.md instructions",
)


class CodexProvider(SessionProvider):
    """Provider for Codex rollout sessions."""

    source = Source.CODEX

    def __init__(self, home: Path | None = None, today: date | None = None):
        super().__init__(home)
        self.today = today

    def get_base_path(self) -> Path:
        return self.get_base_paths()[0]

    def get_base_paths(self) -> list[Path]:
        """Return the existing session roots, deduplicated by real path."""
        seen = set()
        paths = []
        for path in get_codex_paths(self.home):
            if not path.is_dir():
                continue
            real = path.resolve()
            if real not in seen:
                seen.add(real)
                paths.append(path)
        return paths or [get_codex_paths(self.home)[0]]

    def is_available(self) -> bool:
        return any(p.is_dir() for p in self.get_base_paths())

    def list_session_files(self) -> list[Path]:
        """Return rollout files from the search window, newest first.

        When the same session id appears under several roots, the most
        recently modified copy wins.
        """
        newest: dict[str, tuple[float, Path]] = {}
        for day_dir in self._day_dirs():
            try:
                files = list(day_dir.glob("rollout-*.jsonl"))
            except OSError as e:
                logger.warning("Failed to list %s: %s", day_dir, e)
                continue
            for path in files:
                session_id = extract_session_id(path)
                if session_id is None:
                    continue
                try:
                    mtime = path.stat().st_mtime
                except OSError:
                    continue
                existing = newest.get(session_id)
                if existing is None or mtime > existing[0]:
                    newest[session_id] = (mtime, path)

        ordered = sorted(newest.values(), key=lambda item: item[0], reverse=True)
        return [path for _, path in ordered]

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        files = self.list_session_files()
        if project_path:
            files = [f for f in files if _read_cwd(f) == project_path]
        return map_isolated(self._list_item, files, LISTING_WORKERS, label="codex listing")

    def find_session_file(self, session_id: str) -> Path | None:
        suffix = f"-{session_id}.jsonl"
        for day_dir in self._day_dirs():
            try:
                for path in day_dir.iterdir():
                    if path.name.endswith(suffix):
                        return path
            except OSError:
                continue
        return None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        return parse_file(path)

    # ── Private helpers ──────────────────────────────────────────────

    def _day_dirs(self) -> list[Path]:
        today = self.today or date.today()
        dirs = []
        for base in self.get_base_paths():
            for offset in range(MAX_DAYS_TO_SEARCH):
                day = today - timedelta(days=offset)
                day_dir = base / f"{day:%Y}" / f"{day:%m}" / f"{day:%d}"
                if day_dir.is_dir():
                    dirs.append(day_dir)
        return dirs

    def _list_item(self, path: Path) -> SessionListItem | None:
        session_id = extract_session_id(path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
            mtime = int(path.stat().st_mtime * 1000)
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return None

        meta = parse_listing_metadata(content)
        return SessionListItem(
            session_id=session_id or path.stem,
            title=meta.summary or "Untitled",
            source=Source.CODEX,
            created=iso_to_millis(meta.created) or mtime,
            updated=iso_to_millis(meta.modified) or mtime,
            message_count=meta.message_count,
        )


def extract_session_id(path: Path | str) -> str | None:
    """Return the trailing UUID of a rollout file name, or None."""
    name = Path(path).name
    if name.endswith(".jsonl"):
        name = name[: -len(".jsonl")]
    match = _SESSION_ID_RE.search(name)
    return match.group(1) if match else None


def _read_cwd(path: Path) -> str | None:
    """Read the cwd recorded in a rollout's session_meta line."""
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            first = f.readline().strip()
        entry = json.loads(first)
    except (json.JSONDecodeError, RecursionError, OSError):
        return None
    payload = entry.get("payload") if isinstance(entry, dict) else None
    cwd = payload.get("cwd") if isinstance(payload, dict) else None
    return cwd if isinstance(cwd, str) else None


# ── Parsing ──────────────────────────────────────────────────────


def parse_file(path: Path) -> SessionDetail | None:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Failed to read JSONL %s: %s", path, e)
        return None

    messages, metadata = parse_content(content)
    return SessionDetail(
        session_id=extract_session_id(path) or path.stem,
        title=derive_title(messages),
        messages=messages,
        metadata=metadata,
        source=Source.CODEX,
    )


def parse_content(content: str) -> tuple[list[Message], SessionMetadata]:
    """Parse rollout JSONL into messages and metadata (always present)."""
    messages: list[Message] = []
    metadata = SessionMetadata()
    seen_meta = False
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

        timestamp = entry.get("timestamp")
        if isinstance(timestamp, str):
            created = created or timestamp
            modified = timestamp
        else:
            timestamp = ""

        entry_type = entry.get("type")
        payload = entry.get("payload")
        if not isinstance(payload, dict):
            continue

        if entry_type == "session_meta" and not seen_meta:
            seen_meta = True
            git = payload.get("git")
            metadata.version = payload.get("cli_version")
            metadata.git_branch = git.get("branch") if isinstance(git, dict) else None
            metadata.cwd = payload.get("cwd")
        elif entry_type == "response_item":
            try:
                parsed = _parse_response_item(payload, timestamp)
            except (AttributeError, TypeError, ValueError, OverflowError) as e:
                logger.debug("Unexpected response_item at line %d: %s", line_num, e)
                continue
            if parsed is not None:
                messages.append(parsed)
                message_count += 1
        elif entry_type == "turn_context":
            model = payload.get("model")
            if isinstance(model, str):
                models[model] += 1

    metadata.created = created
    metadata.modified = modified
    metadata.message_count = message_count
    metadata.models = model_histogram(models)
    return correlate_tool_results(messages), metadata


def parse_listing_metadata(content: str) -> ListingMetadata:
    """Cheap metadata pass for list views; see the Claude Code backend."""
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
        payload = entry.get("payload") if isinstance(entry, dict) else None
        if not isinstance(payload, dict) or entry.get("type") != "event_msg":
            continue
        if payload.get("type") == "user_message":
            text = payload.get("message")
            if isinstance(text, str) and text:
                meta.summary = truncate_title(text)

    return meta


# ── Private helpers ──────────────────────────────────────────────


def _parse_response_item(payload: dict, timestamp: str) -> Message | None:
    item_type = payload.get("type")

    if item_type == "message":
        return _parse_message_payload(payload, timestamp)

    if item_type == "function_call":
        arguments = payload.get("arguments")
        tool_input: dict[str, str] = {}
        if isinstance(arguments, str):
            try:
                tool_input = json_to_input_map(json.loads(arguments))
            except (json.JSONDecodeError, RecursionError):
                tool_input = {"arguments": arguments}
        return ToolUse(
            timestamp=timestamp,
            tool_name=payload.get("name") or "function",
            input=tool_input,
            tool_call_id=payload.get("call_id"),
        )

    if item_type == "function_call_output":
        output = payload.get("output")
        if isinstance(output, dict):
            output = output.get("content") or to_json(output)
        return ToolResult(
            timestamp=timestamp,
            output=[Code(truncate_content(output))] if isinstance(output, str) and output else [],
            tool_call_id=payload.get("call_id"),
        )

    if item_type == "custom_tool_call":
        raw_input = payload.get("input")
        return ToolUse(
            timestamp=timestamp,
            tool_name=payload.get("name") or "tool",
            input={"input": raw_input[:CUSTOM_INPUT_MAX_LENGTH]} if isinstance(raw_input, str) else {},
            tool_call_id=payload.get("call_id"),
        )

    if item_type == "custom_tool_call_output":
        output = payload.get("output")
        if not isinstance(output, str) or not output:
            text = ""
        else:
            text = output
            try:
                inner = json.loads(output)
            except (json.JSONDecodeError, RecursionError):
                inner = None
            if isinstance(inner, dict) and isinstance(inner.get("output"), str):
                text = inner["output"]
        return ToolResult(
            timestamp=timestamp,
            output=[Code(truncate_content(text))] if text else [],
            tool_call_id=payload.get("call_id"),
        )

    if item_type == "reasoning":
        summary = payload.get("summary")
        texts = [
            item["text"] for item in (summary if isinstance(summary, list) else [])
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        if texts:
            return AssistantThinking(timestamp=timestamp, thinking="\n".join(texts))
        return None

    return None


def _parse_message_payload(payload: dict, timestamp: str) -> Message | None:
    role = payload.get("role")
    if role == "developer":
        return None

    content = payload.get("content")
    if not isinstance(content, list):
        return None

    if role == "assistant":
        blocks = [
            Markdown(item["text"]) for item in content
            if isinstance(item, dict) and item.get("type") in ("output_text", "text")
            and isinstance(item.get("text"), str) and item["text"]
        ]
        return AssistantText(timestamp=timestamp, content=blocks) if blocks else None

    blocks = []
    for item in content:
        if not isinstance(item, dict) or not isinstance(item.get("text"), str):
            continue
        text = item["text"]
        if item.get("type") == "input_text":
            if any(marker in text for marker in _INSTRUCTION_MARKERS):
                continue
            blocks.append(Text(text))
        elif item.get("type") == "text":
            blocks.append(Text(text))

    return User(timestamp=timestamp, content=blocks) if blocks else None
