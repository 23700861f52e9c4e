"""Junie session backend.

Reads ~/.junie/sessions/index.jsonl for the session list and
~/.junie/sessions/<id>/events.jsonl for the transcript.

events.jsonl lines are either ``UserPromptEvent`` records or
``SessionA2uxEvent`` records wrapping an ``event.agentEvent``. Block events
(tool, terminal, viewed files, file changes, result) are re-sent as they
progress, each time with the same ``stepId``; only the last version of each
step is kept, at the position where the step first appeared. Tool output
lives on the same event as the call, so no cross-record pairing is needed.
Junie records no per-event timestamps.
"""

import json
import logging
import re
from collections import Counter
from pathlib import Path

from ..config import get_junie_path
from ..core import (
    AssistantText,
    Code,
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
from ..formatting import derive_title, is_number, model_histogram, path_in_project, truncate_title
from ..provider import SessionProvider

logger = logging.getLogger(__name__)

INDEX_FILE = "index.jsonl"
EVENTS_FILE = "events.jsonl"

STEP_EVENT_KINDS = frozenset({
    "ToolBlockUpdatedEvent",
    "TerminalBlockUpdatedEvent",
    "ViewFilesBlockUpdatedEvent",
    "FileChangesBlockUpdatedEvent",
    "ResultBlockUpdatedEvent",
})

_CD_RE = re.compile(r'"command"\s*:\s*"cd\s+(/[^\s"&;\\]+)')


class JunieProvider(SessionProvider):
    """Provider for Junie sessions."""

    source = Source.JUNIE

    def get_base_path(self) -> Path:
        return get_junie_path(self.home)

    def read_index(self) -> list[dict]:
        """Return index entries, most recently updated first."""
        index = self.get_base_path() / INDEX_FILE
        entries = []
        try:
            with index.open(encoding="utf-8", errors="replace") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except (json.JSONDecodeError, RecursionError) as e:
                        logger.debug("Bad JSON at %s:%d: %s", index, line_num, e)
                        continue
                    if isinstance(entry, dict) and isinstance(entry.get("sessionId"), str):
                        entries.append(entry)
        except OSError:
            return []
        entries.sort(key=lambda e: _as_millis(e.get("updatedAt")), reverse=True)
        return entries

    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        sessions = []
        for entry in self.read_index():
            session_id = entry["sessionId"]
            if project_path:
                cwd = self.extract_cwd(session_id)
                if cwd and not path_in_project(cwd, project_path):
                    continue
            task_name = entry.get("taskName")
            sessions.append(SessionListItem(
                session_id=session_id,
                title=truncate_title(task_name) if isinstance(task_name, str) and task_name else "Untitled",
                source=Source.JUNIE,
                created=_as_millis(entry.get("createdAt")),
                updated=_as_millis(entry.get("updatedAt")),
            ))
        return sessions

    def find_session_file(self, session_id: str) -> Path | None:
        path = self.get_base_path() / session_id / EVENTS_FILE
        return path if path.is_file() else None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        path = self.find_session_file(session_id)
        if path is None:
            return None
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read events %s: %s", path, e)
            return None

        messages, metadata = parse_content(content)
        task_name = next(
            (e.get("taskName") for e in self.read_index() if e["sessionId"] == session_id),
            None,
        )
        if isinstance(task_name, str) and task_name:
            title = truncate_title(task_name)
        else:
            title = derive_title(messages)
        metadata.cwd = self.extract_cwd(session_id)
        return SessionDetail(
            session_id=session_id,
            title=title,
            messages=messages,
            metadata=metadata,
            source=Source.JUNIE,
        )

    def extract_cwd(self, session_id: str) -> str | None:
        """Guess the working directory from the first ``cd`` the agent ran.

        Scans raw lines and only regex-matches terminal events, so the large
        agent-state blobs are never decoded.
        """
        path = self.find_session_file(session_id)
        if path is None:
            return None
        try:
            with path.open(encoding="utf-8", errors="replace") as f:
                for line in f:
                    if "AgentStateUpdatedEvent" in line or "TerminalBlockUpdatedEvent" not in line:
                        continue
                    match = _CD_RE.search(line)
                    if match:
                        return match.group(1)
        except OSError:
            return None
        return None


# ── Parsing ──────────────────────────────────────────────────────


def parse_content(content: str) -> tuple[list[Message], SessionMetadata]:
    """Parse events.jsonl content into messages and metadata."""
    records = []
    for line_num, line in enumerate(content.splitlines(), 1):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            record = json.loads(line)
        except (json.JSONDecodeError, RecursionError) as e:
            logger.debug("Bad JSON at line %d: %s", line_num, e)
            continue
        if isinstance(record, dict):
            records.append(record)

    # last version of each step wins
    latest_steps: dict[str, dict] = {}
    for record in records:
        agent_event = _agent_event(record)
        if agent_event is not None and _step_id(agent_event) is not None:
            latest_steps[_step_id(agent_event)] = agent_event

    messages: list[Message] = []
    models: Counter = Counter()
    emitted_steps = set()
    for record in records:
        if record.get("kind") == "UserPromptEvent":
            prompt = record.get("prompt")
            if isinstance(prompt, str):
                messages.append(User(timestamp="", content=[Text(prompt)]))
            continue

        agent_event = _agent_event(record)
        if agent_event is None:
            continue
        step_id = _step_id(agent_event)
        if step_id is not None:
            if step_id in emitted_steps:
                continue
            emitted_steps.add(step_id)
            agent_event = latest_steps[step_id]

        try:
            messages.extend(_event_to_messages(agent_event, models))
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Skipping %s: %s", agent_event.get("kind"), e)

    metadata = SessionMetadata(message_count=len(messages), models=model_histogram(models))
    return messages, metadata


# ── Private helpers ──────────────────────────────────────────────


def _as_millis(value) -> int:
    if is_number(value):
        return int(value)
    return 0


def _agent_event(record: dict) -> dict | None:
    if record.get("kind") != "SessionA2uxEvent":
        return None
    event = record.get("event")
    agent_event = event.get("agentEvent") if isinstance(event, dict) else None
    if isinstance(agent_event, dict) and isinstance(agent_event.get("kind"), str):
        return agent_event
    return None


def _step_id(agent_event: dict) -> str | None:
    step_id = agent_event.get("stepId")
    if isinstance(step_id, str) and agent_event.get("kind") in STEP_EVENT_KINDS:
        return step_id
    return None


def _text(value) -> str | None:
    return value if isinstance(value, str) else None


def _event_to_messages(agent_event: dict, models: Counter) -> list[Message]:
    kind = agent_event.get("kind")

    if kind == "LlmResponseMetadataEvent":
        for usage in agent_event.get("modelUsage") or []:
            if isinstance(usage, dict) and isinstance(usage.get("model"), str):
                models[usage["model"]] += 1
        return []

    if kind == "ToolBlockUpdatedEvent":
        return [_tool_use("tool", "action", _text(agent_event.get("text")), _text(agent_event.get("details")))]

    if kind == "TerminalBlockUpdatedEvent":
        return [_tool_use("terminal", "command", _text(agent_event.get("command")), _text(agent_event.get("output")))]

    if kind == "ViewFilesBlockUpdatedEvent":
        files = agent_event.get("files")
        paths = None
        if isinstance(files, list):
            paths = ", ".join(
                f["relativePath"] for f in files
                if isinstance(f, dict) and isinstance(f.get("relativePath"), str)
            )
        return [Info(timestamp="", title="Opened file", content=Text(paths) if paths is not None else None)]

    if kind == "FileChangesBlockUpdatedEvent":
        messages: list[Message] = []
        for change in agent_event.get("changes") or []:
            if not isinstance(change, dict):
                continue
            path = _text(change.get("afterRelativePath")) or _text(change.get("beforeRelativePath"))
            if path:
                messages.append(Info(timestamp="", title="Edited file", content=Text(path)))
        return messages

    if kind == "ResultBlockUpdatedEvent":
        cancelled = agent_event.get("cancelled") in (True, "true")
        result = _text(agent_event.get("result"))
        if not cancelled and result and result.strip() and result != "Empty":
            return [AssistantText(timestamp="", content=[Markdown(result)])]
        return []

    if kind == "AgentFailureEvent":
        message = _text(agent_event.get("message"))
        if message and message.strip():
            return [Info(timestamp="", title="Error", content=Text(message), style=InfoStyle.ERROR)]
        return []

    return []


def _tool_use(name: str, input_key: str, input_value: str | None, output: str | None) -> ToolUse:
    results = []
    if output and output.strip():
        results.append(ToolResult(timestamp="", output=[Code(output)], tool_name=name))
    return ToolUse(
        timestamp="",
        tool_name=name,
        input={input_key: input_value} if input_value is not None else {},
        results=results,
    )
