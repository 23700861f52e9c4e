"""Export sessions to Markdown and JSON formats."""

import json

from .core import (
    AssistantText,
    AssistantThinking,
    Info,
    Message,
    SessionDetail,
    ToolResult,
    ToolUse,
    User,
    message_role,
    render_message,
)


def message_title(msg: Message) -> str | None:
    if isinstance(msg, ToolUse):
        return msg.tool_name
    if isinstance(msg, Info):
        return msg.title
    return None


def message_subtitle(msg: Message) -> str | None:
    if isinstance(msg, ToolUse):
        return msg.tool_call_id
    if isinstance(msg, ToolResult):
        return msg.tool_name
    if isinstance(msg, Info):
        return msg.subtitle
    return None


def detail_to_dict(detail: SessionDetail) -> dict:
    """Convert a session detail to a JSON-serializable dict."""
    meta = detail.metadata
    metadata = None
    if meta is not None:
        metadata = {
            "gitBranch": meta.git_branch,
            "cwd": meta.cwd,
            "models": [{"name": name, "count": count} for name, count in meta.models],
            "created": meta.created,
            "modified": meta.modified,
            "messageCount": meta.message_count,
        }

    return {
        "sessionId": detail.session_id,
        "title": detail.title,
        "provider": detail.source.display_name if detail.source else None,
        "metadata": metadata,
        "messages": [
            {
                "sequence": index,
                "role": message_role(msg),
                "title": message_title(msg),
                "subtitle": message_subtitle(msg),
                "timestamp": msg.timestamp,
                "content": render_message(msg),
            }
            for index, msg in enumerate(detail.messages, 1)
        ],
    }


def session_to_json(detail: SessionDetail) -> str:
    """Export a session as structured JSON."""
    return json.dumps(detail_to_dict(detail), indent=2, ensure_ascii=False)


def session_to_markdown(detail: SessionDetail) -> str:
    """Export a session and its messages as clean Markdown."""
    lines = [f"# {detail.title}", ""]

    if detail.source:
        lines.append(f"**Source:** {detail.source.display_name}")
    meta = detail.metadata
    if meta is not None:
        if meta.cwd:
            lines.append(f"**Project:** {meta.cwd}")
        if meta.git_branch:
            lines.append(f"**Branch:** {meta.git_branch}")
        if meta.models:
            lines.append("**Models:** " + ", ".join(f"{name} ({count})" for name, count in meta.models))
        if meta.created:
            lines.append(f"**Created:** {meta.created}")
        if meta.modified:
            lines.append(f"**Updated:** {meta.modified}")
        lines.append(f"**Messages:** {meta.message_count}")
    lines.extend(["", "---", ""])

    for msg in detail.messages:
        ts = f" ({msg.timestamp})" if msg.timestamp else ""
        lines.append(f"## {_heading(msg)}{ts}")
        lines.append("")
        lines.append(render_message(msg))
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def _heading(msg: Message) -> str:
    if isinstance(msg, User):
        return "User"
    if isinstance(msg, AssistantText):
        return "Assistant"
    if isinstance(msg, AssistantThinking):
        return "Thinking"
    if isinstance(msg, ToolUse):
        return f"Tool: {msg.tool_name}"
    if isinstance(msg, ToolResult):
        return f"Tool result: {msg.tool_name}" if msg.tool_name else "Tool result"
    if msg.subtitle:
        return f"{msg.title} - {msg.subtitle}"
    return msg.title
