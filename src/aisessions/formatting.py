"""Helpers shared by the source backends.

Title derivation, timestamp conversion, and the conversion of raw tool
inputs/outputs into display values.
"""

import json
import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

from .core import AssistantText, Code, Markdown, Message, Text, User

TITLE_MAX_LENGTH = 100
TOOL_OUTPUT_MAX_LENGTH = 500

_TIMESTAMP_RE = re.compile(r'"timestamp"\s*:\s*"([^"]*)"')
_FRACTION_RE = re.compile(r"\.(\d+)")


# ── Titles ───────────────────────────────────────────────────────


def truncate_title(text: str, limit: int = TITLE_MAX_LENGTH) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with ``...``."""
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def first_user_text(messages: list[Message]) -> Optional[str]:
    """Return the first non-empty user-authored text in ``messages``."""
    for msg in messages:
        if not isinstance(msg, User):
            continue
        text = " ".join(_block_text(b) for b in msg.content if isinstance(b, (Text, Markdown))).strip()
        if text:
            return text
    return None


def derive_title(messages: list[Message], fallback: str = "Untitled") -> str:
    text = first_user_text(messages)
    return truncate_title(text) if text else fallback


def first_assistant_text(messages: list[Message]) -> Optional[str]:
    for msg in messages:
        if isinstance(msg, AssistantText):
            text = " ".join(_block_text(b) for b in msg.content if isinstance(b, (Text, Markdown))).strip()
            if text:
                return text
    return None


def _block_text(block) -> str:
    return block.text if isinstance(block, Text) else block.markdown


# ── Timestamps ───────────────────────────────────────────────────


def iso_to_millis(ts: Optional[str]) -> int:
    """Parse an ISO-8601 timestamp into epoch millis, 0 if unparseable."""
    dt = parse_iso(ts)
    if dt is None:
        return 0
    return int(dt.timestamp() * 1000)


def parse_iso(ts: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp string into an aware datetime."""
    if not ts or not isinstance(ts, str):
        return None
    value = ts.strip().replace("Z", "+00:00")
    # fromisoformat on 3.10 only accepts 3 or 6 fractional digits
    match = _FRACTION_RE.search(value)
    if match:
        digits = match.group(1)[:6].ljust(6, "0")
        value = value[: match.start()] + "." + digits + value[match.end():]
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def millis_to_iso(ms: Any) -> str:
    """Format epoch millis as a UTC ISO-8601 string (``...Z``), "" if invalid."""
    if ms is None or isinstance(ms, bool):
        return ""
    try:
        ms = int(ms)
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return ""
    text = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if ms % 1000:
        text += f".{ms % 1000:03d}"
    return text + "Z"


def is_number(value: Any) -> bool:
    """True for a finite JSON number. Bools, ``Infinity`` and ``NaN`` are not."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def extract_timestamp(line: str) -> Optional[str]:
    """Pull the ``timestamp`` field out of a raw JSON line without parsing it."""
    match = _TIMESTAMP_RE.search(line)
    return match.group(1) if match else None


def format_duration(ms: int) -> str:
    """Format a millisecond duration as ``1h 2m 3s``."""
    total = ms // 1000
    hours, minutes, seconds = total // 3600, (total % 3600) // 60, total % 60
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or hours > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


# ── Tool input / output ──────────────────────────────────────────


def to_json(value: Any) -> str:
    """Compact JSON dump, preserving non-ASCII characters."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def primitive_text(value: Any) -> Optional[str]:
    """Return the literal text of a JSON primitive, None for null/containers."""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return to_json(value)
    return None


def json_to_input_map(value: Any) -> dict[str, str]:
    """Convert a tool input object into an ordered ``{key: text}`` map.

    Primitive values keep their literal text; nested values and nulls become
    compact JSON. Non-object inputs yield an empty map.
    """
    if not isinstance(value, dict):
        return {}
    result = {}
    for key, item in value.items():
        text = primitive_text(item)
        result[str(key)] = text if text is not None else to_json(item)
    return result


def truncate_content(content: str, max_length: int = TOOL_OUTPUT_MAX_LENGTH) -> str:
    """Shorten ``content`` by cutting out its middle."""
    if len(content) <= max_length:
        return content
    ellipsis = " [...] "
    remaining = max_length - len(ellipsis)
    head = remaining // 2
    tail = remaining - head
    return content[:head] + ellipsis + content[-tail:]


def format_tool_output(output: Any) -> list[Code]:
    """Format a raw tool output value as a single truncated code block.

    Objects are searched for the usual payload fields (``content``,
    ``result``, ``output``, then ``error``/``message``) before falling back
    to the whole object.
    """
    if output is None:
        return [Code("{}")]
    text = primitive_text(output)
    if text is not None:
        return [Code(truncate_content(text))]
    if not isinstance(output, dict):
        return [Code(truncate_content(to_json(output)))]

    for key in ("content", "result", "output"):
        text = primitive_text(output.get(key))
        if text is not None:
            return [Code(truncate_content(text))]

    error = primitive_text(output.get("error"))
    message = primitive_text(output.get("message"))
    if error is not None or message is not None:
        return [Code(truncate_content(error if error is not None else message))]

    return [Code(truncate_content(to_json(output)))]


def flatten_tool_content(content: Any) -> str:
    """Flatten a ``tool_result.content`` value (string or list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                texts.append(item.get("text", ""))
            elif isinstance(item, str):
                texts.append(item)
        if texts:
            return "\n".join(texts)
    return to_json(content)


# ── Metadata ─────────────────────────────────────────────────────


def model_histogram(counts: Counter) -> list[tuple[str, int]]:
    """Return model usage as ``(name, count)`` pairs, most used first."""
    return counts.most_common()


def path_in_project(path: str, project_path: str) -> bool:
    """True if ``path`` is ``project_path`` or a directory below it."""
    root = project_path.rstrip("/")
    return path.rstrip("/") == root or path.startswith(root + "/")
