"""Core data models for aisessions.

Every backend parses its on-disk format into these types. The message and
content block variants are closed sets: consumers branch over them with
``isinstance`` and the ``Message`` / ``ContentBlock`` unions below list every
case.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Source(str, Enum):
    """The AI coding tools whose sessions can be read.

    Declaration order is the probing order used when a session id is
    resolved without a known source.
    """

    CLAUDE_CODE = "claude_code"
    OPENCODE = "opencode"
    CODEX = "codex"
    AMP = "amp"
    JUNIE = "junie"
    GEMINI = "gemini"
    DROID = "droid"
    KILO_CODE = "kilo_code"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Source.CLAUDE_CODE: "Claude Code",
    Source.OPENCODE: "OpenCode",
    Source.CODEX: "Codex",
    Source.AMP: "Amp",
    Source.JUNIE: "Junie",
    Source.GEMINI: "Gemini",
    Source.DROID: "Droid",
    Source.KILO_CODE: "Kilo Code",
}


# ── Content blocks ───────────────────────────────────────────────


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Code:
    code: str
    language: Optional[str] = None


@dataclass(frozen=True)
class Markdown:
    markdown: str


@dataclass(frozen=True)
class Json:
    json: str


ContentBlock = Union[Text, Code, Markdown, Json]


# ── Messages ─────────────────────────────────────────────────────


class InfoStyle(str, Enum):
    DEFAULT = "default"
    ERROR = "error"


@dataclass
class User:
    timestamp: str
    content: list[ContentBlock] = field(default_factory=list)


@dataclass
class AssistantText:
    timestamp: str
    content: list[ContentBlock] = field(default_factory=list)


@dataclass
class AssistantThinking:
    timestamp: str
    thinking: str


@dataclass
class ToolResult:
    """Outcome of a tool invocation.

    Either nested in ``ToolUse.results`` or, when no matching call exists,
    emitted as a standalone message.
    """

    timestamp: str
    output: list[ContentBlock] = field(default_factory=list)
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    is_error: bool = False


@dataclass
class ToolUse:
    """A tool invocation with its (possibly empty) list of results."""

    timestamp: str
    tool_name: str
    input: dict[str, str] = field(default_factory=dict)
    tool_call_id: Optional[str] = None
    results: list[ToolResult] = field(default_factory=list)

    def has_results(self) -> bool:
        return bool(self.results)


@dataclass
class Info:
    """Out-of-band entry: errors, system notices, summaries, durations."""

    timestamp: str
    title: str
    subtitle: Optional[str] = None
    content: Optional[ContentBlock] = None
    style: InfoStyle = InfoStyle.DEFAULT


Message = Union[User, AssistantText, AssistantThinking, ToolUse, ToolResult, Info]


# ── Sessions ─────────────────────────────────────────────────────


@dataclass
class SessionListItem:
    """A lightweight summary of a session for list views."""

    session_id: str  # unique within its source only
    title: str
    source: Source
    created: int  # epoch millis, 0 if unknown
    updated: int
    message_count: Optional[int] = None

    @property
    def sort_timestamp(self) -> int:
        return self.updated if self.updated > 0 else self.created


@dataclass
class SessionMetadata:
    version: Optional[str] = None
    git_branch: Optional[str] = None
    cwd: Optional[str] = None
    models: list[tuple[str, int]] = field(default_factory=list)  # sorted by count, desc
    created: Optional[str] = None
    modified: Optional[str] = None
    message_count: int = 0


@dataclass
class SessionDetail:
    session_id: str
    title: str
    messages: list[Message] = field(default_factory=list)
    metadata: Optional[SessionMetadata] = None
    source: Optional[Source] = None


@dataclass
class ListingMetadata:
    """Result of the cheap metadata-only parse of a line-delimited transcript."""

    summary: Optional[str] = None
    message_count: int = 0
    created: Optional[str] = None
    modified: Optional[str] = None


# ── Rendering ────────────────────────────────────────────────────


def render_block(block: ContentBlock) -> str:
    """Render a content block to flat text."""
    if isinstance(block, Text):
        return block.text
    if isinstance(block, Code):
        return f"```{block.language or ''}\n{block.code}\n```"
    if isinstance(block, Markdown):
        return block.markdown
    if isinstance(block, Json):
        return f"```json\n{block.json}\n```"
    raise TypeError(f"Unknown content block: {block!r}")


def render_blocks(blocks: list[ContentBlock]) -> str:
    return "\n".join(render_block(b) for b in blocks)


def render_message(message: Message) -> str:
    """Flatten a message to text for search and snippet extraction.

    ToolUse renders as ``tool: <name>``, then one indented ``key: value``
    line per input entry, then each attached result's output.
    """
    if isinstance(message, (User, AssistantText)):
        return render_blocks(message.content)
    if isinstance(message, AssistantThinking):
        return message.thinking
    if isinstance(message, ToolUse):
        text = f"tool: {message.tool_name}"
        if message.input:
            text += "\n" + "".join(f"  {k}: {v}\n" for k, v in message.input.items())
        for result in message.results:
            text += "\n" + render_blocks(result.output)
        return text
    if isinstance(message, ToolResult):
        return render_blocks(message.output)
    if isinstance(message, Info):
        text = message.title
        if message.subtitle:
            text += f" - {message.subtitle}"
        if message.content is not None:
            text += "\n" + render_block(message.content)
        return text
    raise TypeError(f"Unknown message: {message!r}")


def message_role(message: Message) -> str:
    """Return the export role name of a message variant."""
    if isinstance(message, User):
        return "user"
    if isinstance(message, AssistantText):
        return "assistant"
    if isinstance(message, AssistantThinking):
        return "thinking"
    if isinstance(message, ToolUse):
        return "tool_use"
    if isinstance(message, ToolResult):
        return "tool_result"
    if isinstance(message, Info):
        return "info"
    raise TypeError(f"Unknown message: {message!r}")
