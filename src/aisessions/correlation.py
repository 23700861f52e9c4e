"""Tool call / tool result correlation.

A tool result may be written before or after its call, or with no call at
all. Results whose call id matches a ``ToolUse`` anywhere in the sequence
are moved into that call's ``results``; the call keeps its position.
Results without a matching call stay where they were.
"""

from typing import Callable, Optional

from .core import Message, ToolResult, ToolUse


def _call_id(tool_use: ToolUse) -> Optional[str]:
    return tool_use.tool_call_id


def _result_id(result: ToolResult) -> Optional[str]:
    return result.tool_call_id


def correlate_tool_results(
    messages: list[Message],
    call_id: Callable[[ToolUse], Optional[str]] = _call_id,
    result_id: Callable[[ToolResult], Optional[str]] = _result_id,
) -> list[Message]:
    """Attach standalone tool results to their calls.

    ``call_id`` and ``result_id`` extract the identifier each source uses to
    pair the two; the defaults read ``tool_call_id``. When an id is repeated
    the first call with that id wins.
    """
    calls: dict[str, ToolUse] = {}
    for msg in messages:
        if isinstance(msg, ToolUse):
            key = call_id(msg)
            if key and key not in calls:
                calls[key] = msg

    correlated: list[Message] = []
    for msg in messages:
        if isinstance(msg, ToolResult):
            key = result_id(msg)
            call = calls.get(key) if key else None
            if call is not None:
                if msg.tool_name is None:
                    msg.tool_name = call.tool_name
                call.results.append(msg)
                continue
        correlated.append(msg)
    return correlated
