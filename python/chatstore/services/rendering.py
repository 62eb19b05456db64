"""Read-time reconstruction of assistant transcripts.

Turns a stored message (flattened text plus tool calls and outputs) into an
ordered list of render nodes:

- When recorded stream events are available they drive the order.
- When any tool call carries a positive text_offset, the text is sliced at
  each (clamped) offset and the calls are interleaved where they occurred.
  Calls without an offset sort to the end of the text; ties keep call order.
- Otherwise every call comes first, in call_index order, then the full text.

Nothing here is stored; the same message always renders the same way.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from chatstore.schemas.message import MessageEventOut, MessageOut, ToolCallOut, ToolOutputOut
from chatstore.services.content import ImageSegment, MixedContent, parse_content


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class ToolCallNode:
    tool_call: ToolCallOut
    outputs: list[ToolOutputOut] = field(default_factory=list)


@dataclass(frozen=True)
class ImagesNode:
    images: list[dict]


RenderNode = TextNode | ToolCallNode | ImagesNode


def message_text(content: Any) -> str:
    """Flattened text of stored or parsed content."""
    parsed = parse_content(content)
    return parsed.text if parsed is not None else ""


def message_images(content: Any) -> list[dict]:
    parsed = parse_content(content)
    if not isinstance(parsed, MixedContent):
        return []
    return [s.raw for s in parsed.segments if isinstance(s, ImageSegment)]


def resolve_outputs(call: ToolCallOut, outputs: list[ToolOutputOut]) -> list[ToolOutputOut]:
    """Outputs belonging to a call: matched by tool_call_id, else by tool name."""
    matched = []
    for output in outputs:
        if output.tool_call_id and call.id:
            if output.tool_call_id == call.id:
                matched.append(output)
        elif output.name and call.function.name:
            if output.name == call.function.name:
                matched.append(output)
    return matched


def has_usable_offset(tool_calls: list[ToolCallOut]) -> bool:
    return any(
        call.text_offset is not None and math.isfinite(call.text_offset) and call.text_offset > 0
        for call in tool_calls
    )


def _with_images(nodes: list[RenderNode], images: list[dict]) -> list[RenderNode]:
    if images:
        nodes.append(ImagesNode(images=images))
    return nodes


def _from_events(
    events: list[MessageEventOut], tool_calls: list[ToolCallOut], outputs: list[ToolOutputOut]
) -> list[RenderNode]:
    nodes: list[RenderNode] = []
    for event in sorted(events, key=lambda e: e.seq):
        payload = event.payload if isinstance(event.payload, dict) else {}
        if event.type in ("content", "reasoning"):
            chunk = payload.get("text")
            if isinstance(chunk, str) and chunk:
                nodes.append(TextNode(chunk if event.type == "content" else f"<thinking>{chunk}</thinking>"))
        elif event.type == "tool_call":
            call_id = payload.get("tool_call_id")
            call_index = payload.get("tool_call_index")
            call = next((c for c in tool_calls if call_id and c.id == call_id), None)
            if call is None and isinstance(call_index, int):
                call = next((c for c in tool_calls if c.index == call_index), None)
            if call is not None:
                nodes.append(ToolCallNode(call, resolve_outputs(call, outputs)))
    return nodes


def build_render_sequence(
    message: MessageOut, events: list[MessageEventOut] | None = None
) -> list[RenderNode]:
    """Build the ordered render nodes for one message.

    Args:
        message: A message as returned by the message store.
        events: Optional recorded stream events for the message.

    Returns:
        Text, tool-call and image nodes in display order. Concatenating the
        text nodes of the offset path yields the message text exactly.
    """
    text = message_text(message.content)

    if message.role != "assistant":
        return [TextNode(text)] if text else []

    images = message_images(message.content)
    tool_calls = list(message.tool_calls)
    outputs = list(message.tool_outputs)

    if events:
        nodes = _from_events(events, tool_calls, outputs)
        if nodes:
            return _with_images(nodes, images)

    if not tool_calls:
        return _with_images([TextNode(text)] if text else [], images)

    if not has_usable_offset(tool_calls):
        ordered = sorted(enumerate(tool_calls), key=lambda pair: (pair[1].index, pair[0]))
        nodes: list[RenderNode] = [
            ToolCallNode(call, resolve_outputs(call, outputs)) for _, call in ordered
        ]
        if text:
            nodes.append(TextNode(text))
        return _with_images(nodes, images)

    length = len(text)

    def clamped(call: ToolCallOut) -> int:
        if call.text_offset is None:
            return length
        return max(0, min(call.text_offset, length))

    ordered = sorted(
        enumerate(tool_calls),
        key=lambda pair: (clamped(pair[1]), pair[1].index, pair[0]),
    )

    nodes = []
    cursor = 0
    for _, call in ordered:
        offset = clamped(call)
        if offset > cursor:
            nodes.append(TextNode(text[cursor:offset]))
            cursor = offset
        nodes.append(ToolCallNode(call, resolve_outputs(call, outputs)))

    if cursor < length:
        nodes.append(TextNode(text[cursor:]))

    return _with_images(nodes, images)
