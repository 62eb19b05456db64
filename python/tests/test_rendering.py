"""Tests for read-time reconstruction of assistant transcripts.

Verifies:
- Text is split at tool call offsets with nothing lost or duplicated
- Calls without usable offsets render first, in call_index order
- Outputs correlate by tool_call_id, falling back to tool name
- Recorded stream events take precedence when present
"""

from chatstore.schemas.message import (
    MessageEventOut,
    MessageOut,
    ToolCallOut,
    ToolFunction,
    ToolOutputOut,
)
from chatstore.services.rendering import (
    ImagesNode,
    TextNode,
    ToolCallNode,
    build_render_sequence,
    has_usable_offset,
    resolve_outputs,
)


def _call(id: str, index: int = 0, offset: int | None = None, name: str = "web_search") -> ToolCallOut:
    return ToolCallOut(id=id, index=index, function=ToolFunction(name=name), text_offset=offset)


def _message(content, tool_calls=(), tool_outputs=(), role="assistant") -> MessageOut:
    return MessageOut(
        id=1,
        seq=2,
        role=role,
        status="final",
        content=content,
        created_at="2024-01-01T00:00:00.000000Z",
        tool_calls=list(tool_calls),
        tool_outputs=list(tool_outputs),
    )


def _texts(nodes) -> str:
    return "".join(node.text for node in nodes if isinstance(node, TextNode))


class TestOffsetSplit:
    def test_lets_check_done(self):
        text = "Let's check: done."
        assert len(text) == 18
        call = _call("c1", offset=5)

        nodes = build_render_sequence(_message(text, [call]))

        assert nodes[0] == TextNode("Let's")
        assert isinstance(nodes[1], ToolCallNode)
        assert nodes[1].tool_call.id == "c1"
        assert nodes[2] == TextNode(" check: done.")
        assert _texts(nodes) == text

    def test_multiple_offsets_and_ties(self):
        text = "abcdefghij"
        calls = [_call("late", index=0, offset=8), _call("b", index=2, offset=3), _call("a", index=1, offset=3)]

        nodes = build_render_sequence(_message(text, calls))

        order = [n.tool_call.id if isinstance(n, ToolCallNode) else n.text for n in nodes]
        assert order == ["abc", "a", "b", "defgh", "late", "ij"]
        assert _texts(nodes) == text

    def test_offset_clamped_to_text_length(self):
        nodes = build_render_sequence(_message("short", [_call("c1", offset=99)]))
        assert nodes == [TextNode("short"), ToolCallNode(_call("c1", offset=99), [])]

    def test_missing_offset_sorts_to_end(self):
        calls = [_call("none", index=0), _call("mid", index=1, offset=2)]
        nodes = build_render_sequence(_message("abcd", calls))

        order = [n.tool_call.id if isinstance(n, ToolCallNode) else n.text for n in nodes]
        assert order == ["ab", "mid", "cd", "none"]


class TestFallbackOrder:
    def test_calls_first_by_index(self):
        calls = [_call("second", index=1), _call("first", index=0)]
        nodes = build_render_sequence(_message("answer", calls))

        assert [n.tool_call.id for n in nodes[:2]] == ["first", "second"]
        assert nodes[2] == TextNode("answer")

    def test_zero_offset_is_not_usable(self):
        assert not has_usable_offset([_call("c", offset=0)])
        nodes = build_render_sequence(_message("x", [_call("c", offset=0)]))
        assert isinstance(nodes[0], ToolCallNode)

    def test_no_calls(self):
        assert build_render_sequence(_message("plain")) == [TextNode("plain")]
        assert build_render_sequence(_message("")) == []


class TestOutputs:
    def test_by_id_then_name(self):
        call = _call("c1", name="calc")
        outputs = [
            ToolOutputOut(tool_call_id="c1", output="by-id"),
            ToolOutputOut(tool_call_id="other", output="not-mine"),
            ToolOutputOut(tool_call_id="", output="by-name", name="calc"),
        ]
        assert [o.output for o in resolve_outputs(call, outputs)] == ["by-id", "by-name"]

    def test_attached_to_node(self):
        call = _call("c1", offset=1)
        output = ToolOutputOut(tool_call_id="c1", output="42")
        nodes = build_render_sequence(_message("ab", [call], [output]))
        assert nodes[1].outputs == [output]


class TestOtherShapes:
    def test_user_message_is_text_only(self):
        nodes = build_render_sequence(_message("hi", [_call("c", offset=1)], role="user"))
        assert nodes == [TextNode("hi")]

    def test_mixed_content_images_appended(self):
        image = {"type": "image_url", "image_url": {"url": "u"}}
        nodes = build_render_sequence(_message([{"type": "text", "text": "see"}, image]))
        assert nodes == [TextNode("see"), ImagesNode([image])]

    def test_events_drive_order(self):
        call = _call("c1", index=0)
        events = [
            MessageEventOut(id=3, seq=2, type="content", payload={"text": "after"}, created_at="t"),
            MessageEventOut(id=1, seq=0, type="reasoning", payload={"text": "hmm"}, created_at="t"),
            MessageEventOut(id=2, seq=1, type="tool_call", payload={"tool_call_id": "c1"}, created_at="t"),
        ]

        nodes = build_render_sequence(_message("after", [call]), events)

        assert nodes[0] == TextNode("<thinking>hmm</thinking>")
        assert isinstance(nodes[1], ToolCallNode)
        assert nodes[2] == TextNode("after")

    def test_deterministic(self):
        message = _message("Let's check: done.", [_call("c1", offset=5)])
        assert build_render_sequence(message) == build_render_sequence(message)
