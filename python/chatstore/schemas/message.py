"""Message, tool-call and tool-output Pydantic schemas."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "assistant", "tool"]

# Valid message statuses - must match DB constraint
MESSAGE_STATUSES = Literal["streaming", "final", "error", "success"]

# Valid tool output statuses - must match DB constraint
TOOL_OUTPUT_STATUSES = Literal["success", "error", "timeout"]


class ToolFunction(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCallOut(BaseModel):
    """A tool call in OpenAI-compatible shape.

    text_offset is the character position in the message text at which the
    call was emitted, when it was captured.
    """

    id: str
    type: Literal["function"] = "function"
    index: int = 0
    function: ToolFunction
    text_offset: int | None = None
    message_id: int | None = None


class ToolOutputOut(BaseModel):
    """Result of a tool call. name is only set by callers that correlate by tool name."""

    tool_call_id: str
    output: str
    status: str = "success"
    id: int | None = None
    message_id: int | None = None
    executed_at: str | None = None
    name: str | None = None


class MessageOut(BaseModel):
    """Response schema for a message.

    id is the client_message_id when one was supplied, otherwise the
    internal integer id. content is the parsed content_json when present,
    otherwise the flattened text.
    """

    id: str | int
    seq: int
    role: str
    status: str
    content: Any = ""
    reasoning_details: Any = None
    reasoning_tokens: int | None = None
    response_id: str | None = None
    created_at: str
    tool_calls: list[ToolCallOut] = Field(default_factory=list)
    tool_outputs: list[ToolOutputOut] = Field(default_factory=list)
    tool_call_id: str | None = None


class MessagesPage(BaseModel):
    """One page of messages, ascending by seq.

    next_after_seq is the last seq on a full page, None otherwise.
    """

    messages: list[MessageOut]
    next_after_seq: int | None = None


class InsertedMessage(BaseModel):
    """Identity of a freshly inserted message."""

    id: int
    seq: int
    client_message_id: str | None = None


class MessageRef(BaseModel):
    """Lightweight reference to an owned message."""

    id: int
    conversation_id: str
    role: str
    seq: int
    client_message_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageEventOut(BaseModel):
    id: int
    seq: int
    type: str
    payload: Any = None
    created_at: str
