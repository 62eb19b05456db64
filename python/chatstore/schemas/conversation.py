"""Conversation Pydantic schemas.

Read shapes returned by the conversation store. Timestamps are kept as the
stored UTC ISO-8601 strings so that cursors built from them round-trip
exactly.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConversationOut(BaseModel):
    """A single conversation as seen by its owner.

    metadata always carries an ``active_tools`` list, mirrored on the
    top-level ``active_tools`` field.
    """

    id: str
    user_id: str | None = None
    session_id: str | None = None
    title: str | None = None
    provider_id: str | None = None
    model: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    active_tools: list[Any] = Field(default_factory=list)
    streaming_enabled: bool = False
    tools_enabled: bool = False
    quality_level: str | None = None
    reasoning_effort: str | None = None
    verbosity: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class ConversationListItem(BaseModel):
    """Summary row in a conversation listing."""

    id: str
    title: str | None = None
    provider_id: str | None = None
    model: str | None = None
    created_at: str
    deleted_at: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationPage(BaseModel):
    """One page of conversations, newest first.

    next_cursor is an opaque ``"<created_at>|<id>"`` token, None on the last page.
    """

    items: list[ConversationListItem]
    next_cursor: str | None = None
