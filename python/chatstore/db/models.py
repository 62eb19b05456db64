"""SQLAlchemy ORM models for chatstore.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enums are defined as Python enums and enforced with CHECK constraints.
Timestamps are stored as UTC ISO-8601 strings so that cursors can embed
them verbatim and compare lexicographically.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now_iso() -> str:
    """Current UTC time as a fixed-width ISO-8601 string (microseconds, Z suffix)."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def to_utc_iso(value: datetime) -> str:
    """Format an aware or naive-UTC datetime the way utc_now_iso() does."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, PyEnum):
    """Roles for messages in a conversation."""

    user = "user"
    assistant = "assistant"
    tool = "tool"


class MessageStatus(str, PyEnum):
    """Status of a message.

    States:
        streaming: Assistant draft receiving content appends
        final: Completed message (terminal)
        error: Assistant turn failed (terminal)
        success: Tool message whose execution succeeded
    """

    streaming = "streaming"
    final = "final"
    error = "error"
    success = "success"


class ToolOutputStatus(str, PyEnum):
    """Outcome of a tool execution."""

    success = "success"
    error = "error"
    timeout = "timeout"


class MessageEventType(str, PyEnum):
    """Kinds of streamed events recorded against an assistant message."""

    content = "content"
    reasoning = "reasoning"
    tool_call = "tool_call"


# =============================================================================
# Identity
# =============================================================================


class User(Base):
    """User account model. Also carries the user's wrapped DEK."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_login_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_dek: Mapped[str | None] = mapped_column(Text, nullable=True)
    dek_created_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    dek_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    deleted_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "dek_version IS NULL OR dek_version > 0",
            name="ck_users_dek_version_positive",
        ),
    )

    settings: Mapped[list["UserSetting"]] = relationship(
        "UserSetting", back_populates="user", cascade="all, delete-orphan"
    )


class BrowserSession(Base):
    """Anonymous browser session. Linked to a user once they sign in."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    last_seen_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_hash: Mapped[str | None] = mapped_column(Text, nullable=True)


class UserSetting(Base):
    """Per-user key/value setting. Sensitive names hold ciphertext."""

    __tablename__ = "user_settings"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uix_user_settings_user_name"),)

    user: Mapped["User"] = relationship("User", back_populates="settings")


# =============================================================================
# Conversations and messages
# =============================================================================


class Conversation(Base):
    """Conversation model - a thread of messages owned by a user or a session."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    streaming_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tools_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quality_level: Mapped[str | None] = mapped_column(Text, nullable=True)
    reasoning_effort: Mapped[str | None] = mapped_column(Text, nullable=True)
    verbosity: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    deleted_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_conversations_single_owner",
        ),
        Index("idx_conversations_user_created", "user_id", "created_at"),
        Index("idx_conversations_session_created", "session_id", "created_at"),
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    """Message model - a single sequence-numbered entry in a conversation."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        Text, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="final")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    finish_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_message_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    reasoning_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    reasoning_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint(
            "role IN ('user', 'assistant', 'tool')",
            name="ck_messages_role",
        ),
        CheckConstraint(
            "status IN ('streaming', 'final', 'error', 'success')",
            name="ck_messages_status",
        ),
        CheckConstraint(
            "(status != 'streaming' OR role = 'assistant')",
            name="ck_messages_streaming_only_assistant",
        ),
        CheckConstraint(
            "reasoning_tokens IS NULL OR reasoning_tokens >= 0",
            name="ck_messages_reasoning_tokens",
        ),
        UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
        Index("idx_messages_client_id", "conversation_id", "client_message_id"),
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")
    tool_calls: Mapped[list["ToolCall"]] = relationship(
        "ToolCall", back_populates="message", cascade="all, delete-orphan", passive_deletes=True
    )
    tool_outputs: Mapped[list["ToolOutput"]] = relationship(
        "ToolOutput", back_populates="message", cascade="all, delete-orphan", passive_deletes=True
    )


class ToolCall(Base):
    """ToolCall model - a tool invocation emitted by an assistant message.

    The provider-issued call id is only unique within a conversation, so the
    primary key is (conversation_id, id).
    """

    __tablename__ = "tool_calls"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        Text, ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    call_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tool_name: Mapped[str] = mapped_column(Text, nullable=False)
    arguments: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    text_offset: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        Index("idx_tool_calls_message_id", "message_id", "call_index"),
        Index("idx_tool_calls_conversation_id", "conversation_id", "created_at"),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="tool_calls")


class ToolOutput(Base):
    """ToolOutput model - the result of executing a tool call.

    tool_call_id is a weak reference: no foreign key, outputs may outlive or
    precede their call row.
    """

    __tablename__ = "tool_outputs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_call_id: Mapped[str] = mapped_column(Text, nullable=False)
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[str] = mapped_column(
        Text, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    output: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="success")
    executed_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        CheckConstraint(
            "status IN ('success', 'error', 'timeout')",
            name="ck_tool_outputs_status",
        ),
        Index("idx_tool_outputs_tool_call_id", "tool_call_id"),
        Index("idx_tool_outputs_message_id", "message_id"),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="tool_outputs")


class MessageEvent(Base):
    """MessageEvent model - ordered stream events recorded for a message."""

    __tablename__ = "message_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(Integer, nullable=False)
    conversation_id: Mapped[str] = mapped_column(Text, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        CheckConstraint(
            "type IN ('content', 'reasoning', 'tool_call')",
            name="ck_message_events_type",
        ),
        Index("idx_message_events_message_seq", "message_id", "seq"),
    )
