"""Message service layer.

Assistant messages follow a small state machine:

    streaming --finalize--> final
    streaming --finalize(status=error) / mark_error--> error

Both terminal states are final: appends and transitions only ever match
rows still in ``streaming``. User and tool messages are inserted complete.

Seq is assigned here (max + 1) unless the caller supplies one; the
(conversation_id, seq) unique constraint turns a lost race into a
ConflictError(E_SEQ_CONFLICT). The store never retries.

Read shapes substitute client_message_id for the internal id and prefer the
parsed content_json over the flattened text.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import MessageRole, MessageStatus, utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import ConflictError, InvalidArgumentError, StoreErrorCode
from chatstore.logging import get_logger
from chatstore.schemas.message import (
    InsertedMessage,
    MessageOut,
    MessageRef,
    MessagesPage,
    ToolCallOut,
    ToolOutputOut,
)
from chatstore.services.content import (
    dumps_compact,
    normalize_content,
    normalize_reasoning_tokens,
    parse_json_field,
    serialize_json_field,
)
from chatstore.services.ownership import Owner, as_owner
from chatstore.services.pagination import clamp_limit
from chatstore.services.patch import UNSET
from chatstore.services.seq import get_next_seq
from chatstore.services.tool_calls import (
    get_tool_calls_by_message_id,
    get_tool_calls_by_message_ids,
    get_tool_outputs_by_message_id,
    get_tool_outputs_by_message_ids,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200

# Statuses finalize_assistant_message may move a draft into
TERMINAL_STATUSES = frozenset({MessageStatus.final.value, MessageStatus.error.value})

SEQ_UNIQUE_CONSTRAINT = "uix_messages_conversation_seq"

_MESSAGE_COLUMNS = """
    id, seq, role, status, content, content_json, reasoning_details,
    reasoning_tokens, client_message_id, response_id, created_at
"""


# =============================================================================
# Helper Functions
# =============================================================================


def _is_seq_conflict(error: ConflictError) -> bool:
    """Whether a conflict came from the (conversation_id, seq) unique constraint.

    SQLite names the columns rather than the constraint.
    """
    detail = str(getattr(error.__cause__, "orig", ""))
    return (
        SEQ_UNIQUE_CONSTRAINT in detail
        or "messages.conversation_id, messages.seq" in detail
    )


def _insert_message(db: Session, conversation_id: str, seq: int | None, values: dict[str, Any]) -> InsertedMessage:
    """Insert one message row, assigning seq in the same transaction when absent."""
    now = utc_now_iso()
    params = {
        "content": "",
        "content_json": None,
        "finish_reason": None,
        "response_id": None,
        "client_message_id": None,
        "reasoning_details": None,
        "reasoning_tokens": None,
        **values,
        "conversation_id": conversation_id,
        "now": now,
    }
    try:
        with transaction(db):
            params["seq"] = seq if seq is not None else get_next_seq(db, conversation_id)
            result = db.execute(
                text("""
                    INSERT INTO messages (
                        conversation_id, seq, role, status, content, content_json,
                        finish_reason, response_id, client_message_id,
                        reasoning_details, reasoning_tokens, created_at, updated_at
                    )
                    VALUES (
                        :conversation_id, :seq, :role, :status, :content, :content_json,
                        :finish_reason, :response_id, :client_message_id,
                        :reasoning_details, :reasoning_tokens, :now, :now
                    )
                """),
                params,
            )
    except ConflictError as e:
        if not _is_seq_conflict(e):
            raise
        raise ConflictError(
            StoreErrorCode.E_SEQ_CONFLICT,
            f"Message seq {params.get('seq')} conflicts in conversation {conversation_id}",
        ) from e

    logger.debug(
        "message_inserted",
        conversation_id=conversation_id,
        message_id=result.lastrowid,
        seq=params["seq"],
        role=params["role"],
        status=params["status"],
    )
    return InsertedMessage(id=result.lastrowid, seq=params["seq"], client_message_id=params["client_message_id"])


def _row_to_out(row) -> MessageOut:
    content: Any = row.content or ""
    if row.content_json:
        parsed = parse_json_field(row.content_json, row.id, "content_json")
        if parsed is not None:
            content = parsed

    reasoning_details = None
    if row.reasoning_details:
        reasoning_details = parse_json_field(row.reasoning_details, row.id, "reasoning_details")

    return MessageOut(
        id=row.client_message_id or row.id,
        seq=row.seq,
        role=row.role,
        status=row.status,
        content=content,
        reasoning_details=reasoning_details,
        reasoning_tokens=int(row.reasoning_tokens) if row.reasoning_tokens is not None else None,
        response_id=row.response_id,
        created_at=row.created_at,
    )


def _attach_artifacts(
    message: MessageOut, calls: list[ToolCallOut], outputs: list[ToolOutputOut]
) -> MessageOut:
    updates: dict[str, Any] = {}
    if calls:
        updates["tool_calls"] = calls
    if outputs:
        if message.role == MessageRole.tool.value:
            # A tool message carries a single result; it also decides the message status
            first = outputs[0]
            updates["tool_outputs"] = [first]
            updates["tool_call_id"] = first.tool_call_id
            updates["status"] = first.status or message.status
        else:
            updates["tool_outputs"] = outputs
    return message.model_copy(update=updates) if updates else message


def _owned_conversation_exists(db: Session, conversation_id: str, owner: Owner) -> bool:
    owner_sql, owner_params = owner.sql_filter()
    row = db.execute(
        text(f"""
            SELECT 1 FROM conversations
            WHERE id = :conversation_id AND {owner_sql} AND deleted_at IS NULL
        """),
        {"conversation_id": conversation_id, **owner_params},
    ).fetchone()
    return row is not None


# =============================================================================
# Inserts
# =============================================================================


def insert_user_message(
    db: Session,
    conversation_id: str,
    content: Any,
    seq: int | None = None,
    client_message_id: str | None = None,
) -> InsertedMessage:
    """Insert a complete user message (status ``final``).

    Mixed content is flattened into ``content`` with the full structure kept
    in ``content_json``.

    Raises:
        ConflictError(E_SEQ_CONFLICT): If seq is already used.
    """
    normalized = normalize_content(content)
    return _insert_message(
        db,
        conversation_id,
        seq,
        {
            "role": MessageRole.user.value,
            "status": MessageStatus.final.value,
            "content": normalized.text,
            "content_json": normalized.json,
            "client_message_id": client_message_id,
        },
    )


def create_assistant_draft(
    db: Session,
    conversation_id: str,
    seq: int | None = None,
    client_message_id: str | None = None,
) -> InsertedMessage:
    """Open an empty assistant message in ``streaming`` at the next seq."""
    return _insert_message(
        db,
        conversation_id,
        seq,
        {
            "role": MessageRole.assistant.value,
            "status": MessageStatus.streaming.value,
            "client_message_id": client_message_id,
        },
    )


def insert_assistant_final(
    db: Session,
    conversation_id: str,
    content: Any,
    seq: int | None = None,
    finish_reason: str | None = "stop",
    response_id: str | None = None,
    reasoning_details: Any = UNSET,
    reasoning_tokens: Any = UNSET,
    client_message_id: str | None = None,
) -> InsertedMessage:
    """Insert a complete assistant message, e.g. from a non-streaming turn."""
    normalized = normalize_content(content)
    details = serialize_json_field(reasoning_details)
    tokens = normalize_reasoning_tokens(reasoning_tokens)
    return _insert_message(
        db,
        conversation_id,
        seq,
        {
            "role": MessageRole.assistant.value,
            "status": MessageStatus.final.value,
            "content": normalized.text,
            "content_json": normalized.json,
            "finish_reason": finish_reason,
            "response_id": response_id,
            "reasoning_details": None if details is UNSET else details,
            "reasoning_tokens": None if tokens is UNSET else tokens,
            "client_message_id": client_message_id,
        },
    )


def insert_tool_message(
    db: Session,
    conversation_id: str,
    content: Any,
    seq: int | None = None,
    status: str = MessageStatus.success.value,
    client_message_id: str | None = None,
) -> InsertedMessage:
    """Insert a tool-role message. Non-string content is stored as JSON text."""
    return _insert_message(
        db,
        conversation_id,
        seq,
        {
            "role": MessageRole.tool.value,
            "status": status,
            "content": content if isinstance(content, str) else dumps_compact(content if content is not None else ""),
            "client_message_id": client_message_id,
        },
    )


# =============================================================================
# Streaming transitions
# =============================================================================


def append_assistant_content(db: Session, message_id: int, delta: str | None) -> bool:
    """Append a delta to a streaming draft.

    Returns:
        True if the draft was extended; False for an empty delta or a message
        that is not (or no longer) streaming.
    """
    if not delta:
        return False
    with transaction(db):
        result = db.execute(
            text("""
                UPDATE messages
                SET content = COALESCE(content, '') || :delta, updated_at = :now
                WHERE id = :message_id AND status = 'streaming'
            """),
            {"message_id": message_id, "delta": delta, "now": utc_now_iso()},
        )
    return result.rowcount > 0


def finalize_assistant_message(
    db: Session,
    message_id: int,
    finish_reason: str | None = None,
    status: str = MessageStatus.final.value,
    response_id: str | None = None,
) -> bool:
    """Move a streaming draft to a terminal state.

    status='error' forces finish_reason to 'error'.

    Returns:
        True if the draft transitioned; False if it was not streaming.

    Raises:
        InvalidArgumentError(E_INVALID_STATUS): If status is not final or error.
    """
    status = getattr(status, "value", status)
    if status not in TERMINAL_STATUSES:
        raise InvalidArgumentError(
            StoreErrorCode.E_INVALID_STATUS, f"Cannot finalize a draft into status {status!r}"
        )
    if status == MessageStatus.error.value:
        finish_reason = "error"

    with transaction(db):
        result = db.execute(
            text("""
                UPDATE messages
                SET status = :status, finish_reason = :finish_reason,
                    response_id = :response_id, updated_at = :now
                WHERE id = :message_id AND status = 'streaming'
            """),
            {
                "message_id": message_id,
                "status": status,
                "finish_reason": finish_reason,
                "response_id": response_id,
                "now": utc_now_iso(),
            },
        )

    changed = result.rowcount > 0
    if changed:
        logger.debug("assistant_message_finalized", message_id=message_id, status=status)
    else:
        logger.warning("assistant_finalize_no_draft", message_id=message_id, status=status)
    return changed


def mark_assistant_error(db: Session, message_id: int) -> bool:
    return finalize_assistant_message(db, message_id, status=MessageStatus.error.value)


def mark_assistant_error_by_seq(db: Session, conversation_id: str, seq: int) -> InsertedMessage:
    """Record an assistant failure at a seq.

    Transitions the streaming draft at that seq when there is one, otherwise
    inserts an empty ``error`` assistant placeholder there.

    Raises:
        ConflictError(E_SEQ_CONFLICT): If a non-streaming message already holds the seq.
    """
    row = db.execute(
        text("""
            SELECT id FROM messages
            WHERE conversation_id = :conversation_id AND seq = :seq
              AND role = 'assistant' AND status = 'streaming'
        """),
        {"conversation_id": conversation_id, "seq": seq},
    ).fetchone()
    if row is not None and mark_assistant_error(db, row.id):
        return InsertedMessage(id=row.id, seq=seq)

    return _insert_message(
        db,
        conversation_id,
        seq,
        {
            "role": MessageRole.assistant.value,
            "status": MessageStatus.error.value,
            "finish_reason": "error",
        },
    )


# =============================================================================
# Reads
# =============================================================================


def get_messages_page(
    db: Session, conversation_id: str, after_seq: int = 0, limit: int = DEFAULT_PAGE_LIMIT
) -> MessagesPage:
    """Get messages with seq > after_seq, ascending.

    Tool calls and outputs are loaded with one query each for the whole page.

    Args:
        db: Database session.
        conversation_id: Conversation to read. Ownership is the caller's check.
        after_seq: Exclusive lower seq bound.
        limit: Page size, clamped to [1, 200].

    Returns:
        The page; next_after_seq is the last seq when the page is full.
    """
    safe_limit = clamp_limit(
        limit, fallback=DEFAULT_PAGE_LIMIT, max_limit=MAX_PAGE_LIMIT, clamp_negative=True
    )
    rows = db.execute(
        text(f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = :conversation_id AND seq > :after_seq
            ORDER BY seq ASC
            LIMIT :limit
        """),
        {"conversation_id": conversation_id, "after_seq": after_seq or 0, "limit": safe_limit},
    ).fetchall()

    message_ids = [row.id for row in rows]
    calls_by_message = get_tool_calls_by_message_ids(db, message_ids)
    outputs_by_message = get_tool_outputs_by_message_ids(db, message_ids)

    messages = [
        _attach_artifacts(
            _row_to_out(row),
            calls_by_message.get(row.id, []),
            outputs_by_message.get(row.id, []),
        )
        for row in rows
    ]

    next_after_seq = messages[-1].seq if len(messages) == safe_limit else None
    return MessagesPage(messages=messages, next_after_seq=next_after_seq)


def get_all_messages_for_sync(db: Session, conversation_id: str) -> list[MessageOut]:
    """Walk every page of a conversation (200 at a time)."""
    messages: list[MessageOut] = []
    after_seq = 0
    while True:
        page = get_messages_page(db, conversation_id, after_seq=after_seq, limit=MAX_PAGE_LIMIT)
        messages.extend(page.messages)
        if page.next_after_seq is None:
            break
        after_seq = page.next_after_seq
    return messages


def get_last_message(db: Session, conversation_id: str) -> MessageOut | None:
    row = db.execute(
        text(f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = :conversation_id
            ORDER BY seq DESC
            LIMIT 1
        """),
        {"conversation_id": conversation_id},
    ).fetchone()
    if row is None:
        return None
    return _attach_artifacts(
        _row_to_out(row),
        get_tool_calls_by_message_id(db, row.id),
        get_tool_outputs_by_message_id(db, row.id),
    )


def get_last_assistant_response_id(db: Session, conversation_id: str) -> str | None:
    return db.execute(
        text("""
            SELECT response_id FROM messages
            WHERE conversation_id = :conversation_id
              AND role = 'assistant'
              AND response_id IS NOT NULL
            ORDER BY seq DESC
            LIMIT 1
        """),
        {"conversation_id": conversation_id},
    ).scalar()


def count_messages(db: Session, conversation_id: str) -> int:
    return db.execute(
        text("SELECT COUNT(*) FROM messages WHERE conversation_id = :conversation_id"),
        {"conversation_id": conversation_id},
    ).scalar_one()


def get_message_by_client_id(
    db: Session, conversation_id: str, client_message_id: str, owner: Owner | str
) -> MessageRef | None:
    """Find a message by client id inside a live conversation owned by owner."""
    owner_sql, owner_params = as_owner(owner).sql_filter("c")
    row = db.execute(
        text(f"""
            SELECT m.id, m.conversation_id, m.role, m.seq, m.client_message_id
            FROM messages m
            JOIN conversations c ON m.conversation_id = c.id
            WHERE m.client_message_id = :client_message_id
              AND c.id = :conversation_id
              AND c.deleted_at IS NULL
              AND {owner_sql}
            ORDER BY m.seq ASC
            LIMIT 1
        """),
        {"client_message_id": client_message_id, "conversation_id": conversation_id, **owner_params},
    ).fetchone()
    if row is None:
        return None
    return MessageRef.model_validate(row)


# =============================================================================
# Edits and deletes
# =============================================================================


def update_message_content(
    db: Session,
    conversation_id: str,
    owner: Owner | str,
    message_id: int,
    content: Any,
    status: str = UNSET,
    reasoning_details: Any = UNSET,
    reasoning_tokens: Any = UNSET,
) -> MessageRef | None:
    """Replace a message's content, re-normalizing it like an insert.

    Ownership is checked against the conversation on every call.

    Returns:
        The matched message reference, or None if it is not in a live
        conversation owned by owner.

    Raises:
        InvalidArgumentError(E_INVALID_STATUS): If status is not a known message status.
    """
    owner_sql, owner_params = as_owner(owner).sql_filter("c")
    normalized = normalize_content(content)
    details = serialize_json_field(reasoning_details)
    tokens = normalize_reasoning_tokens(reasoning_tokens)

    assignments = ["content = :content", "content_json = :content_json", "updated_at = :now"]
    params: dict[str, Any] = {
        "message_id": message_id,
        "content": normalized.text,
        "content_json": normalized.json,
        "now": utc_now_iso(),
    }
    if status is not UNSET:
        status = getattr(status, "value", status)
        if status not in {s.value for s in MessageStatus}:
            raise InvalidArgumentError(StoreErrorCode.E_INVALID_STATUS, f"Unknown message status {status!r}")
        assignments.append("status = :status")
        params["status"] = status
    if details is not UNSET:
        assignments.append("reasoning_details = :reasoning_details")
        params["reasoning_details"] = details
    if tokens is not UNSET:
        assignments.append("reasoning_tokens = :reasoning_tokens")
        params["reasoning_tokens"] = tokens

    with transaction(db):
        row = db.execute(
            text(f"""
                SELECT m.id, m.conversation_id, m.role, m.seq, m.client_message_id
                FROM messages m
                JOIN conversations c ON m.conversation_id = c.id
                WHERE m.id = :message_id
                  AND c.id = :conversation_id
                  AND c.deleted_at IS NULL
                  AND {owner_sql}
            """),
            {"message_id": message_id, "conversation_id": conversation_id, **owner_params},
        ).fetchone()
        if row is None:
            return None
        db.execute(
            text(f"UPDATE messages SET {', '.join(assignments)} WHERE id = :message_id"),
            params,
        )

    return MessageRef.model_validate(row)


def delete_messages_after_seq(db: Session, conversation_id: str, owner: Owner | str, after_seq: int) -> bool:
    """Delete every message with seq > after_seq (regenerate from a point).

    Tool calls, outputs and events of deleted messages cascade.
    """
    owner = as_owner(owner)
    with transaction(db):
        if not _owned_conversation_exists(db, conversation_id, owner):
            return False
        result = db.execute(
            text("DELETE FROM messages WHERE conversation_id = :conversation_id AND seq > :after_seq"),
            {"conversation_id": conversation_id, "after_seq": after_seq},
        )
    logger.debug("messages_deleted_after_seq", conversation_id=conversation_id, after_seq=after_seq, deleted=result.rowcount)
    return result.rowcount > 0


def clear_all_messages(db: Session, conversation_id: str, owner: Owner | str) -> bool:
    owner = as_owner(owner)
    with transaction(db):
        if not _owned_conversation_exists(db, conversation_id, owner):
            return False
        result = db.execute(
            text("DELETE FROM messages WHERE conversation_id = :conversation_id"),
            {"conversation_id": conversation_id},
        )
    logger.debug("messages_cleared", conversation_id=conversation_id, deleted=result.rowcount)
    return result.rowcount > 0
