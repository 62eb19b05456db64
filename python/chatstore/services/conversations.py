"""Conversation service layer.

All owner-scoped operations:
- Accept an Owner (or a bare user id) and filter on it in SQL
- Hide soft-deleted rows unless the including-deleted path is used
- Report "nothing matched" as None / False rather than raising

Listings are keyset-paginated newest first on (created_at, id).
"""

import json
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import Conversation, utc_now_iso
from chatstore.db.session import transaction
from chatstore.logging import get_logger
from chatstore.schemas.conversation import ConversationListItem, ConversationOut, ConversationPage
from chatstore.services.content import dumps_compact
from chatstore.services.ownership import Owner, as_owner
from chatstore.services.pagination import (
    clamp_limit,
    cursor_clause,
    decode_cursor,
    encode_cursor,
)
from chatstore.services.patch import UNSET, build_patch

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

# Columns update_conversation_settings may touch, with their value converters
SETTINGS_FIELDS = {
    "streaming_enabled": bool,
    "tools_enabled": bool,
    "quality_level": None,
    "reasoning_effort": None,
    "verbosity": None,
}

_CONVERSATION_COLUMNS = """
    id, user_id, session_id, title, provider_id, model, metadata,
    streaming_enabled, tools_enabled, quality_level, reasoning_effort, verbosity,
    created_at, updated_at
"""


# =============================================================================
# Helper Functions
# =============================================================================


def load_metadata(raw: Any) -> dict[str, Any]:
    """Decode a stored metadata document. Corrupt or non-object values read as {}."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def normalize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Guarantee metadata["active_tools"] is a list."""
    active_tools = metadata.get("active_tools")
    return {**metadata, "active_tools": active_tools if isinstance(active_tools, list) else []}


def _row_to_out(row) -> ConversationOut:
    metadata = normalize_metadata(load_metadata(row.metadata))
    return ConversationOut(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        title=row.title,
        provider_id=row.provider_id,
        model=row.model,
        metadata=metadata,
        active_tools=metadata["active_tools"],
        streaming_enabled=bool(row.streaming_enabled),
        tools_enabled=bool(row.tools_enabled),
        quality_level=row.quality_level,
        reasoning_effort=row.reasoning_effort,
        verbosity=row.verbosity,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def conversation_to_out(conversation: Conversation) -> ConversationOut:
    """Convert Conversation ORM model to ConversationOut schema."""
    metadata = normalize_metadata(load_metadata(conversation.metadata_))
    return ConversationOut(
        id=conversation.id,
        user_id=conversation.user_id,
        session_id=conversation.session_id,
        title=conversation.title,
        provider_id=conversation.provider_id,
        model=conversation.model,
        metadata=metadata,
        active_tools=metadata["active_tools"],
        streaming_enabled=bool(conversation.streaming_enabled),
        tools_enabled=bool(conversation.tools_enabled),
        quality_level=conversation.quality_level,
        reasoning_effort=conversation.reasoning_effort,
        verbosity=conversation.verbosity,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _update_owned(db: Session, conversation_id: str, owner: Owner, set_clause: str, params: dict) -> bool:
    """Apply an UPDATE to one live, owned conversation. Returns whether a row changed."""
    owner_sql, owner_params = owner.sql_filter()
    with transaction(db):
        result = db.execute(
            text(f"""
                UPDATE conversations
                SET {set_clause}, updated_at = :now
                WHERE id = :id AND {owner_sql} AND deleted_at IS NULL
            """),
            {**params, **owner_params, "id": conversation_id, "now": utc_now_iso()},
        )
    return result.rowcount > 0


# =============================================================================
# Service Functions
# =============================================================================


def create_conversation(
    db: Session,
    owner: Owner | str,
    *,
    id: str | None = None,
    title: str | None = None,
    provider_id: str | None = None,
    model: str | None = None,
    streaming_enabled: bool = False,
    tools_enabled: bool = False,
    quality_level: str | None = None,
    reasoning_effort: str | None = None,
    verbosity: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ConversationOut:
    """Create a new conversation owned by exactly one identity.

    Args:
        db: Database session.
        owner: Owning identity. Only the winning id of a resolved Owner is stored.
        id: Conversation id. A uuid4 is generated when omitted.

    Returns:
        The created conversation.

    Raises:
        InvalidArgumentError(E_OWNER_REQUIRED): If owner is empty.
        ConflictError: If the id already exists.
    """
    owner = as_owner(owner)
    now = utc_now_iso()
    conversation = Conversation(
        id=id or str(uuid4()),
        user_id=owner.user_id,
        session_id=owner.session_id,
        title=title or None,
        provider_id=provider_id or None,
        model=model or None,
        metadata_=dict(metadata or {}),
        streaming_enabled=bool(streaming_enabled),
        tools_enabled=bool(tools_enabled),
        quality_level=quality_level,
        reasoning_effort=reasoning_effort,
        verbosity=verbosity,
        created_at=now,
        updated_at=now,
    )

    with transaction(db):
        db.add(conversation)
        db.flush()

    logger.info(
        "conversation_created",
        conversation_id=conversation.id,
        owner_kind="user" if owner.is_user else "session",
    )
    return conversation_to_out(conversation)


def get_conversation_by_id(db: Session, conversation_id: str, owner: Owner | str) -> ConversationOut | None:
    """Get a live conversation visible to owner, or None."""
    owner = as_owner(owner)
    owner_sql, owner_params = owner.sql_filter()
    row = db.execute(
        text(f"""
            SELECT {_CONVERSATION_COLUMNS}
            FROM conversations
            WHERE id = :id AND {owner_sql} AND deleted_at IS NULL
        """),
        {"id": conversation_id, **owner_params},
    ).fetchone()
    if row is None:
        return None
    return _row_to_out(row)


def update_conversation_metadata(
    db: Session, conversation_id: str, owner: Owner | str, patch: dict[str, Any] | None
) -> bool:
    """Merge patch into the stored metadata (new keys overwrite, others kept).

    The read and write happen in one transaction.
    """
    owner = as_owner(owner)
    owner_sql, owner_params = owner.sql_filter()
    now = utc_now_iso()
    with transaction(db):
        raw = db.execute(
            text(f"""
                SELECT metadata FROM conversations
                WHERE id = :id AND {owner_sql} AND deleted_at IS NULL
            """),
            {"id": conversation_id, **owner_params},
        ).scalar()
        if raw is None:
            return False
        merged = {**load_metadata(raw), **(patch or {})}
        result = db.execute(
            text(f"""
                UPDATE conversations
                SET metadata = :metadata, updated_at = :now
                WHERE id = :id AND {owner_sql} AND deleted_at IS NULL
            """),
            {"id": conversation_id, "metadata": dumps_compact(merged), "now": now, **owner_params},
        )
    return result.rowcount > 0


def update_conversation_title(
    db: Session,
    conversation_id: str,
    owner: Owner | str,
    title: str | None,
    provider_id: str | None = UNSET,
) -> bool:
    """Set the title, and the provider id when one is passed."""
    patch = build_patch(
        {"title": title, "provider_id": provider_id},
        {"title": None, "provider_id": None},
    )
    return _update_owned(db, conversation_id, as_owner(owner), patch.set_clause(), patch.params)


def update_conversation_provider_id(
    db: Session, conversation_id: str, owner: Owner | str, provider_id: str | None
) -> bool:
    return _update_owned(
        db, conversation_id, as_owner(owner), "provider_id = :provider_id", {"provider_id": provider_id}
    )


def update_conversation_model(
    db: Session, conversation_id: str, owner: Owner | str, model: str | None
) -> bool:
    return _update_owned(db, conversation_id, as_owner(owner), "model = :model", {"model": model})


def update_conversation_settings(
    db: Session,
    conversation_id: str,
    owner: Owner | str,
    *,
    streaming_enabled: bool = UNSET,
    tools_enabled: bool = UNSET,
    quality_level: str | None = UNSET,
    reasoning_effort: str | None = UNSET,
    verbosity: str | None = UNSET,
) -> bool:
    """Apply a sparse settings patch. Only provided fields change.

    Passing None for a tri-state knob clears it; omitting it leaves it alone.

    Returns:
        False when no field was provided or nothing matched.
    """
    owner = as_owner(owner)
    patch = build_patch(
        {
            "streaming_enabled": streaming_enabled,
            "tools_enabled": tools_enabled,
            "quality_level": quality_level,
            "reasoning_effort": reasoning_effort,
            "verbosity": verbosity,
        },
        SETTINGS_FIELDS,
    )
    if not patch:
        return False
    return _update_owned(db, conversation_id, owner, patch.set_clause(), patch.params)


def soft_delete_conversation(db: Session, conversation_id: str, owner: Owner | str) -> bool:
    """Mark a conversation deleted. Rows stay until the retention sweep."""
    owner = as_owner(owner)
    now = utc_now_iso()
    changed = _update_owned(db, conversation_id, owner, "deleted_at = :deleted_at", {"deleted_at": now})
    if changed:
        logger.info("conversation_soft_deleted", conversation_id=conversation_id)
    return changed


def _list(
    db: Session,
    owner: Owner,
    cursor: str | None,
    limit: Any,
    include_deleted: bool,
) -> ConversationPage:
    safe_limit = clamp_limit(limit, fallback=DEFAULT_LIMIT, max_limit=MAX_LIMIT)
    decoded = decode_cursor(cursor)

    owner_sql, params = owner.sql_filter()
    params["limit"] = safe_limit + 1  # Fetch one extra to check for more

    sql = f"""
        SELECT id, title, provider_id, model, created_at, deleted_at
        FROM conversations
        WHERE {owner_sql}
    """
    if not include_deleted:
        sql += " AND deleted_at IS NULL"
    sql += cursor_clause(decoded, params)
    sql += " ORDER BY created_at DESC, id DESC LIMIT :limit"

    rows = db.execute(text(sql), params).fetchall()

    has_more = len(rows) > safe_limit
    rows = rows[:safe_limit]

    items = [
        ConversationListItem(
            id=row.id,
            title=row.title,
            provider_id=row.provider_id,
            model=row.model,
            created_at=row.created_at,
            deleted_at=row.deleted_at,
        )
        for row in rows
    ]

    next_cursor = None
    if has_more and items:
        last = items[-1]
        next_cursor = encode_cursor(last.created_at, last.id)

    return ConversationPage(items=items, next_cursor=next_cursor)


def list_conversations(
    db: Session,
    owner: Owner | str,
    cursor: str | None = None,
    limit: int | None = None,
) -> ConversationPage:
    """List live conversations of owner, newest first.

    Args:
        db: Database session.
        owner: Owning identity.
        cursor: Opaque cursor from a previous page.
        limit: Page size, clamped to [1, 100]; defaults to 20.

    Raises:
        InvalidArgumentError(E_INVALID_CURSOR): If cursor is malformed.
    """
    return _list(db, as_owner(owner), cursor, limit, include_deleted=False)


def list_conversations_including_deleted(
    db: Session,
    owner: Owner | str,
    cursor: str | None = None,
    limit: int | None = None,
    include_deleted: bool = False,
) -> ConversationPage:
    """Listing variant for admin/debug callers; items expose deleted_at."""
    return _list(db, as_owner(owner), cursor, limit, include_deleted=include_deleted)


def count_conversations_by_session(db: Session, session_id: str) -> int:
    """Count live conversations still held by a session. Claimed rows no longer count."""
    return db.execute(
        text("""
            SELECT COUNT(*) FROM conversations
            WHERE session_id = :session_id AND deleted_at IS NULL
        """),
        {"session_id": session_id},
    ).scalar_one()
