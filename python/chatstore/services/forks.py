"""Conversation forking.

A fork copies a conversation's settings and the prefix of its message log
up to (and including) a seq into a brand new conversation. The new
conversation, its messages and their tool artifacts are written in a single
transaction: a failure at any step leaves no trace of the fork.
"""

from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import utc_now_iso
from chatstore.db.session import transaction
from chatstore.logging import get_logger
from chatstore.services.ownership import Owner, as_owner

logger = get_logger(__name__)


def _copy_message_prefix(db: Session, source_id: str, target_id: str, message_seq: int, now: str) -> int:
    """Bulk-copy messages with seq <= message_seq, stamped with fork time.

    client_message_id and response_id stay with the source. A draft still
    streaming at fork time is copied as an error: nothing will ever finish it.
    """
    result = db.execute(
        text("""
            INSERT INTO messages (
                conversation_id, seq, role, status, content, content_json,
                finish_reason, reasoning_details, reasoning_tokens, created_at, updated_at
            )
            SELECT
                :target_id, seq, role,
                CASE WHEN status = 'streaming' THEN 'error' ELSE status END,
                content, content_json,
                CASE WHEN status = 'streaming' THEN 'error' ELSE finish_reason END,
                reasoning_details, reasoning_tokens, :now, :now
            FROM messages
            WHERE conversation_id = :source_id AND seq <= :message_seq
            ORDER BY seq
        """),
        {"target_id": target_id, "source_id": source_id, "message_seq": message_seq, "now": now},
    )
    return result.rowcount


def _copy_tool_artifacts(db: Session, source_id: str, target_id: str, message_seq: int, now: str) -> None:
    """Copy tool calls, tool outputs and stream events onto the copied messages.

    Old and new message rows are matched on seq.
    """
    params = {"target_id": target_id, "source_id": source_id, "message_seq": message_seq, "now": now}
    db.execute(
        text("""
            INSERT INTO tool_calls (
                id, message_id, conversation_id, call_index, tool_name, arguments, text_offset, created_at
            )
            SELECT tc.id, nm.id, :target_id, tc.call_index, tc.tool_name, tc.arguments, tc.text_offset, :now
            FROM tool_calls tc
            JOIN messages om ON om.id = tc.message_id
            JOIN messages nm ON nm.conversation_id = :target_id AND nm.seq = om.seq
            WHERE om.conversation_id = :source_id AND om.seq <= :message_seq
        """),
        params,
    )
    db.execute(
        text("""
            INSERT INTO tool_outputs (tool_call_id, message_id, conversation_id, output, status, executed_at)
            SELECT t.tool_call_id, nm.id, :target_id, t.output, t.status, t.executed_at
            FROM tool_outputs t
            JOIN messages om ON om.id = t.message_id
            JOIN messages nm ON nm.conversation_id = :target_id AND nm.seq = om.seq
            WHERE om.conversation_id = :source_id AND om.seq <= :message_seq
            ORDER BY t.id
        """),
        params,
    )
    db.execute(
        text("""
            INSERT INTO message_events (message_id, conversation_id, seq, type, payload, created_at)
            SELECT nm.id, :target_id, e.seq, e.type, e.payload, :now
            FROM message_events e
            JOIN messages om ON om.id = e.message_id
            JOIN messages nm ON nm.conversation_id = :target_id AND nm.seq = om.seq
            WHERE om.conversation_id = :source_id AND om.seq <= :message_seq
            ORDER BY e.id
        """),
        params,
    )


def fork_conversation_from_message(
    db: Session,
    original_conversation_id: str,
    owner: Owner | str,
    message_seq: int,
    title: str | None = None,
    provider_id: str | None = None,
    model: str | None = None,
) -> str | None:
    """Fork a conversation at a message.

    Args:
        db: Database session.
        original_conversation_id: Conversation to fork.
        owner: Caller identity; must own the source. Also owns the fork.
        message_seq: Last seq (inclusive) to copy.
        title: Title of the fork. Defaults to the source's.
        provider_id: Provider of the fork. Defaults to the source's.
        model: Model of the fork. Defaults to the source's.

    Returns:
        The new conversation id, or None if the source is missing, deleted,
        or not owned by owner.
    """
    owner = as_owner(owner)
    owner_sql, owner_params = owner.sql_filter()
    new_id = str(uuid4())
    now = utc_now_iso()

    with transaction(db):
        source = db.execute(
            text(f"""
                SELECT id, title, provider_id, model, metadata, streaming_enabled, tools_enabled,
                       quality_level, reasoning_effort, verbosity
                FROM conversations
                WHERE id = :id AND {owner_sql} AND deleted_at IS NULL
            """),
            {"id": original_conversation_id, **owner_params},
        ).fetchone()
        if source is None:
            return None

        db.execute(
            text("""
                INSERT INTO conversations (
                    id, user_id, session_id, title, provider_id, model, metadata,
                    streaming_enabled, tools_enabled, quality_level, reasoning_effort, verbosity,
                    created_at, updated_at
                )
                VALUES (
                    :id, :user_id, :session_id, :title, :provider_id, :model, :metadata,
                    :streaming_enabled, :tools_enabled, :quality_level, :reasoning_effort, :verbosity,
                    :now, :now
                )
            """),
            {
                "id": new_id,
                "user_id": owner.user_id,
                "session_id": owner.session_id,
                "title": title or source.title,
                "provider_id": provider_id or source.provider_id,
                "model": model or source.model,
                "metadata": source.metadata or "{}",
                "streaming_enabled": source.streaming_enabled,
                "tools_enabled": source.tools_enabled,
                "quality_level": source.quality_level,
                "reasoning_effort": source.reasoning_effort,
                "verbosity": source.verbosity,
                "now": now,
            },
        )

        copied = _copy_message_prefix(db, original_conversation_id, new_id, message_seq, now)
        _copy_tool_artifacts(db, original_conversation_id, new_id, message_seq, now)

    logger.info(
        "conversation_forked",
        source_conversation_id=original_conversation_id,
        conversation_id=new_id,
        message_seq=message_seq,
        messages_copied=copied,
    )
    return new_id
