"""Sequence assignment helper for message ordering.

Message seq is conversation-scoped, strictly increasing and gap tolerant:
the next value is max(seq) + 1, starting at 1. Deleting a tail of messages
lets the freed values be reused.

The (conversation_id, seq) unique constraint is the arbiter for concurrent
writers: a caller that loses the race gets a ConflictError from the insert.
"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.logging import get_logger

logger = get_logger(__name__)


def get_next_seq(db: Session, conversation_id: str) -> int:
    """Return the next message sequence number for a conversation.

    Call inside the same transaction as the insert that will use the value.

    Args:
        db: Database session.
        conversation_id: ID of the conversation.

    Returns:
        max(seq) + 1, or 1 for an empty conversation.
    """
    next_seq = db.execute(
        text("""
            SELECT COALESCE(MAX(seq), 0) + 1
            FROM messages
            WHERE conversation_id = :conversation_id
        """),
        {"conversation_id": conversation_id},
    ).scalar_one()

    logger.debug("assigned_message_seq", conversation_id=conversation_id, seq=next_seq)
    return int(next_seq)
