"""Recorded stream events for assistant messages.

Events (content chunks, reasoning chunks, tool-call markers) are written in
one batch when a stream completes and let readers replay the exact order in
which a turn was produced.
"""

from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from chatstore.db.models import MessageEventType, utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import InvalidArgumentError, StoreErrorCode
from chatstore.logging import get_logger
from chatstore.schemas.message import MessageEventOut
from chatstore.services.content import parse_json_field, serialize_json_field

logger = get_logger(__name__)

EVENT_TYPES = frozenset(t.value for t in MessageEventType)


def insert_message_events(
    db: Session, message_id: int, conversation_id: str, events: list[Mapping[str, Any]] | None
) -> int:
    """Insert a batch of events for a message in one transaction.

    Each event is ``{"type", "payload", "seq"}``; seq defaults to 0.

    Returns:
        Number of events written.

    Raises:
        InvalidArgumentError: If an event type is unknown.
    """
    if not message_id or not conversation_id or not events:
        return 0

    now = utc_now_iso()
    rows = []
    for event in events:
        event_type = event.get("type")
        if event_type not in EVENT_TYPES:
            raise InvalidArgumentError(
                StoreErrorCode.E_INVALID_ARGUMENT, f"Unknown message event type: {event_type}"
            )
        seq = event.get("seq")
        rows.append(
            {
                "message_id": message_id,
                "conversation_id": conversation_id,
                "seq": seq if isinstance(seq, int) and not isinstance(seq, bool) else 0,
                "type": event_type,
                "payload": serialize_json_field(event.get("payload")),
                "now": now,
            }
        )

    with transaction(db):
        db.execute(
            text("""
                INSERT INTO message_events (message_id, conversation_id, seq, type, payload, created_at)
                VALUES (:message_id, :conversation_id, :seq, :type, :payload, :now)
            """),
            rows,
        )

    logger.debug("message_events_inserted", message_id=message_id, count=len(rows))
    return len(rows)


def get_message_events_by_message_ids(
    db: Session, message_ids: list[int]
) -> dict[int, list[MessageEventOut]]:
    """Load events for many messages, grouped by message id and ordered by event seq."""
    if not message_ids:
        return {}
    rows = db.execute(
        text("""
            SELECT id, message_id, conversation_id, seq, type, payload, created_at
            FROM message_events
            WHERE message_id IN :message_ids
            ORDER BY message_id ASC, seq ASC, id ASC
        """).bindparams(bindparam("message_ids", expanding=True)),
        {"message_ids": list(message_ids)},
    ).fetchall()

    grouped: dict[int, list[MessageEventOut]] = defaultdict(list)
    for row in rows:
        grouped[row.message_id].append(
            MessageEventOut(
                id=row.id,
                seq=row.seq,
                type=row.type,
                payload=parse_json_field(row.payload, row.id, "payload"),
                created_at=row.created_at,
            )
        )
    return dict(grouped)
