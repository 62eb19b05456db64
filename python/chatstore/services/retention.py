"""Retention sweep for expired conversations.

Deletes conversations older than the retention window unless their metadata
marks them as pinned. Work proceeds in batches of BATCH_SIZE, one transaction
per batch: messages first (tool artifacts and events cascade), then the
conversation rows. Soft-deleted conversations are swept like any other.

The sweep is best-effort maintenance: it never raises. If persistence is
unavailable it reports zero deletions; if the database fails mid-run the
error is logged and the count committed so far is returned.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatstore.config import get_settings
from chatstore.db.models import to_utc_iso
from chatstore.db.session import get_session_factory, transaction
from chatstore.errors import ConflictError, UnavailableError
from chatstore.logging import get_logger
from chatstore.schemas.settings import RetentionResult

logger = get_logger(__name__)

BATCH_SIZE = 500


def _sweep_batch(db: Session, cutoff: str) -> int:
    with transaction(db):
        ids = db.execute(
            text("""
                SELECT id FROM conversations
                WHERE created_at < :cutoff
                  AND (json_extract(metadata, '$.pinned') IS NULL
                       OR json_extract(metadata, '$.pinned') = 0)
                LIMIT :batch_size
            """),
            {"cutoff": cutoff, "batch_size": BATCH_SIZE},
        ).scalars().all()
        if not ids:
            return 0

        db.execute(
            text("DELETE FROM messages WHERE conversation_id IN :ids").bindparams(
                bindparam("ids", expanding=True)
            ),
            {"ids": list(ids)},
        )
        db.execute(
            text("DELETE FROM conversations WHERE id IN :ids").bindparams(
                bindparam("ids", expanding=True)
            ),
            {"ids": list(ids)},
        )
    return len(ids)


def retention_sweep(
    days: int | None = None,
    session_factory: Callable[[], Session] | None = None,
    now: datetime | None = None,
) -> RetentionResult:
    """Hard-delete unpinned conversations created more than `days` ago.

    Args:
        days: Retention window. Defaults to RETENTION_DAYS.
        session_factory: Session factory to use. Defaults to the app's.
        now: Reference time, for tests. Defaults to the current UTC time.

    Returns:
        RetentionResult with the number of conversations deleted.
    """
    try:
        if days is None:
            days = get_settings().retention_days
        if session_factory is None:
            session_factory = get_session_factory()
        db = session_factory()
    except (UnavailableError, SQLAlchemyError) as e:
        logger.info("retention_sweep_skipped", reason=type(e).__name__)
        return RetentionResult(deleted=0)

    cutoff = to_utc_iso((now or datetime.now(UTC)) - timedelta(days=days))
    deleted = 0
    try:
        while True:
            batch = _sweep_batch(db, cutoff)
            deleted += batch
            if batch < BATCH_SIZE:
                break
    except (SQLAlchemyError, ConflictError, UnavailableError) as e:
        logger.error("retention_sweep_failed", error=str(e), deleted=deleted, days=days)
        return RetentionResult(deleted=deleted)
    finally:
        db.close()

    logger.info("retention_sweep_completed", deleted=deleted, days=days, cutoff=cutoff)
    return RetentionResult(deleted=deleted)
