"""Conversation ownership.

A conversation is owned by exactly one identity: a signed-in user or an
anonymous browser session. When a caller presents both, the user wins.
Session-owned conversations can later be claimed by a user; a claim is a
one-way move applied one row per transaction so that the first committed
claim always wins.
"""

from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import InvalidArgumentError, StoreErrorCode
from chatstore.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Owner:
    """Resolved owning identity. Exactly one field is set."""

    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.session_id):
            raise InvalidArgumentError(
                StoreErrorCode.E_OWNER_REQUIRED,
                "Exactly one of user_id or session_id must identify the owner",
            )

    @classmethod
    def resolve(cls, user_id: str | None = None, session_id: str | None = None) -> "Owner":
        """Resolve caller identity with user-wins precedence.

        Raises:
            InvalidArgumentError(E_OWNER_REQUIRED): If neither identity is present.
        """
        if user_id:
            return cls(user_id=user_id)
        if session_id:
            return cls(session_id=session_id)
        raise InvalidArgumentError(StoreErrorCode.E_OWNER_REQUIRED, "user_id or session_id is required")

    @property
    def is_user(self) -> bool:
        return self.user_id is not None

    def sql_filter(self, alias: str = "") -> tuple[str, dict[str, str]]:
        """SQL predicate selecting rows owned by this identity, plus its params.

        A session only sees rows no user has claimed.
        """
        prefix = f"{alias}." if alias else ""
        if self.user_id is not None:
            return f"{prefix}user_id = :owner_user_id", {"owner_user_id": self.user_id}
        return (
            f"({prefix}session_id = :owner_session_id AND {prefix}user_id IS NULL)",
            {"owner_session_id": self.session_id},
        )


def as_owner(owner: "Owner | str") -> Owner:
    """Accept a bare user id wherever an Owner is expected."""
    if isinstance(owner, Owner):
        return owner
    return Owner.resolve(user_id=owner)


def claim_session_conversations(db: Session, session_id: str, user_id: str) -> int:
    """Move every unclaimed, live conversation of a session to a user.

    Each row is claimed in its own transaction with a conditional update, so a
    row already claimed by a concurrent caller is left untouched.

    Returns:
        The number of conversations this call claimed.

    Raises:
        InvalidArgumentError(E_OWNER_REQUIRED): If either id is missing.
    """
    if not session_id or not user_id:
        raise InvalidArgumentError(
            StoreErrorCode.E_OWNER_REQUIRED, "session_id and user_id are required"
        )

    candidate_ids = db.execute(
        text("""
            SELECT id FROM conversations
            WHERE session_id = :session_id AND user_id IS NULL AND deleted_at IS NULL
            ORDER BY created_at ASC, id ASC
        """),
        {"session_id": session_id},
    ).scalars().all()

    claimed = 0
    for conversation_id in candidate_ids:
        with transaction(db):
            result = db.execute(
                text("""
                    UPDATE conversations
                    SET user_id = :user_id, session_id = NULL, updated_at = :now
                    WHERE id = :id
                      AND session_id = :session_id
                      AND user_id IS NULL
                      AND deleted_at IS NULL
                """),
                {
                    "user_id": user_id,
                    "session_id": session_id,
                    "id": conversation_id,
                    "now": utc_now_iso(),
                },
            )
        claimed += result.rowcount

    if claimed:
        logger.info(
            "session_conversations_claimed",
            session_id=session_id,
            user_id=user_id,
            claimed=claimed,
        )
    return claimed


def count_claimable_conversations(db: Session, session_id: str) -> int:
    """Count live conversations a session still owns."""
    if not session_id:
        return 0
    return db.execute(
        text("""
            SELECT COUNT(*) FROM conversations
            WHERE session_id = :session_id AND user_id IS NULL AND deleted_at IS NULL
        """),
        {"session_id": session_id},
    ).scalar_one()


def user_has_conversations(db: Session, user_id: str) -> bool:
    if not user_id:
        return False
    row = db.execute(
        text("SELECT 1 FROM conversations WHERE user_id = :user_id AND deleted_at IS NULL LIMIT 1"),
        {"user_id": user_id},
    ).fetchone()
    return row is not None
