"""User accounts and anonymous browser sessions.

Password hashing and credential checks belong to the auth layer; this module
only stores the hash it is given and never returns it.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import User, utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import InvalidArgumentError, StoreErrorCode
from chatstore.logging import get_logger
from chatstore.schemas.user import SessionOut, UserOut
from chatstore.services.patch import build_patch

logger = get_logger(__name__)

# Profile columns update_user may change
PROFILE_FIELDS = {"display_name": None, "email": None}

_USER_COLUMNS = "id, email, display_name, email_verified, last_login_at, created_at, updated_at"


def _row_to_user(row) -> UserOut:
    return UserOut(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        email_verified=bool(row.email_verified),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def create_user(
    db: Session, email: str, password_hash: str | None = None, display_name: str | None = None
) -> UserOut:
    """Create a user account.

    Raises:
        InvalidArgumentError: If email is empty.
        ConflictError: If the email is already registered.
    """
    if not email:
        raise InvalidArgumentError(StoreErrorCode.E_INVALID_ARGUMENT, "email is required")

    now = utc_now_iso()
    user = User(
        id=str(uuid4()),
        email=email,
        password_hash=password_hash,
        display_name=display_name or None,
        email_verified=False,
        created_at=now,
        updated_at=now,
    )
    with transaction(db):
        db.add(user)
        db.flush()

    logger.info("user_created", user_id=user.id)
    return UserOut.model_validate(user)


def get_user_by_id(db: Session, user_id: str) -> UserOut | None:
    row = db.execute(
        text(f"SELECT {_USER_COLUMNS} FROM users WHERE id = :id AND deleted_at IS NULL"),
        {"id": user_id},
    ).fetchone()
    return _row_to_user(row) if row is not None else None


def get_user_by_email(db: Session, email: str) -> UserOut | None:
    row = db.execute(
        text(f"SELECT {_USER_COLUMNS} FROM users WHERE email = :email AND deleted_at IS NULL"),
        {"email": email},
    ).fetchone()
    return _row_to_user(row) if row is not None else None


def get_password_hash(db: Session, email: str) -> str | None:
    """Stored password hash for a live account, for the auth layer to verify."""
    return db.execute(
        text("SELECT password_hash FROM users WHERE email = :email AND deleted_at IS NULL"),
        {"email": email},
    ).scalar()


def is_email_available(db: Session, email: str) -> bool:
    count = db.execute(
        text("SELECT COUNT(*) FROM users WHERE email = :email AND deleted_at IS NULL"),
        {"email": email},
    ).scalar_one()
    return count == 0


def update_last_login(db: Session, user_id: str) -> bool:
    now = utc_now_iso()
    with transaction(db):
        result = db.execute(
            text("UPDATE users SET last_login_at = :now, updated_at = :now WHERE id = :id"),
            {"id": user_id, "now": now},
        )
    return result.rowcount > 0


def update_user(db: Session, user_id: str, **updates: Any) -> UserOut | None:
    """Update profile fields (display_name, email).

    Returns:
        The updated user, the unchanged user when no field was given, or None
        if the user does not exist.

    Raises:
        InvalidArgumentError(E_INVALID_FIELD): If an unknown field is passed.
        ConflictError: If the new email is taken.
    """
    patch = build_patch(updates, PROFILE_FIELDS)
    if not patch:
        return get_user_by_id(db, user_id)

    with transaction(db):
        result = db.execute(
            text(f"""
                UPDATE users SET {patch.set_clause()}, updated_at = :now
                WHERE id = :id AND deleted_at IS NULL
            """),
            {**patch.params, "id": user_id, "now": utc_now_iso()},
        )
    if result.rowcount == 0:
        return None
    return get_user_by_id(db, user_id)


# =============================================================================
# Browser sessions
# =============================================================================


def upsert_session(
    db: Session,
    session_id: str,
    user_id: str | None = None,
    user_agent: str | None = None,
    ip_hash: str | None = None,
) -> None:
    """Record a browser session, refreshing last_seen_at.

    An existing user link is never cleared by passing user_id=None.
    """
    if not session_id:
        raise InvalidArgumentError(StoreErrorCode.E_OWNER_REQUIRED, "session_id is required")

    now = utc_now_iso()
    with transaction(db):
        db.execute(
            text("""
                INSERT INTO sessions (id, user_id, created_at, last_seen_at, user_agent, ip_hash)
                VALUES (:id, :user_id, :now, :now, :user_agent, :ip_hash)
                ON CONFLICT (id) DO UPDATE SET
                    user_id = COALESCE(excluded.user_id, sessions.user_id),
                    last_seen_at = excluded.last_seen_at,
                    user_agent = COALESCE(excluded.user_agent, sessions.user_agent),
                    ip_hash = COALESCE(excluded.ip_hash, sessions.ip_hash)
            """),
            {"id": session_id, "user_id": user_id, "now": now, "user_agent": user_agent, "ip_hash": ip_hash},
        )


def link_session_to_user(
    db: Session,
    session_id: str | None,
    user_id: str | None,
    user_agent: str | None = None,
    ip_hash: str | None = None,
) -> bool:
    """Associate a browser session with a signed-in user. No-op without both ids."""
    if not session_id or not user_id:
        return False
    upsert_session(db, session_id, user_id=user_id, user_agent=user_agent, ip_hash=ip_hash)
    return True


def get_user_sessions(db: Session, user_id: str) -> list[SessionOut]:
    rows = db.execute(
        text("""
            SELECT id, created_at, last_seen_at, user_agent, ip_hash
            FROM sessions
            WHERE user_id = :user_id
            ORDER BY last_seen_at DESC
        """),
        {"user_id": user_id},
    ).fetchall()
    return [SessionOut.model_validate(row) for row in rows]
