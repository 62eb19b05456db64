"""Per-user settings storage.

Sensitive settings (third-party API keys) are encrypted at rest through the
envelope encryption service; all other settings are stored verbatim.
"""

from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.db.models import utc_now_iso
from chatstore.db.session import transaction
from chatstore.logging import get_logger
from chatstore.schemas.settings import UserSettingOut
from chatstore.services.envelope import EnvelopeEncryptionService, get_encryption_service

logger = get_logger(__name__)

SENSITIVE_SETTING_NAMES = frozenset({"tavily_api_key", "exa_api_key", "searxng_api_key"})


def is_sensitive_setting(name: str) -> bool:
    return name in SENSITIVE_SETTING_NAMES


def _service(service: EnvelopeEncryptionService | None) -> EnvelopeEncryptionService:
    return service if service is not None else get_encryption_service()


def _row_to_out(
    db: Session, row, service: EnvelopeEncryptionService | None
) -> UserSettingOut:
    value = row.value
    if is_sensitive_setting(row.name):
        value = _service(service).decrypt_for_user(db, row.user_id, value)
    return UserSettingOut(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        value=value,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_user_setting(
    db: Session,
    user_id: str,
    name: str,
    service: EnvelopeEncryptionService | None = None,
) -> UserSettingOut | None:
    """Get one setting, decrypting sensitive values. None if unset."""
    row = db.execute(
        text("""
            SELECT id, user_id, name, value, created_at, updated_at
            FROM user_settings
            WHERE user_id = :user_id AND name = :name
        """),
        {"user_id": user_id, "name": name},
    ).fetchone()
    if row is None:
        return None
    return _row_to_out(db, row, service)


def list_user_settings(
    db: Session,
    user_id: str,
    service: EnvelopeEncryptionService | None = None,
) -> list[UserSettingOut]:
    rows = db.execute(
        text("""
            SELECT id, user_id, name, value, created_at, updated_at
            FROM user_settings
            WHERE user_id = :user_id
            ORDER BY name ASC
        """),
        {"user_id": user_id},
    ).fetchall()
    return [_row_to_out(db, row, service) for row in rows]


def upsert_user_setting(
    db: Session,
    user_id: str,
    name: str,
    value: str | None,
    service: EnvelopeEncryptionService | None = None,
) -> UserSettingOut | None:
    """Create or replace a setting.

    Sensitive names are encrypted with the user's DEK before storage (or kept
    as plaintext when no KEK is configured).

    Returns:
        The stored setting with its value decrypted.

    Raises:
        NotFoundError(E_USER_NOT_FOUND): If a sensitive value is written for an unknown user.
        ConflictError: If the user does not exist (foreign key).
    """
    value_to_store = value
    if is_sensitive_setting(name):
        value_to_store = _service(service).encrypt_for_user(db, user_id, value)

    now = utc_now_iso()
    with transaction(db):
        db.execute(
            text("""
                INSERT INTO user_settings (id, user_id, name, value, created_at, updated_at)
                VALUES (:id, :user_id, :name, :value, :now, :now)
                ON CONFLICT (user_id, name)
                DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """),
            {"id": str(uuid4()), "user_id": user_id, "name": name, "value": value_to_store, "now": now},
        )

    logger.debug("user_setting_upserted", user_id=user_id, name=name)

    return get_user_setting(db, user_id, name, service=service)


def delete_user_setting(db: Session, user_id: str, name: str) -> bool:
    with transaction(db):
        result = db.execute(
            text("DELETE FROM user_settings WHERE user_id = :user_id AND name = :name"),
            {"user_id": user_id, "name": name},
        )
    return result.rowcount > 0
