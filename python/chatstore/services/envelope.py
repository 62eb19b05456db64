"""Envelope encryption service for per-user sensitive values.

Owns the DEK lifecycle on top of the primitives in chatstore.services.crypto:
- ensure_user_dek lazily creates, wraps and persists a user's DEK
- encrypt_for_user / decrypt_for_user apply that DEK to individual values

Degradation rules when no KEK is configured:
- encrypt_for_user returns the plaintext unchanged
- decrypt_for_user returns None for values carrying the ciphertext marker

Each degradation condition is logged once per service instance.
"""

from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.orm import Session

from chatstore.config import get_settings
from chatstore.db.models import utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import InvalidArgumentError, NotFoundError, StoreErrorCode
from chatstore.logging import get_logger
from chatstore.services.crypto import (
    CryptoError,
    decrypt_data,
    encrypt_data,
    generate_dek,
    is_encrypted,
    parse_kek,
    unwrap_dek,
    wrap_dek,
)

logger = get_logger(__name__)

# Version stamped on newly created DEKs (no rotation implemented yet)
CURRENT_DEK_VERSION = 1

_WARN_MISSING_KEK = "missing_kek"
_WARN_ENCRYPTED_WITHOUT_KEK = "encrypted_without_kek"
_WARN_DECRYPT_FAILED = "decrypt_failed"


class DekCache:
    """Process-lifetime map of user_id -> raw DEK. No eviction."""

    def __init__(self) -> None:
        self._keys: dict[str, bytes] = {}

    def get(self, user_id: str) -> bytes | None:
        return self._keys.get(user_id)

    def set(self, user_id: str, dek: bytes) -> None:
        self._keys[user_id] = dek

    def clear(self) -> None:
        self._keys.clear()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._keys


class EnvelopeEncryptionService:
    """Encrypts and decrypts user values with lazily provisioned DEKs.

    Args:
        kek: 32-byte key encryption key, or None to run in plaintext mode.
        cache: DEK cache to use. A fresh one is created when omitted.
    """

    def __init__(self, kek: bytes | None, cache: DekCache | None = None):
        self._kek = kek
        self.cache = cache if cache is not None else DekCache()
        self._warned: set[str] = set()

    @property
    def kek_configured(self) -> bool:
        return self._kek is not None

    def _warn_once(self, condition: str, event: str, **kwargs) -> None:
        if condition in self._warned:
            return
        self._warned.add(condition)
        logger.warning(event, **kwargs)

    def ensure_user_dek(self, db: Session, user_id: str) -> bytes | None:
        """Return the user's raw DEK, creating and persisting one if missing.

        A newly created DEK is committed immediately so the cache never holds
        a key that is not stored.

        Returns:
            The 32-byte DEK, or None when no KEK is configured.

        Raises:
            InvalidArgumentError: If user_id is empty.
            NotFoundError(E_USER_NOT_FOUND): If the user does not exist.
            CryptoError: If the stored DEK cannot be unwrapped with the KEK.
        """
        if not user_id:
            raise InvalidArgumentError(StoreErrorCode.E_OWNER_REQUIRED, "user_id is required")

        if self._kek is None:
            self._warn_once(
                _WARN_MISSING_KEK,
                "encryption_kek_missing",
                detail="sensitive values will be stored in plaintext",
            )
            return None

        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        row = db.execute(
            text("SELECT encrypted_dek FROM users WHERE id = :user_id AND deleted_at IS NULL"),
            {"user_id": user_id},
        ).fetchone()
        if row is None:
            raise NotFoundError(StoreErrorCode.E_USER_NOT_FOUND, "User not found")

        if row[0]:
            dek = unwrap_dek(row[0], self._kek)
            self.cache.set(user_id, dek)
            return dek

        dek = generate_dek()
        now = utc_now_iso()
        with transaction(db):
            result = db.execute(
                text("""
                    UPDATE users
                    SET encrypted_dek = :encrypted_dek,
                        dek_created_at = :now,
                        dek_version = COALESCE(dek_version, :version),
                        updated_at = :now
                    WHERE id = :user_id AND deleted_at IS NULL AND encrypted_dek IS NULL
                """),
                {
                    "encrypted_dek": wrap_dek(dek, self._kek),
                    "now": now,
                    "version": CURRENT_DEK_VERSION,
                    "user_id": user_id,
                },
            )

        if result.rowcount == 0:
            # Another writer provisioned first; use theirs
            stored = db.execute(
                text("SELECT encrypted_dek FROM users WHERE id = :user_id"),
                {"user_id": user_id},
            ).scalar()
            if not stored:
                raise NotFoundError(StoreErrorCode.E_USER_NOT_FOUND, "User not found")
            dek = unwrap_dek(stored, self._kek)
        else:
            logger.info("user_dek_created", user_id=user_id, dek_version=CURRENT_DEK_VERSION)

        self.cache.set(user_id, dek)
        return dek

    def encrypt_for_user(self, db: Session, user_id: str, plaintext: str | None) -> str | None:
        """Encrypt a value with the user's DEK.

        None passes through. Values already carrying the marker are returned
        unchanged. Without a KEK the plaintext is returned unchanged.
        """
        if plaintext is None:
            return None
        value = str(plaintext)
        if is_encrypted(value):
            return value

        dek = self.ensure_user_dek(db, user_id)
        if dek is None:
            return value
        return encrypt_data(value, dek)

    def decrypt_for_user(self, db: Session, user_id: str, value: str | None) -> str | None:
        """Decrypt a value with the user's DEK.

        Returns:
            The value itself when it is not encrypted; None when it is encrypted
            but no KEK is configured or decryption fails.
        """
        if value is None:
            return None
        value = str(value)
        if not is_encrypted(value):
            return value

        if self._kek is None:
            self._warn_once(
                _WARN_ENCRYPTED_WITHOUT_KEK,
                "encryption_kek_missing_for_encrypted_value",
                detail="returning None for encrypted fields",
            )
            return None

        try:
            dek = self.ensure_user_dek(db, user_id)
            if dek is None:
                return None
            return decrypt_data(value, dek)
        except (CryptoError, NotFoundError) as e:
            self._warn_once(
                _WARN_DECRYPT_FAILED,
                "encryption_decrypt_failed",
                user_id=user_id,
                error_type=type(e).__name__,
            )
            return None


@lru_cache
def get_encryption_service() -> EnvelopeEncryptionService:
    """Get the process-wide encryption service built from settings.

    Raises:
        CryptoError: If ENCRYPTION_MASTER_KEY is set but cannot be parsed.
    """
    return EnvelopeEncryptionService(parse_kek(get_settings().encryption_master_key))


def clear_encryption_service_cache() -> None:
    """Drop the process-wide service and its DEK cache. Useful for testing."""
    get_encryption_service.cache_clear()
