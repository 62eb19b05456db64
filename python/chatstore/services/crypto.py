"""Cryptographic primitives for envelope encryption of user settings.

Implements XSalsa20-Poly1305 authenticated encryption via PyNaCl's SecretBox.

Key hierarchy:
- KEK (key encryption key) comes from ENCRYPTION_MASTER_KEY and never touches the DB
- Each user owns a DEK (data encryption key), stored wrapped by the KEK
- Sensitive values are encrypted with the user's DEK

Ciphertext wire format (both wrapped DEKs and encrypted values):
    $ENC$v1$<nonce_b64>$<ciphertext_b64>

Security invariants:
- Never log plaintext, keys or ciphertext
- Nonce is random per encryption operation (24 bytes)
- Decryption fails loudly (CryptoError) on a wrong key or tampered data
"""

import base64
import binascii
import os
import re

from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.secret import SecretBox

# SecretBox nonce size (24 bytes)
NONCE_SIZE = SecretBox.NONCE_SIZE

# Key size for both KEK and DEK (32 bytes)
KEY_SIZE = SecretBox.KEY_SIZE

ENC_VERSION = "v1"
ENC_PREFIX = "$ENC$"
ENC_HEADER = f"{ENC_PREFIX}{ENC_VERSION}$"

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]+$")


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


# =============================================================================
# KEK parsing
# =============================================================================


def _parse_hex_key(raw: str) -> bytes | None:
    s = raw.strip()
    if len(s) != KEY_SIZE * 2 or not _HEX_KEY_RE.match(s):
        return None
    return bytes.fromhex(s)


def _parse_base64_key(raw: str) -> bytes | None:
    try:
        key = base64.b64decode(raw.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    return key if len(key) == KEY_SIZE else None


def _parse_utf8_key(raw: str) -> bytes | None:
    key = raw.encode("utf-8")
    return key if len(key) == KEY_SIZE else None


def parse_kek(raw: str | None) -> bytes | None:
    """Parse a master key from its configured string form.

    Accepted forms, tried in order:
    - 64-char hex
    - base64 that decodes to 32 bytes
    - a raw string whose utf-8 encoding is 32 bytes

    Returns:
        The 32-byte KEK, or None when raw is empty.

    Raises:
        CryptoError: If a value is present but none of the forms yields 32 bytes.
    """
    if not raw:
        return None

    for parser in (_parse_hex_key, _parse_base64_key, _parse_utf8_key):
        key = parser(raw)
        if key is not None:
            return key

    raise CryptoError(
        f"ENCRYPTION_MASTER_KEY must be {KEY_SIZE} bytes (got {len(raw.encode('utf-8'))})"
    )


# =============================================================================
# Primitives
# =============================================================================


def generate_dek() -> bytes:
    """Generate a fresh 32-byte data encryption key from the OS CSPRNG."""
    return os.urandom(KEY_SIZE)


def generate_nonce() -> bytes:
    """Generate a random 24-byte nonce. Never reuse a nonce under the same key."""
    return os.urandom(NONCE_SIZE)


def is_encrypted(value: object) -> bool:
    """Whether value is a string carrying the ciphertext marker."""
    return isinstance(value, str) and value.startswith(ENC_PREFIX)


def _check_key(key: bytes) -> None:
    if not isinstance(key, bytes) or len(key) != KEY_SIZE:
        raise CryptoError(f"Invalid key: expected {KEY_SIZE} bytes")


def _seal(plaintext: bytes, key: bytes) -> str:
    _check_key(key)
    nonce = generate_nonce()
    try:
        encrypted = SecretBox(key).encrypt(plaintext, nonce=nonce)
    except NaclCryptoError as e:
        raise CryptoError("Encryption failed") from e
    nonce_b64 = base64.b64encode(nonce).decode("ascii")
    ct_b64 = base64.b64encode(encrypted.ciphertext).decode("ascii")
    return f"{ENC_HEADER}{nonce_b64}${ct_b64}"


def _open(value: str, key: bytes) -> bytes:
    _check_key(key)
    # ['', 'ENC', 'v1', nonce, ciphertext]
    parts = value.split("$")
    if len(parts) != 5 or parts[1] != "ENC" or parts[2] != ENC_VERSION:
        raise CryptoError("Invalid encrypted value format")

    try:
        nonce = base64.b64decode(parts[3], validate=True)
        ciphertext = base64.b64decode(parts[4], validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Invalid encrypted value encoding") from e

    if len(nonce) != NONCE_SIZE:
        raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    try:
        return SecretBox(key).decrypt(ciphertext, nonce=nonce)
    except NaclCryptoError as e:
        raise CryptoError("Decryption failed") from e


def encrypt_data(plaintext: str | None, key: bytes) -> str | None:
    """Encrypt a string with the given key.

    Args:
        plaintext: The value to encrypt. None passes through.
        key: 32-byte key.

    Returns:
        Ciphertext in $ENC$v1$ format, or None.

    Raises:
        CryptoError: If the key is invalid or encryption fails.
    """
    if plaintext is None:
        return None
    return _seal(str(plaintext).encode("utf-8"), key)


def decrypt_data(value: str | None, key: bytes) -> str | None:
    """Decrypt a $ENC$v1$ value with the given key.

    Values without the marker are returned unchanged.

    Raises:
        CryptoError: If the format is malformed, the key is wrong, or data was tampered with.
    """
    if value is None:
        return None
    if not is_encrypted(value):
        return str(value)
    try:
        return _open(value, key).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted value is not valid utf-8") from e


def wrap_dek(dek: bytes, kek: bytes) -> str:
    """Encrypt a DEK under the KEK for storage on the users row."""
    _check_key(dek)
    return _seal(dek, kek)


def unwrap_dek(wrapped: str, kek: bytes) -> bytes:
    """Recover a DEK previously produced by wrap_dek().

    Raises:
        CryptoError: If the wrapped value is malformed or the KEK does not match.
    """
    if not is_encrypted(wrapped):
        raise CryptoError("Wrapped DEK is missing the encryption marker")
    dek = _open(wrapped, kek)
    if len(dek) != KEY_SIZE:
        raise CryptoError(f"Unwrapped DEK must be {KEY_SIZE} bytes, got {len(dek)}")
    return dek
