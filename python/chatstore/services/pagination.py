"""Keyset pagination helpers.

Conversation listings page on a stable ``(created_at, id)`` pair encoded as
the opaque cursor ``"<created_at>|<id>"``. A cursor without a pipe is a bare
created_at bound. Message pages use a plain integer ``after_seq`` instead.
"""

from dataclasses import dataclass

from chatstore.errors import InvalidArgumentError, StoreErrorCode

CURSOR_SEPARATOR = "|"


@dataclass(frozen=True)
class CreatedAtCursor:
    created_at: str
    id: str | None = None


def clamp_limit(
    limit: object,
    *,
    fallback: int,
    min_limit: int = 1,
    max_limit: int = 100,
    clamp_negative: bool = False,
) -> int:
    """Clamp a caller-supplied page size into [min_limit, max_limit].

    Missing, non-numeric and zero values use the fallback. Negative values
    use the fallback too, unless clamp_negative is set, in which case they
    clamp up to min_limit (message pages).
    """
    if isinstance(limit, bool):
        return fallback
    try:
        numeric = int(limit)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return fallback
    if numeric == 0 or (numeric < 0 and not clamp_negative):
        return fallback
    return min(max(numeric, min_limit), max_limit)


def encode_cursor(created_at: str, id: str) -> str:
    return f"{created_at}{CURSOR_SEPARATOR}{id}"


def decode_cursor(cursor: str | None) -> CreatedAtCursor | None:
    """Decode an opaque listing cursor.

    Returns:
        None for an absent cursor (first page).

    Raises:
        InvalidArgumentError(E_INVALID_CURSOR): If the cursor is not a string
            or its created_at part is empty.
    """
    if cursor is None or cursor == "":
        return None
    if not isinstance(cursor, str):
        raise InvalidArgumentError(StoreErrorCode.E_INVALID_CURSOR, "Invalid cursor")

    created_at, sep, id = cursor.partition(CURSOR_SEPARATOR)
    if not created_at:
        raise InvalidArgumentError(StoreErrorCode.E_INVALID_CURSOR, "Invalid cursor")
    if not sep:
        return CreatedAtCursor(created_at=created_at)
    return CreatedAtCursor(created_at=created_at, id=id or None)


def cursor_clause(cursor: CreatedAtCursor | None, params: dict, alias: str = "") -> str:
    """Build the keyset predicate for DESC ordering on (created_at, id).

    Adds the bound values to params and returns an SQL fragment beginning
    with ``AND``, or an empty string for the first page.
    """
    if cursor is None:
        return ""
    prefix = f"{alias}." if alias else ""
    params["cursor_created_at"] = cursor.created_at
    if cursor.id is None:
        return f" AND {prefix}created_at < :cursor_created_at"
    params["cursor_id"] = cursor.id
    return (
        f" AND ({prefix}created_at < :cursor_created_at"
        f" OR ({prefix}created_at = :cursor_created_at AND {prefix}id < :cursor_id))"
    )
