"""Store error definitions.

All errors raised by the store layer are defined here together with the
HTTP status the route layer maps them to. Missing rows on mutation paths are
reported through ``None``/``False`` return values instead of exceptions.
"""

from enum import Enum


class StoreErrorCode(str, Enum):
    """Standardized error codes for the store layer.

    Format: E_CATEGORY_NAME
    """

    # Validation errors (400)
    E_INVALID_ARGUMENT = "E_INVALID_ARGUMENT"
    E_OWNER_REQUIRED = "E_OWNER_REQUIRED"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"
    E_INVALID_STATUS = "E_INVALID_STATUS"
    E_INVALID_FIELD = "E_INVALID_FIELD"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_USER_NOT_FOUND = "E_USER_NOT_FOUND"

    # Conflict errors (409)
    E_CONFLICT = "E_CONFLICT"
    E_SEQ_CONFLICT = "E_SEQ_CONFLICT"

    # Server errors
    E_PERSISTENCE_DISABLED = "E_PERSISTENCE_DISABLED"  # 503
    E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"  # 503


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[StoreErrorCode, int] = {
    StoreErrorCode.E_INVALID_ARGUMENT: 400,
    StoreErrorCode.E_OWNER_REQUIRED: 400,
    StoreErrorCode.E_INVALID_CURSOR: 400,
    StoreErrorCode.E_INVALID_STATUS: 400,
    StoreErrorCode.E_INVALID_FIELD: 400,
    StoreErrorCode.E_NOT_FOUND: 404,
    StoreErrorCode.E_USER_NOT_FOUND: 404,
    StoreErrorCode.E_CONFLICT: 409,
    StoreErrorCode.E_SEQ_CONFLICT: 409,
    StoreErrorCode.E_PERSISTENCE_DISABLED: 503,
    StoreErrorCode.E_STORE_UNAVAILABLE: 503,
}


class StoreError(Exception):
    """Base exception for store errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: StoreErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class InvalidArgumentError(StoreError):
    """A required argument is missing or malformed. Never retried."""

    def __init__(
        self, code: StoreErrorCode = StoreErrorCode.E_INVALID_ARGUMENT, message: str = "Invalid argument"
    ):
        super().__init__(code, message)


class NotFoundError(StoreError):
    """Row absent, or absent under the caller's ownership scope."""

    def __init__(self, code: StoreErrorCode = StoreErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ConflictError(StoreError):
    """Unique constraint violation. The store does not retry."""

    def __init__(self, code: StoreErrorCode = StoreErrorCode.E_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)


class UnavailableError(StoreError):
    """Persistence is disabled or the database cannot be reached."""

    def __init__(
        self,
        code: StoreErrorCode = StoreErrorCode.E_STORE_UNAVAILABLE,
        message: str = "Store unavailable",
    ):
        super().__init__(code, message)
