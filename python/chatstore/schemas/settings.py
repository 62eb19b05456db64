"""User setting and maintenance result schemas."""

from pydantic import BaseModel, ConfigDict


class UserSettingOut(BaseModel):
    """A user setting. Sensitive values are returned decrypted (or None if undecryptable)."""

    id: str
    user_id: str
    name: str
    value: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class RetentionResult(BaseModel):
    """Outcome of a retention sweep."""

    deleted: int = 0
