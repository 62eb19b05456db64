"""User and browser session schemas."""

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    """A user account. The password hash is never part of the read shape."""

    id: str
    email: str
    display_name: str | None = None
    email_verified: bool = False
    last_login_at: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class SessionOut(BaseModel):
    id: str
    created_at: str
    last_seen_at: str | None = None
    user_agent: str | None = None
    ip_hash: str | None = None

    model_config = ConfigDict(from_attributes=True)
