"""Database module for chatstore.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from chatstore.db.engine import create_db_engine, create_schema, get_engine
from chatstore.db.models import (
    Base,
    BrowserSession,
    Conversation,
    Message,
    MessageEvent,
    MessageEventType,
    MessageRole,
    MessageStatus,
    ToolCall,
    ToolOutput,
    ToolOutputStatus,
    User,
    UserSetting,
    utc_now_iso,
)
from chatstore.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "create_schema",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    "utc_now_iso",
    # Enums
    "MessageRole",
    "MessageStatus",
    "ToolOutputStatus",
    "MessageEventType",
    # Models
    "User",
    "BrowserSession",
    "UserSetting",
    "Conversation",
    "Message",
    "ToolCall",
    "ToolOutput",
    "MessageEvent",
]
