"""Pydantic schemas for store read shapes.

All schemas are re-exported here for convenient imports.
"""

from chatstore.schemas.conversation import (
    ConversationListItem,
    ConversationOut,
    ConversationPage,
)
from chatstore.schemas.message import (
    InsertedMessage,
    MessageEventOut,
    MessageOut,
    MessageRef,
    MessagesPage,
    ToolCallOut,
    ToolFunction,
    ToolOutputOut,
)
from chatstore.schemas.settings import RetentionResult, UserSettingOut
from chatstore.schemas.user import SessionOut, UserOut

__all__ = [
    # Conversations
    "ConversationOut",
    "ConversationListItem",
    "ConversationPage",
    # Messages
    "MessageOut",
    "MessagesPage",
    "InsertedMessage",
    "MessageRef",
    "MessageEventOut",
    "ToolCallOut",
    "ToolFunction",
    "ToolOutputOut",
    # Settings
    "UserSettingOut",
    "RetentionResult",
    # Users
    "UserOut",
    "SessionOut",
]
