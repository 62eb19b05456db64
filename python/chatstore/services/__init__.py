"""Store services.

Each module exposes plain call contracts that the route layer invokes with
an already-resolved identity and a database session.
"""

from chatstore.services.conversations import (
    create_conversation,
    get_conversation_by_id,
    list_conversations,
    soft_delete_conversation,
)
from chatstore.services.forks import fork_conversation_from_message
from chatstore.services.messages import (
    append_assistant_content,
    create_assistant_draft,
    finalize_assistant_message,
    get_messages_page,
    insert_user_message,
)
from chatstore.services.ownership import Owner, claim_session_conversations
from chatstore.services.retention import retention_sweep

__all__ = [
    "Owner",
    "claim_session_conversations",
    "create_conversation",
    "get_conversation_by_id",
    "list_conversations",
    "soft_delete_conversation",
    "insert_user_message",
    "create_assistant_draft",
    "append_assistant_content",
    "finalize_assistant_message",
    "get_messages_page",
    "fork_conversation_from_message",
    "retention_sweep",
]
