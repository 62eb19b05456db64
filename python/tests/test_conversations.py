"""Tests for the conversation store.

Covers:
- Single-owner creation for users and anonymous sessions
- Owner scoping on every read and write
- Soft delete visibility
- Metadata merge and sparse settings updates
- Newest-first keyset pagination
"""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from chatstore.errors import ConflictError, InvalidArgumentError, StoreErrorCode
from chatstore.services.conversations import (
    count_conversations_by_session,
    create_conversation,
    get_conversation_by_id,
    list_conversations,
    list_conversations_including_deleted,
    soft_delete_conversation,
    update_conversation_metadata,
    update_conversation_model,
    update_conversation_provider_id,
    update_conversation_settings,
    update_conversation_title,
)
from chatstore.services.ownership import Owner
from tests.factories import create_test_conversation, create_test_user


@pytest.fixture
def user_id(db_session) -> str:
    return create_test_user(db_session)


class TestCreateConversation:
    def test_user_owned(self, db_session, user_id):
        conversation = create_conversation(
            db_session, Owner(user_id=user_id), title="Hello", model="gpt-4o"
        )

        assert conversation.user_id == user_id
        assert conversation.session_id is None
        assert conversation.title == "Hello"
        assert conversation.metadata == {"active_tools": []}
        assert conversation.active_tools == []
        assert conversation.created_at == conversation.updated_at

    def test_session_owned(self, db_session):
        conversation = create_conversation(db_session, Owner(session_id="s1"))
        assert conversation.session_id == "s1"
        assert conversation.user_id is None

    def test_resolved_owner_stores_only_user(self, db_session, user_id):
        conversation = create_conversation(db_session, Owner.resolve(user_id=user_id, session_id="s1"))
        assert conversation.user_id == user_id
        assert conversation.session_id is None

    def test_bare_user_id_accepted(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        assert conversation.user_id == user_id

    def test_no_owner_rejected(self, db_session):
        with pytest.raises(InvalidArgumentError) as exc_info:
            create_conversation(db_session, "")
        assert exc_info.value.code == StoreErrorCode.E_OWNER_REQUIRED

    def test_explicit_id_and_duplicate(self, db_session, user_id):
        create_conversation(db_session, user_id, id="conv-1")
        # A second caller would not share this session's identity map
        db_session.expunge_all()
        with pytest.raises(ConflictError):
            create_conversation(db_session, user_id, id="conv-1")

    def test_settings_and_metadata(self, db_session, user_id):
        conversation = create_conversation(
            db_session,
            user_id,
            streaming_enabled=True,
            tools_enabled=True,
            reasoning_effort="high",
            metadata={"active_tools": ["web_search"], "pinned": True},
        )
        fetched = get_conversation_by_id(db_session, conversation.id, user_id)

        assert fetched.streaming_enabled is True
        assert fetched.tools_enabled is True
        assert fetched.reasoning_effort == "high"
        assert fetched.active_tools == ["web_search"]
        assert fetched.metadata["pinned"] is True

    def test_single_owner_enforced_by_schema(self, db_session, user_id):
        with pytest.raises(IntegrityError):
            db_session.execute(
                text("""
                    INSERT INTO conversations (id, user_id, session_id, metadata,
                        streaming_enabled, tools_enabled, created_at, updated_at)
                    VALUES ('bad', :user_id, 's1', '{}', 0, 0, 'now', 'now')
                """),
                {"user_id": user_id},
            )
        db_session.rollback()


class TestOwnerScoping:
    def test_other_user_cannot_see(self, db_session, user_id):
        other = create_test_user(db_session)
        conversation = create_conversation(db_session, user_id)

        assert get_conversation_by_id(db_session, conversation.id, other) is None
        assert soft_delete_conversation(db_session, conversation.id, other) is False
        assert update_conversation_title(db_session, conversation.id, other, "x") is False

    def test_session_cannot_see_user_conversation(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        assert get_conversation_by_id(db_session, conversation.id, Owner(session_id="s1")) is None

    def test_missing_id_returns_none(self, db_session, user_id):
        assert get_conversation_by_id(db_session, "missing", user_id) is None


class TestSoftDelete:
    def test_hidden_after_delete(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)

        assert soft_delete_conversation(db_session, conversation.id, user_id) is True
        assert get_conversation_by_id(db_session, conversation.id, user_id) is None
        assert list_conversations(db_session, user_id).items == []

    def test_delete_twice_returns_false(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        soft_delete_conversation(db_session, conversation.id, user_id)
        assert soft_delete_conversation(db_session, conversation.id, user_id) is False

    def test_including_deleted_listing(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        soft_delete_conversation(db_session, conversation.id, user_id)

        page = list_conversations_including_deleted(db_session, user_id, include_deleted=True)
        assert [item.id for item in page.items] == [conversation.id]
        assert page.items[0].deleted_at is not None

    def test_updates_skip_deleted(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        soft_delete_conversation(db_session, conversation.id, user_id)
        assert update_conversation_model(db_session, conversation.id, user_id, "m") is False


class TestUpdates:
    def test_title_keeps_provider_unless_given(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id, provider_id="openai")

        update_conversation_title(db_session, conversation.id, user_id, "New")
        fetched = get_conversation_by_id(db_session, conversation.id, user_id)
        assert fetched.title == "New"
        assert fetched.provider_id == "openai"

        update_conversation_title(db_session, conversation.id, user_id, "Newer", provider_id="anthropic")
        assert get_conversation_by_id(db_session, conversation.id, user_id).provider_id == "anthropic"

    def test_provider_and_model(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        assert update_conversation_provider_id(db_session, conversation.id, user_id, "openrouter")
        assert update_conversation_model(db_session, conversation.id, user_id, "gpt-4o-mini")

        fetched = get_conversation_by_id(db_session, conversation.id, user_id)
        assert fetched.provider_id == "openrouter"
        assert fetched.model == "gpt-4o-mini"

    def test_metadata_merge(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id, metadata={"a": 1, "b": 2})

        assert update_conversation_metadata(db_session, conversation.id, user_id, {"b": 3, "c": 4})

        fetched = get_conversation_by_id(db_session, conversation.id, user_id)
        assert fetched.metadata == {"a": 1, "b": 3, "c": 4, "active_tools": []}

    def test_metadata_merge_not_owned(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        other = create_test_user(db_session)
        assert update_conversation_metadata(db_session, conversation.id, other, {"x": 1}) is False

    def test_sparse_settings(self, db_session, user_id):
        conversation = create_conversation(
            db_session, user_id, quality_level="high", verbosity="low", streaming_enabled=True
        )

        assert update_conversation_settings(db_session, conversation.id, user_id, verbosity=None)

        fetched = get_conversation_by_id(db_session, conversation.id, user_id)
        assert fetched.verbosity is None
        assert fetched.quality_level == "high"
        assert fetched.streaming_enabled is True

    def test_empty_settings_patch(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        assert update_conversation_settings(db_session, conversation.id, user_id) is False

    def test_update_bumps_updated_at(self, db_session, user_id):
        conversation = create_conversation(db_session, user_id)
        update_conversation_model(db_session, conversation.id, user_id, "m")
        fetched = get_conversation_by_id(db_session, conversation.id, user_id)
        assert fetched.updated_at >= conversation.updated_at
        assert fetched.created_at == conversation.created_at


class TestListConversations:
    def test_newest_first_with_cursor(self, db_session, user_id):
        ids = [
            create_test_conversation(
                db_session, user_id=user_id, created_at=f"2024-01-0{day}T00:00:00.000000Z"
            )
            for day in range(1, 6)
        ]

        first = list_conversations(db_session, user_id, limit=2)
        assert [item.id for item in first.items] == [ids[4], ids[3]]
        assert first.next_cursor is not None

        second = list_conversations(db_session, user_id, cursor=first.next_cursor, limit=2)
        assert [item.id for item in second.items] == [ids[2], ids[1]]

        third = list_conversations(db_session, user_id, cursor=second.next_cursor, limit=2)
        assert [item.id for item in third.items] == [ids[0]]
        assert third.next_cursor is None

    def test_ties_broken_by_id(self, db_session, user_id):
        same = "2024-01-01T00:00:00.000000Z"
        ids = sorted(
            create_test_conversation(db_session, user_id=user_id, created_at=same) for _ in range(3)
        )

        first = list_conversations(db_session, user_id, limit=2)
        second = list_conversations(db_session, user_id, cursor=first.next_cursor, limit=2)

        seen = [item.id for item in first.items + second.items]
        assert seen == list(reversed(ids))

    def test_invalid_cursor(self, db_session, user_id):
        with pytest.raises(InvalidArgumentError) as exc_info:
            list_conversations(db_session, user_id, cursor="|nope")
        assert exc_info.value.code == StoreErrorCode.E_INVALID_CURSOR

    def test_limit_is_clamped(self, db_session, user_id):
        for _ in range(3):
            create_test_conversation(db_session, user_id=user_id)
        assert len(list_conversations(db_session, user_id, limit=0).items) == 3

    def test_session_listing_scoped(self, db_session, user_id):
        create_test_conversation(db_session, session_id="s1")
        create_test_conversation(db_session, user_id=user_id)

        assert len(list_conversations(db_session, Owner(session_id="s1")).items) == 1
        assert count_conversations_by_session(db_session, "s1") == 1
