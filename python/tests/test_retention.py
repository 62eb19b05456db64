"""Tests for the retention sweep.

Verifies:
- Only unpinned conversations older than the window are deleted
- Messages and their tool artifacts go with them
- Work proceeds in batches until a short batch
- The sweep never raises
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from chatstore.config import clear_settings_cache
from chatstore.errors import StoreErrorCode, UnavailableError
from chatstore.services import retention
from chatstore.services.retention import BATCH_SIZE, retention_sweep
from chatstore.services.tool_calls import insert_tool_calls
from tests.factories import create_test_conversation, create_test_message, create_test_user

NOW = datetime(2024, 6, 1, tzinfo=UTC)
OLD = "2024-01-01T00:00:00.000000Z"
RECENT = "2024-05-31T00:00:00.000000Z"


def _ids(db_session) -> set[str]:
    return set(db_session.execute(text("SELECT id FROM conversations")).scalars().all())


class TestRetentionSweep:
    def test_deletes_only_expired(self, db_session, session_factory):
        old = create_test_conversation(db_session, created_at=OLD)
        recent = create_test_conversation(db_session, created_at=RECENT)

        result = retention_sweep(days=30, session_factory=session_factory, now=NOW)

        assert result.deleted == 1
        assert _ids(db_session) == {recent}
        assert old not in _ids(db_session)

    def test_pinned_kept(self, db_session, session_factory):
        pinned = create_test_conversation(db_session, created_at=OLD, metadata={"pinned": True})
        create_test_conversation(db_session, created_at=OLD, metadata={"pinned": False})
        create_test_conversation(db_session, created_at=OLD, metadata={"active_tools": []})

        result = retention_sweep(days=30, session_factory=session_factory, now=NOW)

        assert result.deleted == 2
        assert _ids(db_session) == {pinned}

    def test_soft_deleted_swept(self, db_session, session_factory):
        create_test_conversation(db_session, created_at=OLD, deleted_at=OLD)
        assert retention_sweep(days=30, session_factory=session_factory, now=NOW).deleted == 1

    def test_messages_and_artifacts_cascade(self, db_session, session_factory):
        user_id = create_test_user(db_session)
        conversation_id = create_test_conversation(db_session, user_id=user_id, created_at=OLD)
        create_test_message(db_session, conversation_id, 1, content="hi")
        assistant_id = create_test_message(db_session, conversation_id, 2, role="assistant", content="yo")
        insert_tool_calls(db_session, assistant_id, conversation_id, [{"id": "c1", "name": "t"}])

        retention_sweep(days=30, session_factory=session_factory, now=NOW)

        for table in ("messages", "tool_calls", "conversations"):
            assert db_session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar() == 0
        # The owning user is untouched
        assert db_session.execute(text("SELECT COUNT(*) FROM users")).scalar() == 1

    def test_batches_until_short_batch(self, db_session, session_factory):
        db_session.execute(
            text("""
                INSERT INTO conversations (
                    id, session_id, metadata, streaming_enabled, tools_enabled, created_at, updated_at
                )
                VALUES (:id, 'sess', '{}', 0, 0, :old, :old)
            """),
            [{"id": f"c-{i}", "old": OLD} for i in range(BATCH_SIZE + 1)],
        )
        db_session.commit()

        result = retention_sweep(days=30, session_factory=session_factory, now=NOW)

        assert result.deleted == BATCH_SIZE + 1
        assert _ids(db_session) == set()

    def test_nothing_to_do(self, session_factory):
        assert retention_sweep(days=30, session_factory=session_factory, now=NOW).deleted == 0


class TestRetentionFailures:
    def test_persistence_disabled(self, monkeypatch):
        monkeypatch.setenv("PERSIST_TRANSCRIPTS", "false")
        clear_settings_cache()
        assert retention_sweep(days=30).deleted == 0

    def test_session_factory_unavailable(self, monkeypatch):
        def unavailable():
            raise UnavailableError(StoreErrorCode.E_PERSISTENCE_DISABLED, "off")

        monkeypatch.setattr(retention, "get_session_factory", unavailable)
        assert retention_sweep(days=30).deleted == 0

    def test_mid_run_failure_returns_partial_count(self, session_factory, monkeypatch):
        calls = iter([BATCH_SIZE])

        def flaky_batch(db, cutoff):
            try:
                return next(calls)
            except StopIteration:
                raise OperationalError("DELETE", {}, Exception("disk I/O error")) from None

        monkeypatch.setattr(retention, "_sweep_batch", flaky_batch)

        assert retention_sweep(days=30, session_factory=session_factory, now=NOW).deleted == BATCH_SIZE

    def test_days_default_from_settings(self, db_session, session_factory, monkeypatch):
        monkeypatch.setenv("RETENTION_DAYS", "200")
        clear_settings_cache()
        create_test_conversation(db_session, created_at=OLD)

        assert retention_sweep(session_factory=session_factory, now=NOW).deleted == 0

    @pytest.mark.parametrize("days,expected", [(1, 1), (365, 0)])
    def test_window(self, db_session, session_factory, days, expected):
        create_test_conversation(db_session, created_at=OLD)
        assert retention_sweep(days=days, session_factory=session_factory, now=NOW).deleted == expected

    def test_store_outage_mid_run_returns_partial_count(self, session_factory, monkeypatch):
        calls = iter([BATCH_SIZE])

        def outage_batch(db, cutoff):
            try:
                return next(calls)
            except StopIteration:
                raise UnavailableError(StoreErrorCode.E_STORE_UNAVAILABLE, "read-only") from None

        monkeypatch.setattr(retention, "_sweep_batch", outage_batch)

        assert retention_sweep(days=30, session_factory=session_factory, now=NOW).deleted == BATCH_SIZE
