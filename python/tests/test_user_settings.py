"""Tests for per-user settings, including encryption of sensitive values."""

import pytest
from sqlalchemy import text

from chatstore.errors import ConflictError
from chatstore.services.crypto import is_encrypted
from chatstore.services.user_settings import (
    delete_user_setting,
    get_user_setting,
    is_sensitive_setting,
    list_user_settings,
    upsert_user_setting,
)
from tests.factories import create_test_user


def _raw_value(db_session, user_id, name):
    return db_session.execute(
        text("SELECT value FROM user_settings WHERE user_id = :user_id AND name = :name"),
        {"user_id": user_id, "name": name},
    ).scalar()


class TestSensitiveNames:
    @pytest.mark.parametrize("name", ["tavily_api_key", "exa_api_key", "searxng_api_key"])
    def test_api_keys_are_sensitive(self, name):
        assert is_sensitive_setting(name)

    def test_other_names_are_not(self):
        assert not is_sensitive_setting("theme")


class TestUpsertUserSetting:
    def test_plain_setting_stored_verbatim(self, db_session, encryption_service):
        user_id = create_test_user(db_session)

        setting = upsert_user_setting(db_session, user_id, "theme", "dark", service=encryption_service)

        assert setting.value == "dark"
        assert _raw_value(db_session, user_id, "theme") == "dark"

    def test_sensitive_setting_encrypted_at_rest(self, db_session, encryption_service):
        user_id = create_test_user(db_session)

        setting = upsert_user_setting(
            db_session, user_id, "tavily_api_key", "tvly-secret", service=encryption_service
        )

        raw = _raw_value(db_session, user_id, "tavily_api_key")
        assert is_encrypted(raw)
        assert "tvly-secret" not in raw
        assert setting.value == "tvly-secret"

    def test_sensitive_setting_plaintext_without_kek(self, db_session, plaintext_service):
        user_id = create_test_user(db_session)
        upsert_user_setting(db_session, user_id, "exa_api_key", "exa-1", service=plaintext_service)
        assert _raw_value(db_session, user_id, "exa_api_key") == "exa-1"

    def test_upsert_replaces_value(self, db_session, encryption_service):
        user_id = create_test_user(db_session)
        first = upsert_user_setting(db_session, user_id, "theme", "dark", service=encryption_service)
        second = upsert_user_setting(db_session, user_id, "theme", "light", service=encryption_service)

        assert second.value == "light"
        assert second.id == first.id
        assert len(list_user_settings(db_session, user_id, service=encryption_service)) == 1

    def test_unknown_user_conflicts(self, db_session, encryption_service):
        with pytest.raises(ConflictError):
            upsert_user_setting(db_session, "missing", "theme", "dark", service=encryption_service)


class TestReadSettings:
    def test_get_missing_returns_none(self, db_session, encryption_service):
        user_id = create_test_user(db_session)
        assert get_user_setting(db_session, user_id, "theme", service=encryption_service) is None

    def test_list_is_sorted_and_decrypted(self, db_session, encryption_service):
        user_id = create_test_user(db_session)
        upsert_user_setting(db_session, user_id, "theme", "dark", service=encryption_service)
        upsert_user_setting(db_session, user_id, "exa_api_key", "exa-1", service=encryption_service)

        settings = list_user_settings(db_session, user_id, service=encryption_service)

        assert [s.name for s in settings] == ["exa_api_key", "theme"]
        assert settings[0].value == "exa-1"

    def test_encrypted_value_without_kek_reads_none(
        self, db_session, encryption_service, plaintext_service
    ):
        user_id = create_test_user(db_session)
        upsert_user_setting(db_session, user_id, "tavily_api_key", "tvly", service=encryption_service)

        setting = get_user_setting(db_session, user_id, "tavily_api_key", service=plaintext_service)
        assert setting is not None
        assert setting.value is None


class TestDeleteUserSetting:
    def test_delete(self, db_session, encryption_service):
        user_id = create_test_user(db_session)
        upsert_user_setting(db_session, user_id, "theme", "dark", service=encryption_service)

        assert delete_user_setting(db_session, user_id, "theme") is True
        assert delete_user_setting(db_session, user_id, "theme") is False
