"""
Tests for the plain settings document.
"""

import json

from services.settings_store import (
    ContactSettings, DEFAULT_FORM_TITLE, DEFAULT_SUCCESS_MESSAGE, SettingsStore
)


class TestSettingsStore:

    def test_defaults_when_missing(self, tmp_path):
        settings = SettingsStore(tmp_path / "settings.json").load()

        assert settings.form_title == DEFAULT_FORM_TITLE
        assert settings.success_message == DEFAULT_SUCCESS_MESSAGE
        assert settings.credentials_saved is False

    def test_save_and_load(self, tmp_path):
        store = SettingsStore(tmp_path / "nested" / "settings.json")
        store.save(ContactSettings("Write to us", "Got it!", True))

        assert store.load() == ContactSettings("Write to us", "Got it!", True)

    def test_invalid_json_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")

        assert SettingsStore(path).load() == ContactSettings()

    def test_non_object_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]")

        assert SettingsStore(path).load() == ContactSettings()

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"form_title": "Hi", "legacy_option": 1}))

        assert SettingsStore(path).load().form_title == "Hi"

    def test_settings_never_hold_credentials(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.json")
        store.save(ContactSettings())

        assert set(json.loads(store.path.read_text())) == {"form_title", "success_message", "credentials_saved"}

    def test_delete(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.json")
        store.save(ContactSettings())
        store.delete()
        store.delete()

        assert not store.path.exists()
