"""Settings value, merge semantics and the persistent store."""

import json

import pytest
from pydantic import ValidationError

from copilot.errors import SettingsNotSaved
from copilot.profiles import ProfileId
from copilot.settings import Layout, Settings, SettingsStore, StealthLevel


DEFAULTS = {
    "transparency": 0.9,
    "fontSize": 14,
    "stealthLevel": "balanced",
    "profile": "interview",
    "layout": "normal",
}


class TestSettingsValue:

    def test_defaults(self):
        assert Settings().to_dict() == DEFAULTS

    def test_merged_accepts_camel_and_snake_keys(self):
        s = Settings().merged({"fontSize": 18}).merged({"stealth_level": "ultra"})
        assert s.font_size == 18
        assert s.stealth_level == StealthLevel.ULTRA

    def test_merged_returns_new_value(self):
        original = Settings()
        updated = original.merged({"layout": "compact"})
        assert original.layout == Layout.NORMAL
        assert updated.layout == Layout.COMPACT

    def test_settings_are_immutable(self):
        with pytest.raises(ValidationError):
            Settings().transparency = 0.5

    @pytest.mark.parametrize("partial", [
        {"transparency": 1.5},
        {"transparency": -0.1},
        {"fontSize": 0},
        {"stealthLevel": "invisible"},
        {"profile": "coding"},
        {"layout": "grid"},
    ])
    def test_invalid_values_rejected(self, partial):
        with pytest.raises(ValidationError):
            Settings().merged(partial)

    def test_unknown_keys_ignored(self):
        assert Settings().merged({"theme": "dark"}).to_dict() == DEFAULTS


class TestSettingsStore:

    def test_round_trip_only_changes_named_field(self, settings_store):
        settings_store.update({"transparency": 0.5, "fontSize": 20, "profile": "exam", "layout": "compact"})
        before = settings_store.current.to_dict()

        settings_store.update({"stealthLevel": "ultra"})
        after = settings_store.current.to_dict()

        assert after["stealthLevel"] == "ultra"
        assert {k: v for k, v in after.items() if k != "stealthLevel"} == \
            {k: v for k, v in before.items() if k != "stealthLevel"}

    def test_update_persists_camel_case(self, settings_store):
        settings_store.update({"font_size": 16})
        saved = json.loads(settings_store.path.read_text(encoding="utf-8"))
        assert saved["fontSize"] == 16
        assert set(saved) == set(DEFAULTS)

    def test_reload_from_disk(self, settings_store):
        settings_store.update({"profile": "negotiation", "stealthLevel": "off"})
        reloaded = SettingsStore(settings_store.path).load()
        assert reloaded.profile == ProfileId.NEGOTIATION
        assert reloaded.stealth_level == StealthLevel.OFF

    def test_invalid_update_leaves_store_untouched(self, settings_store):
        with pytest.raises(ValidationError):
            settings_store.update({"transparency": 7})
        assert settings_store.current == Settings()
        assert not settings_store.path.exists()

    def test_missing_file_gives_defaults(self, tmp_path):
        assert SettingsStore(tmp_path / "nope.json").load() == Settings()

    def test_partial_and_invalid_fields_merged_onto_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"transparency": 5, "fontSize": 20, "bogus": True}), encoding="utf-8")
        loaded = SettingsStore(path).load()
        assert loaded.transparency == 0.9
        assert loaded.font_size == 20

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
    def test_corrupt_file_gives_defaults(self, tmp_path, content):
        path = tmp_path / "settings.json"
        path.write_text(content, encoding="utf-8")
        assert SettingsStore(path).load() == Settings()

    def test_subscribers_receive_full_replacement(self, settings_store):
        received = []
        unsubscribe = settings_store.subscribe(received.append)

        settings_store.update({"fontSize": 12})
        unsubscribe()
        settings_store.update({"fontSize": 13})

        assert len(received) == 1
        assert isinstance(received[0], Settings)
        assert received[0].font_size == 12

    def test_failed_write_keeps_previous_value(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        store = SettingsStore(blocker / "settings.json")
        received = []
        store.subscribe(received.append)

        with pytest.raises(SettingsNotSaved):
            store.update({"stealthLevel": "ultra"})

        assert store.current == Settings()
        assert received == []

    def test_write_replaces_file_without_leftovers(self, settings_store):
        settings_store.update({"fontSize": 18})
        settings_store.update({"fontSize": 20})

        assert json.loads(settings_store.path.read_text(encoding="utf-8"))["fontSize"] == 20
        assert [p.name for p in settings_store.path.parent.iterdir()] == ["settings.json"]
