import json
import logging

import pytest

from silicon_chat.settings import (
    ChatSettings,
    InMemorySettings,
    JsonFileSettings,
    clamp_temperature,
    parse_setting,
)


class TestChatSettings:
    def test_defaults(self):
        settings = ChatSettings()

        assert settings.streaming_enabled is True
        assert settings.temperature == 0.7
        assert settings.system_instructions == "You are a helpful assistant."

    def test_from_dict_ignores_unknown_keys_and_clamps(self):
        settings = ChatSettings.from_dict({"temperature": 9, "color": "blue"})

        assert settings.temperature == 2.0
        assert settings.streaming_enabled is True

    @pytest.mark.parametrize(("raw", "expected"), [("false", False), ("off", False), ("Yes", True)])
    def test_from_dict_reads_boolean_words(self, raw, expected):
        assert ChatSettings.from_dict({"streaming_enabled": raw}).streaming_enabled is expected

    def test_from_dict_rejects_unreadable_boolean(self):
        with pytest.raises(ValueError):
            ChatSettings.from_dict({"streaming_enabled": "sometimes"})

    @pytest.mark.parametrize(("raw", "expected"), [(-1.0, 0.0), (0.5, 0.5), (2.5, 2.0)])
    def test_clamp_temperature(self, raw, expected):
        assert clamp_temperature(raw) == expected


class TestInMemorySettings:
    def test_update_notifies_on_change(self):
        provider = InMemorySettings()
        seen = []
        provider.subscribe(seen.append)

        updated = provider.update(system_instructions="Be terse.")

        assert seen == [updated]
        assert provider.snapshot().system_instructions == "Be terse."

    def test_no_notification_without_change(self):
        provider = InMemorySettings()
        seen = []
        provider.subscribe(seen.append)

        provider.update(temperature=0.7)

        assert seen == []

    def test_update_clamps_temperature(self):
        provider = InMemorySettings()

        assert provider.update(temperature=3.0).temperature == 2.0
        assert provider.update(temperature=-0.5).temperature == 0.0

    def test_unknown_key_rejected(self):
        provider = InMemorySettings()

        with pytest.raises(KeyError):
            provider.update(top_p=0.9)

    def test_snapshot_is_immutable(self):
        provider = InMemorySettings()
        snapshot = provider.snapshot()

        provider.update(streaming_enabled=False)

        assert snapshot.streaming_enabled is True
        with pytest.raises(AttributeError):
            snapshot.temperature = 1.0

    def test_reset(self):
        provider = InMemorySettings(ChatSettings(temperature=1.5))

        assert provider.reset() == ChatSettings()

    def test_unsubscribe(self):
        provider = InMemorySettings()
        seen = []
        unsubscribe = provider.subscribe(seen.append)
        unsubscribe()

        provider.update(temperature=1.0)

        assert seen == []


class TestJsonFileSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        provider = JsonFileSettings(tmp_path / "settings.json")

        assert provider.snapshot() == ChatSettings()

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "settings.json"
        JsonFileSettings(path).update(streaming_enabled=False, temperature=1.2)

        reloaded = JsonFileSettings(path).snapshot()

        assert reloaded.streaming_enabled is False
        assert reloaded.temperature == 1.2
        assert json.loads(path.read_text(encoding="utf-8"))["temperature"] == 1.2

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="silicon_chat.settings"):
            provider = JsonFileSettings(path)

        assert provider.snapshot() == ChatSettings()
        assert any("Could not read settings" in r.message for r in caplog.records)

    def test_hand_edited_string_boolean_is_respected(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"streaming_enabled": "false"}), encoding="utf-8")

        assert JsonFileSettings(path).snapshot().streaming_enabled is False

    def test_failed_save_changes_nothing(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("", encoding="utf-8")
        provider = JsonFileSettings(blocker / "settings.json")
        seen = []
        provider.subscribe(seen.append)

        with pytest.raises(OSError):
            provider.update(system_instructions="Answer in French.")

        assert provider.snapshot() == ChatSettings()
        assert seen == []

        provider.path = tmp_path / "settings.json"
        updated = provider.update(system_instructions="Answer in French.")

        assert seen == [updated]

    def test_non_object_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        assert JsonFileSettings(path).snapshot() == ChatSettings()


class TestParseSetting:
    @pytest.mark.parametrize("raw", ["on", "TRUE", "1", "yes"])
    def test_truthy(self, raw):
        assert parse_setting("streaming_enabled", raw) is True

    @pytest.mark.parametrize("raw", ["off", "False", "0", "no"])
    def test_falsy(self, raw):
        assert parse_setting("streaming_enabled", raw) is False

    def test_bad_boolean(self):
        with pytest.raises(ValueError):
            parse_setting("streaming_enabled", "maybe")

    def test_temperature_and_instructions(self):
        assert parse_setting("temperature", "0.3") == 0.3
        assert parse_setting("system_instructions", "Be kind.") == "Be kind."

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            parse_setting("color", "blue")
