import logging

import pytest

from pytweak.backends.memory_backend import MemoryStore
from pytweak.errors import UnknownSettingError, ValidationError
from pytweak.locations import Root, ValueKind
from pytweak.settings import (
    SETTINGS_PATH,
    BooleanAdapter,
    ColorAdapter,
    LanguageAdapter,
    Preference,
    SettingsCache,
)


def test_missing_values_get_defaults_written():
    store = MemoryStore()
    cache = SettingsCache(store)
    assert cache.as_dict() == {"Backdrop": "Mica", "AccentColor": "#FF0078D4", "Language": "en-us"}
    assert store.read(Root.HKCU, SETTINGS_PATH, "Backdrop").data == "Mica"


def test_unusable_stored_value_falls_back_and_heals(caplog):
    store = MemoryStore()
    store.write(Root.HKCU, SETTINGS_PATH, "Backdrop", "Glass", ValueKind.STRING)
    store.write(Root.HKCU, SETTINGS_PATH, "Language", "fr", ValueKind.STRING)
    with caplog.at_level(logging.WARNING, logger="pytweak.settings"):
        cache = SettingsCache(store)
    assert cache.get("Backdrop") == "Mica"
    assert cache.get("Language") == "fr-fr"
    assert store.read(Root.HKCU, SETTINGS_PATH, "Backdrop").data == "Mica"
    assert "Backdrop" in caplog.text


def test_set_writes_through_and_calls_one_hook():
    store = MemoryStore()
    calls = []
    cache = SettingsCache(store, hooks={"Backdrop": lambda k, v: calls.append((k, v))})
    assert cache.set("Backdrop", "acrylic") == "Acrylic"
    assert calls == [("Backdrop", "Acrylic")]
    assert store.read(Root.HKCU, SETTINGS_PATH, "Backdrop").data == "Acrylic"

    replacement = []
    cache.on_change("Backdrop", lambda k, v: replacement.append(v))
    cache.set("Backdrop", "None")
    assert calls == [("Backdrop", "Acrylic")]
    assert replacement == ["None"]


def test_invalid_value_changes_nothing():
    store = MemoryStore()
    calls = []
    cache = SettingsCache(store, hooks={"AccentColor": lambda k, v: calls.append(v)})
    with pytest.raises(ValidationError):
        cache.set("AccentColor", "blue")
    assert cache.get("AccentColor") == "#FF0078D4"
    assert calls == []


def test_unknown_key():
    cache = SettingsCache(MemoryStore())
    with pytest.raises(UnknownSettingError):
        cache.get("Nope")
    with pytest.raises(UnknownSettingError):
        cache.set("Nope", 1)
    with pytest.raises(UnknownSettingError):
        cache.on_change("Nope", print)


def test_failed_write_still_updates_cache_and_runs_hook(caplog):
    store = MemoryStore()
    cache = SettingsCache(store)
    store.deny(Root.HKCU, SETTINGS_PATH)
    calls = []
    cache.on_change("Language", lambda k, v: calls.append(v))
    with caplog.at_level(logging.WARNING, logger="pytweak.settings"):
        assert cache.set("Language", "nl") == "nl-nl"
    assert cache.get("Language") == "nl-nl"
    assert calls == ["nl-nl"]
    assert "could not save setting Language" in caplog.text


def test_unreadable_store_uses_defaults():
    store = MemoryStore()
    store.set_unavailable(Root.HKCU)
    cache = SettingsCache(store)
    assert cache.get("Backdrop") == "Mica"


def test_custom_preferences_use_type_registry():
    store = MemoryStore()
    cache = SettingsCache(
        store, preferences=[Preference("Retries", 3), Preference("Compact", False)], path="Software\\Test"
    )
    assert cache.set("Retries", "5") == 5
    assert cache.set("Compact", "yes") is True
    assert store.read(Root.HKCU, "Software\\Test", "Compact") == (1, ValueKind.DWORD)
    assert SettingsCache(store, preferences=[Preference("Compact", False)], path="Software\\Test").get("Compact")
    with pytest.raises(ValueError):
        Preference("Ratio", 0.5)


@pytest.mark.parametrize(
    "raw,expected",
    [("#0078d4", "#FF0078D4"), ("80112233", "#80112233"), ("#ff0078D4", "#FF0078D4")],
)
def test_color_adapter(raw, expected):
    assert ColorAdapter().parse(raw) == expected


def test_language_and_boolean_adapters():
    assert LanguageAdapter().parse("EN") == "en-us"
    assert LanguageAdapter().parse("de_DE") == "de-de"
    with pytest.raises(ValueError):
        LanguageAdapter().parse("not a language")
    assert BooleanAdapter().parse("off") is False
    with pytest.raises(ValueError):
        BooleanAdapter().parse("maybe")
