"""Tests for the option-file credential store and settings loading."""

import json
import os
import stat

import pytest

from event_assistant.config import load_settings
from event_assistant.errors import ConfigurationError
from event_assistant.options import OPTION_NAME, OptionsStore


def test_empty_store_has_no_key(options):
    assert options.get_api_key() == ""
    assert not options.has_api_key()


def test_save_settings_sanitizes_and_persists(options):
    options.save_settings({"openai_api_key": "  <b>sk-abc</b>\n", "ignored": "x"})
    assert options.get_api_key() == "sk-abc"

    data = json.loads(options.path.read_text(encoding="utf-8"))
    assert data == {OPTION_NAME: {"openai_api_key": "sk-abc"}}
    assert stat.S_IMODE(os.stat(options.path).st_mode) == 0o600


def test_environment_key_wins(tmp_path):
    store = OptionsStore(tmp_path / "options.json", env_api_key="sk-env")
    store.save_settings({"openai_api_key": "sk-stored"})
    assert store.get_api_key() == "sk-env"


def test_unreadable_file_treated_as_empty(tmp_path):
    path = tmp_path / "options.json"
    path.write_text("{not json", encoding="utf-8")
    assert OptionsStore(path).get_options() == {}


def test_load_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ASSISTANT_MAX_RECURRENCE", "12")
    monkeypatch.setenv("ASSISTANT_TIMEZONE", "Europe/Berlin")
    settings = load_settings()
    assert settings.max_recurrence_occurrences == 12
    assert settings.timezone == "Europe/Berlin"


@pytest.mark.parametrize("overrides", [
    {"timezone": "Mars/Olympus"},
    {"max_recurrence_occurrences": 0},
    {"completion_timeout_seconds": -1},
    {"reasoning_effort": "extreme"},
])
def test_invalid_settings_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        load_settings(**overrides)
