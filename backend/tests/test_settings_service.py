"""
Unit tests for SettingsService.
"""

import sqlite3

import pytest

from quran_marks.services.settings_service import DEFAULT_THEME, SettingsService


@pytest.fixture
def service(temp_db_path):
    return SettingsService(temp_db_path)


def test_theme_defaults_to_system(service):
    assert service.get_theme() == DEFAULT_THEME == "system"


def test_set_and_get_theme(service):
    assert service.set("theme", "dark") is True

    assert service.get("theme") == "dark"
    assert service.get_theme() == "dark"


def test_set_overwrites(service):
    service.set("theme", "dark")
    service.set("theme", "light")

    assert service.get_theme() == "light"
    assert service.get_all() == {"theme": "light"}


def test_unknown_theme_falls_back(service):
    service.set("theme", "sepia")

    assert service.get_theme() == DEFAULT_THEME


def test_structured_values(service):
    service.set("reader", {"font_size": 28, "show_basmala": True})

    assert service.get("reader") == {"font_size": 28, "show_basmala": True}


def test_missing_key_returns_default(service):
    assert service.get("missing") is None
    assert service.get("missing", 5) == 5


def test_raw_value_is_returned_as_is(service):
    conn = sqlite3.connect(service.db_path)
    conn.execute("INSERT INTO settings (key, value) VALUES ('theme', 'dark')")
    conn.commit()
    conn.close()

    assert service.get_theme() == "dark"


def test_unencodable_value_is_rejected(service):
    assert service.set("bad", object()) is False
    assert service.get("bad") is None
