from datetime import datetime

import pytest

from utils import (format_size_kb, french_date, french_short_date, get_env, get_env_bool,
                   get_env_int, is_valid_email, slugify_filename)


@pytest.mark.parametrize("email, expected", [
    ("jean.dupont@avocarbon.com", True),
    ("  padded@example.org ", True),
    ("no-at-sign.example.org", False),
    ("missing@tld", False),
    ("spaces in@example.org", False),
    ("", False),
    (None, False),
])
def test_is_valid_email(email, expected):
    assert is_valid_email(email) is expected


def test_slugify_filename():
    assert slugify_filename("Rapport Q3 / 2026") == "Rapport_Q3___2026"


def test_format_size_kb():
    assert format_size_kb(2048) == "2.00 KB"
    assert format_size_kb(1536) == "1.50 KB"


def test_french_dates():
    moment = datetime(2026, 8, 3, 9, 5)
    assert french_date(moment) == "3 août 2026"
    assert french_date(moment, with_time=True) == "3 août 2026 à 09:05"
    assert french_short_date(moment) == "03/08/2026"


def test_env_helpers_treat_blank_as_unset(monkeypatch):
    monkeypatch.setenv("DOC_TEST_BLANK", "   ")
    monkeypatch.setenv("DOC_TEST_PORT", "2525")
    monkeypatch.setenv("DOC_TEST_BAD_INT", "abc")
    monkeypatch.setenv("DOC_TEST_FLAG", "false")

    assert get_env("DOC_TEST_BLANK", "fallback") == "fallback"
    assert get_env_int("DOC_TEST_PORT", 25) == 2525
    assert get_env_int("DOC_TEST_BAD_INT", 25) == 25
    assert get_env_bool("DOC_TEST_FLAG", True) is False
    assert get_env_bool("DOC_TEST_MISSING", True) is True
