"""Unit tests for day-package parsing."""

import pytest

from app.api.v1.deductions.schedule import ALL_DAYS, parse_day_package, scheduled_weekdays


@pytest.mark.parametrize("pattern", ["All Days", "all days", "ALLDAYS", "  All Days  "])
def test_all_days(pattern: str) -> None:
    assert parse_day_package(pattern) == ALL_DAYS


def test_fixed_patterns() -> None:
    assert parse_day_package("MWF") == {1, 3, 5}
    assert parse_day_package("mwf") == {1, 3, 5}
    assert parse_day_package("TTS") == {2, 4, 6}
    assert parse_day_package("TTH") == {2, 4, 6}


def test_single_day_names_and_abbreviations() -> None:
    assert parse_day_package("Monday") == {1}
    assert parse_day_package("Tues") == {2}
    assert parse_day_package("thurs") == {4}
    assert parse_day_package("Sun") == {0}
    assert parse_day_package("Saturday") == {6}


def test_comma_lists_and_numeric_codes() -> None:
    assert parse_day_package("Monday, Wednesday") == {1, 3}
    assert parse_day_package("1,3,5") == {1, 3, 5}
    assert parse_day_package("Mon, 4, Funday") == {1, 4}
    assert parse_day_package("6") == {6}


def test_unrecognized_is_empty() -> None:
    """Nothing is guessed: unknown text, out-of-range codes and blanks yield no days."""
    assert parse_day_package("Weekends") == frozenset()
    assert parse_day_package("7") == frozenset()
    assert parse_day_package("") == frozenset()
    assert parse_day_package(None) == frozenset()


def test_union_of_windows() -> None:
    assert scheduled_weekdays(["MWF", "Tuesday", None]) == {1, 2, 3, 5}
    assert scheduled_weekdays([]) == frozenset()
