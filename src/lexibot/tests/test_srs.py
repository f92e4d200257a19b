"""Tests for the review schedule and level updates."""
from datetime import date, datetime, timedelta, UTC

import pytest

from lexibot.models.study_models import WordStateData
from lexibot.services import srs

NOW = datetime(2024, 3, 10, 9, 30, tzinfo=UTC)
TODAY = NOW.date()


@pytest.mark.parametrize("level,days", [(0, 1), (1, 2), (2, 5), (3, 10)])
def test_review_interval_table(level: int, days: int) -> None:
    """Each level maps to its fixed interval."""
    assert srs.review_interval(level) == days
    assert srs.next_review_date(level, TODAY) == TODAY + timedelta(days=days)


def test_review_interval_clamps_out_of_range_levels() -> None:
    assert srs.review_interval(7) == 10
    assert srs.review_interval(-2) == 1


def test_both_passed_raises_level() -> None:
    """Passing recall and spelling moves up one level and extends the streak."""
    state = WordStateData(word="apple", level=1, correct_streak=2, wrong_count=4)

    update = srs.update_level(state, True, True, NOW)

    assert update.level == 2
    assert update.next_review_at == date(2024, 3, 15)
    assert update.correct_streak == 3
    assert update.wrong_count == 4
    assert update.last_seen_at == NOW


@pytest.mark.parametrize("recall,spelling", [(True, False), (False, True), (False, False)])
def test_any_failure_drops_level(recall: bool, spelling: bool) -> None:
    """One failed step is enough to lose a level and the streak."""
    state = WordStateData(word="apple", level=2, correct_streak=5, wrong_count=1)

    update = srs.update_level(state, recall, spelling, NOW)

    assert update.level == 1
    assert update.next_review_at == TODAY + timedelta(days=2)
    assert update.correct_streak == 0
    assert update.wrong_count == 2


def test_level_stays_within_bounds() -> None:
    top = srs.update_level(WordStateData(word="a", level=3), True, True, NOW)
    bottom = srs.update_level(WordStateData(word="a", level=0), False, False, NOW)

    assert top.level == 3
    assert top.next_review_at == TODAY + timedelta(days=10)
    assert bottom.level == 0
    assert bottom.next_review_at == TODAY + timedelta(days=1)


def test_initial_state() -> None:
    state = srs.initial_state("apple", NOW)

    assert state.word == "apple"
    assert state.level == 0
    assert state.next_review_at == TODAY + timedelta(days=1)
    assert state.wrong_count == 0
    assert state.correct_streak == 0
    assert state.last_seen_at == NOW


def test_utc_now_is_timezone_aware() -> None:
    assert srs.utc_now().tzinfo is not None
    assert srs.utc_today() == srs.utc_now().date()
