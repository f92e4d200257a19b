"""Fixed-interval review schedule and mastery level updates."""
from datetime import date, datetime, timedelta, UTC
from typing import Optional

from lexibot.config import settings
from lexibot.models.study_models import LevelUpdate, WordStateData


def utc_now() -> datetime:
    """Current time, timezone-aware."""
    return datetime.now(UTC)


def utc_today() -> date:
    """Today's calendar date in UTC; review dates and session dates use it."""
    return utc_now().date()


def clamp_level(level: int) -> int:
    """Clamp a level into [0, MAX_LEVEL]."""
    return max(0, min(level, settings.study.max_level))


def review_interval(level: int) -> int:
    """Days until the next review for a level. Levels past the top use the top interval."""
    intervals = settings.study.review_intervals
    return intervals[clamp_level(level)]


def next_review_date(level: int, today: Optional[date] = None) -> date:
    """Calendar date of the next review for a word at `level`."""
    if today is None:
        today = utc_today()
    return today + timedelta(days=review_interval(level))


def update_level(
    current: WordStateData,
    recall_passed: bool,
    spelling_passed: bool,
    now: Optional[datetime] = None,
) -> LevelUpdate:
    """Compute a word's new state from its recall and spelling outcomes in one phase.

    A level is gained only when both steps passed; any failure drops one level,
    resets the streak and counts one more wrong answer.
    """
    if now is None:
        now = utc_now()

    if recall_passed and spelling_passed:
        new_level = clamp_level(current.level + 1)
        return LevelUpdate(
            level=new_level,
            next_review_at=next_review_date(new_level, now.date()),
            correct_streak=current.correct_streak + 1,
            wrong_count=current.wrong_count,
            last_seen_at=now,
        )

    new_level = clamp_level(current.level - 1)
    return LevelUpdate(
        level=new_level,
        next_review_at=next_review_date(new_level, now.date()),
        correct_streak=0,
        wrong_count=current.wrong_count + 1,
        last_seen_at=now,
    )


def initial_state(word_key: str, now: Optional[datetime] = None) -> WordStateData:
    """State given to a word on first exposure."""
    if now is None:
        now = utc_now()
    return WordStateData(
        word=word_key,
        level=0,
        next_review_at=next_review_date(0, now.date()),
        last_seen_at=now,
        wrong_count=0,
        correct_streak=0,
    )
