"""Tests for dashboard statistics."""
from datetime import date, timedelta

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from lexibot.exceptions import PersistenceError

from lexibot.models.models import StudySessionRecord, User, UserWordState
from lexibot.models.study_models import StudySettings
from lexibot.services.stats_service import StatsService

TODAY = date(2024, 3, 10)


@pytest.fixture
def stats_service(db: Session) -> StatsService:
    return StatsService(db)


def add_record(db: Session, user: User, day: date, **fields) -> StudySessionRecord:
    record = StudySessionRecord(user_id=user.id, date=day, **fields)
    db.add(record)
    db.commit()
    return record


def test_today_overview(db: Session, user: User, stats_service: StatsService, add_builtin_words) -> None:
    add_builtin_words([("apple", "苹果"), ("pear", "梨"), ("plum", "李子")])
    db.add(UserWordState(user_id=user.id, word="apple", level=1, next_review_at=TODAY))
    db.commit()
    add_record(db, user, TODAY, new_count=4, level_ups=1)

    overview = stats_service.get_today_overview(user.id, StudySettings(daily_new=1, review_cap=5, relapse_cap=5),
                                                TODAY)

    counts = overview["counts"]
    assert counts.review_count == 1
    assert counts.new_count == 1
    assert overview["estimated_minutes"] == 1
    assert overview["today_session"].new_count == 4


def test_today_overview_without_session(user: User, stats_service: StatsService) -> None:
    overview = stats_service.get_today_overview(user.id, StudySettings(10, 40, 10), TODAY)

    assert overview["counts"].total == 0
    assert overview["today_session"] is None


def test_progress(db: Session, user: User, stats_service: StatsService) -> None:
    for word, level in [("a", 0), ("b", 1), ("c", 3), ("d", 3)]:
        db.add(UserWordState(user_id=user.id, word=word, level=level, next_review_at=TODAY))
    db.commit()
    add_record(db, user, TODAY)
    add_record(db, user, TODAY)
    add_record(db, user, TODAY - timedelta(days=3))
    add_record(db, user, TODAY - timedelta(days=30))

    progress = stats_service.get_progress(user.id, TODAY)

    assert progress["levels"] == {0: 1, 1: 1, 2: 0, 3: 2}
    assert progress["total_studied"] == 4
    assert progress["mastered"] == 2
    assert progress["study_days_this_week"] == 2
    assert len(progress["recent_sessions"]) == 4


def test_progress_read_failure_raises_persistence_error(db: Session, user: User,
                                                       stats_service: StatsService) -> None:
    with patch.object(db, "query", side_effect=OperationalError("SELECT", {}, Exception("database is locked"))):
        with pytest.raises(PersistenceError) as exc_info:
            stats_service.get_progress(user.id, TODAY)

    assert exc_info.value.operation == "get_level_distribution"
