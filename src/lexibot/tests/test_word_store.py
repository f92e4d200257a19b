"""Tests for the SQL word store."""
from datetime import date, datetime, timedelta, UTC
from unittest.mock import patch

import pytest
from faker import Faker
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from lexibot.exceptions import PersistenceError
from lexibot.models.models import User, UserWordState, Word, Wordlist
from lexibot.models.study_models import LevelUpdate, SessionRecordData, WordStateData
from lexibot.services.word_store import SqlWordStore

fake = Faker()

NOW = datetime(2024, 3, 10, 9, 0, tzinfo=UTC)
TODAY = NOW.date()


def add_state(db: Session, user: User, word: str, next_review_at: date, level: int = 1) -> UserWordState:
    state = UserWordState(user_id=user.id, word=word, level=level, next_review_at=next_review_at)
    db.add(state)
    db.commit()
    return state


def make_update(level: int) -> LevelUpdate:
    return LevelUpdate(
        level=level,
        next_review_at=TODAY + timedelta(days=2),
        correct_streak=1,
        wrong_count=0,
        last_seen_at=NOW,
    )


def make_record(user: User, **overrides) -> SessionRecordData:
    values = dict(
        user_id=user.id,
        date=TODAY,
        new_count=1,
        review_count=2,
        spelling_accuracy=0.5,
        know_count=2,
        dont_know_count=1,
        duration_seconds=60,
        hardest_word="pear",
        level_ups=1,
    )
    values.update(overrides)
    return SessionRecordData(**values)


def test_due_states_are_oldest_first_and_limited(db: Session, user: User, store: SqlWordStore) -> None:
    add_state(db, user, "pear", TODAY)
    add_state(db, user, "plum", TODAY - timedelta(days=4))
    add_state(db, user, "fig", TODAY - timedelta(days=2))
    add_state(db, user, "kiwi", TODAY + timedelta(days=1))

    due = store.get_due_word_states(user.id, TODAY, 2)

    assert [state.word for state in due] == ["plum", "fig"]
    assert store.count_due_word_states(user.id, TODAY) == 3
    assert store.get_all_word_state_keys(user.id) == {"pear", "plum", "fig", "kiwi"}


def test_states_are_scoped_to_user(db: Session, user: User, store: SqlWordStore) -> None:
    other = User(telegram_id=fake.random_int(min=10**9 + 1, max=2 * 10**9), username=fake.user_name())
    db.add(other)
    db.commit()
    add_state(db, other, "pear", TODAY)

    assert store.get_due_word_states(user.id, TODAY, 10) == []
    assert store.get_all_word_state_keys(user.id) == set()


def test_catalog_lists_builtin_then_user_words(db: Session, user: User, store: SqlWordStore,
                                               add_builtin_words) -> None:
    custom = Wordlist(name="mine", user_id=user.id)
    db.add(custom)
    db.flush()
    db.add(Word(wordlist_id=custom.id, user_id=user.id, word="zebra", meaning_cn="斑马"))
    db.commit()
    add_builtin_words([("apple", "苹果"), ("pear", None)])

    catalog = store.get_catalog_words(user.id)

    assert [card.word for card in catalog] == ["apple", "pear", "zebra"]
    assert catalog[0].meanings == ["苹果"]
    assert catalog[1].meanings == []
    assert store.count_catalog_words(user.id) == 3


def test_upsert_word_states_creates_and_updates(db: Session, user: User, store: SqlWordStore) -> None:
    add_state(db, user, "pear", TODAY, level=1)

    store.upsert_word_states(user.id, {"pear": make_update(2), "plum": make_update(1)})

    states = store.get_word_states(user.id, ["pear", "plum", "fig"])
    assert set(states) == {"pear", "plum"}
    assert states["pear"].level == 2
    assert states["plum"].level == 1
    assert states["plum"].next_review_at == TODAY + timedelta(days=2)


def test_upsert_word_state_merges_fields(db: Session, user: User, store: SqlWordStore) -> None:
    add_state(db, user, "pear", TODAY, level=2)

    store.upsert_word_state(user.id, "pear", {"wrong_count": 3})

    state = store.get_word_states(user.id, ["pear"])["pear"]
    assert state.level == 2
    assert state.wrong_count == 3


def test_upsert_word_state_rejects_unknown_fields(user: User, store: SqlWordStore) -> None:
    with pytest.raises(ValueError):
        store.upsert_word_state(user.id, "pear", {"colour": "red"})


def test_ensure_word_states_never_overwrites(db: Session, user: User, store: SqlWordStore) -> None:
    add_state(db, user, "pear", TODAY + timedelta(days=5), level=3)

    created = store.ensure_word_states(user.id, ["pear", "plum", "plum"], NOW)

    assert created == 1
    states = store.get_word_states(user.id, ["pear", "plum"])
    assert states["pear"].level == 3
    assert states["plum"].level == 0
    assert states["plum"].next_review_at == TODAY + timedelta(days=1)
    assert store.ensure_word_state(user.id, "plum", NOW) is False


def test_insert_word_state_if_absent(user: User, store: SqlWordStore) -> None:
    initial = WordStateData(word="ignored", level=0, next_review_at=TODAY)

    assert store.insert_word_state_if_absent(user.id, "pear", initial) is True
    assert store.insert_word_state_if_absent(user.id, "pear", initial) is False
    assert set(store.get_word_states(user.id, ["pear"])) == {"pear"}


def test_session_records(user: User, store: SqlWordStore) -> None:
    """The latest record of the day is returned."""
    assert store.get_today_session_record(user.id, TODAY) is None

    store.insert_session_record(make_record(user, level_ups=1))
    second_id = store.insert_session_record(make_record(user, level_ups=4))

    assert second_id is not None
    latest = store.get_today_session_record(user.id, TODAY)
    assert latest.level_ups == 4
    assert store.get_today_session_record(user.id, TODAY - timedelta(days=1)) is None


def test_batch_failure_rolls_back_everything(db: Session, user: User, store: SqlWordStore) -> None:
    """A failing batch leaves no partial writes and raises PersistenceError."""
    add_state(db, user, "pear", TODAY, level=1)
    original_flush = db.flush
    calls = {"count": 0}

    def failing_flush(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("UPDATE", {}, Exception("disk I/O error"))
        return original_flush(*args, **kwargs)

    with patch.object(db, "flush", side_effect=failing_flush):
        with pytest.raises(PersistenceError) as exc_info:
            store.upsert_word_states(user.id, {"pear": make_update(2), "plum": make_update(1)})

    assert exc_info.value.operation == "upsert_word_states"
    assert isinstance(exc_info.value.cause, OperationalError)
    states = store.get_word_states(user.id, ["pear", "plum"])
    assert states["pear"].level == 1
    assert "plum" not in states


def test_read_failure_raises_persistence_error(user: User, store: SqlWordStore) -> None:
    with patch.object(store.db, "query", side_effect=OperationalError("SELECT", {}, Exception("locked"))):
        with pytest.raises(PersistenceError) as exc_info:
            store.get_due_word_states(user.id, TODAY, 10)

    assert exc_info.value.operation == "get_due_word_states"
