"""Word-state store, word catalog and session log used by the study engine."""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lexibot.exceptions import PersistenceError
from lexibot.models.models import StudySessionRecord, UserWordState, Word
from lexibot.models.study_models import (
    LevelUpdate,
    SessionRecordData,
    WordCard,
    WordStateData,
)
from lexibot.monitoring import persistence_errors
from lexibot.services import srs

logger = logging.getLogger(__name__)

STATE_FIELDS = ("level", "next_review_at", "last_seen_at", "wrong_count", "correct_streak")


@contextmanager
def guard_db(db: Session, operation: str, write: bool = False) -> Iterator[None]:
    """Translate database failures into PersistenceError, rolling back the session.

    With `write` the block is committed on success.
    """
    try:
        yield
        if write:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        persistence_errors.labels(operation=operation).inc()
        logger.error("Store operation %s failed: %s", operation, e)
        raise PersistenceError(operation, e) from e


class WordStore(ABC):
    """Read/write contract between the study engine and storage.

    Every method raises PersistenceError when the underlying storage fails.
    """

    @abstractmethod
    def get_due_word_states(self, user_id: int, today: date, limit: int) -> List[WordStateData]:
        """States with next_review_at <= today, oldest first, at most `limit`."""
        raise NotImplementedError

    @abstractmethod
    def count_due_word_states(self, user_id: int, today: date) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_all_word_state_keys(self, user_id: int) -> Set[str]:
        """Keys of every word the user has a state for, due or not."""
        raise NotImplementedError

    @abstractmethod
    def get_catalog_words(self, user_id: int) -> List[WordCard]:
        """Built-in words followed by the user's own words, one card per catalog entry."""
        raise NotImplementedError

    @abstractmethod
    def count_catalog_words(self, user_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_word_states(self, user_id: int, word_keys: Iterable[str]) -> Dict[str, WordStateData]:
        """Existing states for the given keys; missing keys are absent from the result."""
        raise NotImplementedError

    @abstractmethod
    def upsert_word_state(self, user_id: int, word_key: str, fields: Mapping[str, object]) -> None:
        """Merge `fields` into the (user, word) state, creating it when missing."""
        raise NotImplementedError

    @abstractmethod
    def upsert_word_states(self, user_id: int, updates: Mapping[str, LevelUpdate]) -> None:
        """Apply several level updates in one transaction: all or nothing."""
        raise NotImplementedError

    @abstractmethod
    def insert_word_state_if_absent(self, user_id: int, word_key: str, initial: WordStateData) -> bool:
        """Insert `initial` unless a state exists. Returns True when a row was created."""
        raise NotImplementedError

    @abstractmethod
    def ensure_word_states(self, user_id: int, word_keys: Iterable[str], now: Optional[datetime] = None) -> int:
        """Create first-exposure states for keys without one, in one transaction.

        Existing states are never modified. Returns the number of states created.
        """
        raise NotImplementedError

    @abstractmethod
    def insert_session_record(self, record: SessionRecordData) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_today_session_record(self, user_id: int, day: date) -> Optional[SessionRecordData]:
        """Most recently created record for `day`, if any."""
        raise NotImplementedError

    def ensure_word_state(self, user_id: int, word_key: str, now: Optional[datetime] = None) -> bool:
        """Get-or-create for a single word."""
        return self.ensure_word_states(user_id, [word_key], now) == 1


def state_to_data(state: UserWordState) -> WordStateData:
    """Copy a state row into a plain dataclass."""
    return WordStateData(
        word=state.word,
        level=state.level,
        next_review_at=state.next_review_at,
        last_seen_at=state.last_seen_at,
        wrong_count=state.wrong_count,
        correct_streak=state.correct_streak,
    )


def record_to_data(record: StudySessionRecord) -> SessionRecordData:
    """Copy a session row into a plain dataclass."""
    return SessionRecordData(
        user_id=record.user_id,
        date=record.date,
        new_count=record.new_count,
        review_count=record.review_count,
        spelling_accuracy=record.spelling_accuracy,
        know_count=record.know_count,
        dont_know_count=record.dont_know_count,
        duration_seconds=record.duration_seconds,
        hardest_word=record.hardest_word,
        level_ups=record.level_ups,
        type=record.type,
    )


class SqlWordStore(WordStore):
    """WordStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        """Initialize the store with a database session."""
        self.db = db

    def _guard(self, operation: str, write: bool = False):
        return guard_db(self.db, operation, write)

    def _states_query(self, user_id: int):
        return self.db.query(UserWordState).filter(UserWordState.user_id == user_id)

    def get_due_word_states(self, user_id: int, today: date, limit: int) -> List[WordStateData]:
        with self._guard("get_due_word_states"):
            rows = (
                self._states_query(user_id)
                .filter(UserWordState.next_review_at <= today)
                .order_by(UserWordState.next_review_at.asc(), UserWordState.id.asc())
                .limit(limit)
                .all()
            )
        return [state_to_data(row) for row in rows]

    def count_due_word_states(self, user_id: int, today: date) -> int:
        with self._guard("count_due_word_states"):
            return self._states_query(user_id).filter(UserWordState.next_review_at <= today).count()

    def get_all_word_state_keys(self, user_id: int) -> Set[str]:
        with self._guard("get_all_word_state_keys"):
            rows = self.db.query(UserWordState.word).filter(UserWordState.user_id == user_id).all()
        return {word.lower() for (word,) in rows}

    def get_catalog_words(self, user_id: int) -> List[WordCard]:
        with self._guard("get_catalog_words"):
            builtin = self.db.query(Word).filter(Word.user_id.is_(None)).order_by(Word.id).all()
            custom = self.db.query(Word).filter(Word.user_id == user_id).order_by(Word.id).all()
        return [
            WordCard(
                word=row.word,
                meanings=[row.meaning_cn] if row.meaning_cn else [],
                phonetic=row.phonetic,
                example=row.example,
                unit=row.unit,
                wordlist_id=row.wordlist_id,
            )
            for row in builtin + custom
        ]

    def count_catalog_words(self, user_id: int) -> int:
        with self._guard("count_catalog_words"):
            return (
                self.db.query(func.count(Word.id))
                .filter((Word.user_id.is_(None)) | (Word.user_id == user_id))
                .scalar()
            )

    def get_word_states(self, user_id: int, word_keys: Iterable[str]) -> Dict[str, WordStateData]:
        keys = list(word_keys)
        if not keys:
            return {}
        with self._guard("get_word_states"):
            rows = self._states_query(user_id).filter(UserWordState.word.in_(keys)).all()
        return {row.word: state_to_data(row) for row in rows}

    def _upsert(self, user_id: int, word_key: str, fields: Mapping[str, object]) -> None:
        row = self._states_query(user_id).filter(UserWordState.word == word_key).first()
        if row is None:
            row = UserWordState(user_id=user_id, word=word_key)
            self.db.add(row)
        for key, value in fields.items():
            setattr(row, key, value)
        self.db.flush()

    def upsert_word_state(self, user_id: int, word_key: str, fields: Mapping[str, object]) -> None:
        unknown = set(fields) - set(STATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown word state fields: {sorted(unknown)}")
        with self._guard("upsert_word_state", write=True):
            self._upsert(user_id, word_key, fields)

    def upsert_word_states(self, user_id: int, updates: Mapping[str, LevelUpdate]) -> None:
        if not updates:
            return
        with self._guard("upsert_word_states", write=True):
            for word_key, update in updates.items():
                self._upsert(user_id, word_key, update.as_fields())
        logger.debug("Upserted %d word states for user %s", len(updates), user_id)

    def _insert_if_absent(self, user_id: int, initial: WordStateData) -> bool:
        exists = self._states_query(user_id).filter(UserWordState.word == initial.word).first()
        if exists is not None:
            return False
        self.db.add(
            UserWordState(
                user_id=user_id,
                word=initial.word,
                level=initial.level,
                next_review_at=initial.next_review_at,
                last_seen_at=initial.last_seen_at,
                wrong_count=initial.wrong_count,
                correct_streak=initial.correct_streak,
            )
        )
        self.db.flush()
        return True

    def insert_word_state_if_absent(self, user_id: int, word_key: str, initial: WordStateData) -> bool:
        if initial.word != word_key:
            initial = replace(initial, word=word_key)
        with self._guard("insert_word_state_if_absent", write=True):
            return self._insert_if_absent(user_id, initial)

    def ensure_word_states(self, user_id: int, word_keys: Iterable[str], now: Optional[datetime] = None) -> int:
        if now is None:
            now = srs.utc_now()
        created = 0
        with self._guard("ensure_word_states", write=True):
            for word_key in dict.fromkeys(word_keys):
                if self._insert_if_absent(user_id, srs.initial_state(word_key, now)):
                    created += 1
        if created:
            logger.info("Created %d initial word states for user %s", created, user_id)
        return created

    def insert_session_record(self, record: SessionRecordData) -> int:
        row = StudySessionRecord(
            user_id=record.user_id,
            date=record.date,
            type=record.type,
            new_count=record.new_count,
            review_count=record.review_count,
            spelling_accuracy=record.spelling_accuracy,
            know_count=record.know_count,
            dont_know_count=record.dont_know_count,
            duration_seconds=record.duration_seconds,
            hardest_word=record.hardest_word,
            level_ups=record.level_ups,
        )
        with self._guard("insert_session_record", write=True):
            self.db.add(row)
            self.db.flush()
            record_id = row.id
        return record_id

    def get_today_session_record(self, user_id: int, day: date) -> Optional[SessionRecordData]:
        with self._guard("get_today_session_record"):
            row = (
                self.db.query(StudySessionRecord)
                .filter(StudySessionRecord.user_id == user_id, StudySessionRecord.date == day)
                .order_by(StudySessionRecord.created_at.desc(), StudySessionRecord.id.desc())
                .first()
            )
        return record_to_data(row) if row is not None else None
