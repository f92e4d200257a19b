"""Database models for the bot."""
from datetime import datetime, UTC
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from lexibot.models.base import Base


class TimestampMixin:
    """Mixin for adding created_at and updated_at timestamps."""

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class User(Base, TimestampMixin):
    """User model."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(Integer, unique=True, nullable=False)
    username = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False)

    # Relationships
    settings = relationship("UserSettings", back_populates="user", uselist=False)
    wordlists = relationship("Wordlist", back_populates="user")
    word_states = relationship("UserWordState", back_populates="user")
    study_sessions = relationship("StudySessionRecord", back_populates="user")


class UserSettings(Base, TimestampMixin):
    """Per-user study tunables."""

    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    daily_new = Column(Integer, nullable=False)
    review_cap = Column(Integer, nullable=False)
    relapse_cap = Column(Integer, nullable=False)
    tts_enabled = Column(Boolean, nullable=False)
    tts_rate = Column(Float, nullable=False)

    # Relationships
    user = relationship("User", back_populates="settings")


class Wordlist(Base, TimestampMixin):
    """A named group of words. Built-in lists have no owner."""

    __tablename__ = "wordlists"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)

    # Relationships
    user = relationship("User", back_populates="wordlists")
    words = relationship("Word", back_populates="wordlist", order_by="Word.id")

    @property
    def is_builtin(self) -> bool:
        return self.user_id is None


class Word(Base, TimestampMixin):
    """Word model. The same text may appear in several lists with different meanings."""

    __tablename__ = "words"

    id = Column(Integer, primary_key=True)
    wordlist_id = Column(Integer, ForeignKey("wordlists.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # None for built-in words
    word = Column(String, nullable=False, index=True)
    meaning_cn = Column(String, nullable=True)
    phonetic = Column(String, nullable=True)
    example = Column(String, nullable=True)
    unit = Column(String, nullable=True)

    # Relationships
    wordlist = relationship("Wordlist", back_populates="words")


class UserWordState(Base, TimestampMixin):
    """Mastery state of one word for one user."""

    __tablename__ = "user_word_state"
    __table_args__ = (UniqueConstraint("user_id", "word", name="uq_user_word_state_user_word"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    word = Column(String, nullable=False)  # lowercase word key
    level = Column(Integer, nullable=False, default=0)
    next_review_at = Column(Date, nullable=False, index=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    wrong_count = Column(Integer, nullable=False, default=0)
    correct_streak = Column(Integer, nullable=False, default=0)

    # Relationships
    user = relationship("User", back_populates="word_states")


class StudySessionRecord(Base, TimestampMixin):
    """Summary of one completed study session."""

    __tablename__ = "study_sessions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    type = Column(String, nullable=False, default="all")
    new_count = Column(Integer, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    spelling_accuracy = Column(Float, nullable=False, default=1.0)
    know_count = Column(Integer, nullable=False, default=0)
    dont_know_count = Column(Integer, nullable=False, default=0)
    duration_seconds = Column(Integer, nullable=False, default=0)
    hardest_word = Column(String, nullable=False, default="")
    level_ups = Column(Integer, nullable=False, default=0)

    # Relationships
    user = relationship("User", back_populates="study_sessions")
