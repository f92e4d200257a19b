"""Test configuration."""
import os
from pathlib import Path
from typing import Generator

import pytest
from dotenv import load_dotenv
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Import after environment setup
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lexibot.config import ensure_directories
from lexibot.models.base import enable_sqlite_foreign_keys, init_db
from lexibot.models.models import User, Word, Wordlist
from lexibot.services.word_store import SqlWordStore

fake = Faker()


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    # Ensure test directories exist
    ensure_directories()

    yield


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A private in-memory database for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user(db: Session) -> User:
    """A registered user."""
    user = User(telegram_id=fake.random_int(min=1, max=10**9), username=fake.user_name())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def store(db: Session) -> SqlWordStore:
    return SqlWordStore(db)


@pytest.fixture
def add_builtin_words(db: Session):
    """Factory adding a built-in wordlist with (word, meaning) pairs."""

    def _add(pairs, name=None) -> Wordlist:
        wordlist = Wordlist(name=name or fake.unique.word())
        db.add(wordlist)
        db.flush()
        for text, meaning in pairs:
            db.add(Word(wordlist_id=wordlist.id, word=text, meaning_cn=meaning))
        db.commit()
        return wordlist

    return _add
