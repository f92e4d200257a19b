"""Base model configuration."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from lexibot.config import settings

# Create declarative base class
Base = declarative_base()


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on foreign key enforcement for every SQLite connection of an engine."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Create SQLAlchemy engine
engine = create_engine(settings.database.url, echo=settings.database.echo)
enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Initialize database."""
    # Importing the models registers their tables on Base.metadata
    from lexibot.models import models  # noqa: F401

    Base.metadata.create_all(bind=bind)  # Create tables if they don't exist
