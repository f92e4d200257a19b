"""User service for managing users and their study settings."""
import logging
from datetime import UTC, date, datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from lexibot.config import settings
from lexibot.models.models import StudySessionRecord, User, UserSettings, UserWordState, Word, Wordlist
from lexibot.models.study_models import StudySettings
from lexibot.services.word_store import guard_db

# Configure logging
logger = logging.getLogger(__name__)

INT_SETTINGS = ("daily_new", "review_cap", "relapse_cap")
EXPORT_VERSION = 1


def row_to_dict(row) -> Dict[str, Any]:
    """Column values of an ORM row, dates as ISO strings."""
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        data[column.name] = value
    return data


class UserService:
    """Service for managing user data and preferences."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by telegram ID."""
        return self.db.query(User).filter(User.telegram_id == telegram_id).first()

    def get_or_create_user(self, telegram_id: int, username: Optional[str] = None) -> User:
        """Get existing user or create a new one."""
        user = self.get_user_by_telegram_id(telegram_id)

        if not user:
            user = User(
                telegram_id=telegram_id,
                username=username,
                is_admin=telegram_id in settings.bot.admin_ids,
            )
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
            logger.info("User created: %s (%s)", username, telegram_id)

        return user

    def get_users_count(self) -> int:
        """Get the count of users."""
        return self.db.query(User).count()

    def _get_settings_row(self, user_id: int) -> UserSettings:
        row = self.db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
        if row is None:
            defaults = StudySettings.defaults()
            row = UserSettings(
                user_id=user_id,
                daily_new=defaults.daily_new,
                review_cap=defaults.review_cap,
                relapse_cap=defaults.relapse_cap,
                tts_enabled=defaults.tts_enabled,
                tts_rate=defaults.tts_rate,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info("Default study settings created for user %s", user_id)
        return row

    def get_study_settings(self, user_id: int) -> StudySettings:
        """Load the user's study settings, creating the default row on first access."""
        row = self._get_settings_row(user_id)
        return StudySettings(
            daily_new=row.daily_new,
            review_cap=row.review_cap,
            relapse_cap=row.relapse_cap,
            tts_enabled=row.tts_enabled,
            tts_rate=row.tts_rate,
        )

    def update_study_settings(
        self,
        user_id: int,
        daily_new: Optional[int] = None,
        review_cap: Optional[int] = None,
        relapse_cap: Optional[int] = None,
        tts_enabled: Optional[bool] = None,
        tts_rate: Optional[float] = None,
    ) -> StudySettings:
        """Update some of the user's study settings."""
        updates = {
            "daily_new": daily_new,
            "review_cap": review_cap,
            "relapse_cap": relapse_cap,
            "tts_enabled": tts_enabled,
            "tts_rate": tts_rate,
        }
        updates = {key: value for key, value in updates.items() if value is not None}

        for key in INT_SETTINGS:
            if key in updates and (not isinstance(updates[key], int) or updates[key] < 0):
                raise ValueError(f"{key} must be a non-negative integer, got {updates[key]!r}")
        if "tts_rate" in updates and updates["tts_rate"] <= 0:
            raise ValueError(f"tts_rate must be positive, got {updates['tts_rate']!r}")

        row = self._get_settings_row(user_id)
        for key, value in updates.items():
            setattr(row, key, value)
        self.db.commit()

        logger.info("User %s settings updated: %s", user_id, updates)
        return self.get_study_settings(user_id)

    def export_user_data(self, user_id: int) -> Dict[str, Any]:
        """Everything the user owns: settings, own wordlists and words, word states and sessions."""
        with guard_db(self.db, "export_user_data"):
            states = (
                self.db.query(UserWordState)
                .filter(UserWordState.user_id == user_id)
                .order_by(UserWordState.id)
                .all()
            )
            sessions = (
                self.db.query(StudySessionRecord)
                .filter(StudySessionRecord.user_id == user_id)
                .order_by(StudySessionRecord.id)
                .all()
            )
            wordlists = self.db.query(Wordlist).filter(Wordlist.user_id == user_id).order_by(Wordlist.id).all()
            words = self.db.query(Word).filter(Word.user_id == user_id).order_by(Word.id).all()
            settings_row = self.db.query(UserSettings).filter(UserSettings.user_id == user_id).first()

        logger.info("Exported data of user %s: %d states, %d sessions", user_id, len(states), len(sessions))
        return {
            "version": EXPORT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "user_word_state": [row_to_dict(row) for row in states],
            "sessions": [row_to_dict(row) for row in sessions],
            "custom_wordlists": [row_to_dict(row) for row in wordlists],
            "custom_words": [row_to_dict(row) for row in words],
            "user_settings": row_to_dict(settings_row) if settings_row else {},
        }
