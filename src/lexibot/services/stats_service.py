"""Dashboard and progress statistics."""
from datetime import date, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lexibot.config import settings
from lexibot.models.models import StudySessionRecord, UserWordState
from lexibot.models.study_models import StudySettings
from lexibot.services import srs
from lexibot.services.queue_builder import QueueBuilder
from lexibot.services.word_store import SqlWordStore, guard_db, record_to_data

RECENT_SESSIONS_LIMIT = 10
STUDY_WEEK_DAYS = 7


class StatsService:
    """Read-only statistics over word states and session records."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db
        self.store = SqlWordStore(db)

    def get_today_overview(
        self,
        user_id: int,
        study_settings: StudySettings,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Today's task counts and the latest session recorded today."""
        if today is None:
            today = srs.utc_today()

        counts = QueueBuilder(self.store).count_only(user_id, study_settings, today)
        return {
            "counts": counts,
            "estimated_minutes": counts.estimated_minutes,
            "today_session": self.store.get_today_session_record(user_id, today),
        }

    def get_level_distribution(self, user_id: int) -> Dict[int, int]:
        """Number of words at each level, every level present."""
        levels = {level: 0 for level in range(settings.study.max_level + 1)}
        with guard_db(self.db, "get_level_distribution"):
            rows = (
                self.db.query(UserWordState.level, func.count(UserWordState.id))
                .filter(UserWordState.user_id == user_id)
                .group_by(UserWordState.level)
                .all()
            )
        for level, count in rows:
            levels[level] = count
        return levels

    def get_progress(self, user_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        """Level distribution, study days in the last week and recent sessions.

        Raises PersistenceError when the database cannot be read.
        """
        if today is None:
            today = srs.utc_today()

        levels = self.get_level_distribution(user_id)
        week_ago = today - timedelta(days=STUDY_WEEK_DAYS)
        with guard_db(self.db, "get_progress"):
            study_days = (
                self.db.query(func.count(func.distinct(StudySessionRecord.date)))
                .filter(
                    StudySessionRecord.user_id == user_id,
                    StudySessionRecord.date >= week_ago,
                )
                .scalar()
            )
            recent = (
                self.db.query(StudySessionRecord)
                .filter(StudySessionRecord.user_id == user_id)
                .order_by(StudySessionRecord.created_at.desc(), StudySessionRecord.id.desc())
                .limit(RECENT_SESSIONS_LIMIT)
                .all()
            )

        return {
            "total_studied": sum(levels.values()),
            "mastered": levels[settings.study.max_level],
            "levels": levels,
            "study_days_this_week": study_days or 0,
            "recent_sessions": [record_to_data(row) for row in recent],
        }
