"""Configuration settings for the bot."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
DICTIONARIES_DIR = DATA_DIR / "dictionaries"
MEDIA_DIR = DATA_DIR / "media"
PRONUNCIATIONS_DIR = MEDIA_DIR / "pronunciations"

# Study settings
REVIEW_INTERVALS = [1, 2, 5, 10]  # days until next review, indexed by level
MAX_LEVEL = 3


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        DICTIONARIES_DIR,
        MEDIA_DIR,
        PRONUNCIATIONS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    data_dir: Path = DATA_DIR
    dictionaries_dir: Path = DICTIONARIES_DIR
    media_dir: Path = MEDIA_DIR
    pronunciations_dir: Path = PRONUNCIATIONS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///lexibot.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


def get_admin_ids() -> list[int]:
    """Get admin IDs from environment variable."""
    return [int(id_) for id_ in os.getenv("TELEGRAM_ADMIN_IDS", "").split(",") if id_]


@dataclass
class BotSettings:
    """Bot configuration settings."""
    token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    admin_ids: list[int] = field(default_factory=get_admin_ids)


@dataclass
class StudyDefaults:
    """Default per-user study tunables and the fixed review schedule."""
    daily_new: int = int(os.getenv("DEFAULT_DAILY_NEW", "10"))
    review_cap: int = int(os.getenv("DEFAULT_REVIEW_CAP", "40"))
    relapse_cap: int = int(os.getenv("DEFAULT_RELAPSE_CAP", "10"))
    tts_enabled: bool = os.getenv("DEFAULT_TTS_ENABLED", "true").lower() == "true"
    tts_rate: float = float(os.getenv("DEFAULT_TTS_RATE", "1.0"))
    tts_lang: str = os.getenv("TTS_LANG", "en")
    review_intervals: list[int] = field(default_factory=lambda: list(REVIEW_INTERVALS))
    max_level: int = MAX_LEVEL
    minutes_per_word: float = 0.5


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    enabled: bool = os.getenv("MONITORING_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("MONITORING_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_bot_settings() -> BotSettings:
    """Get bot settings."""
    return BotSettings()


def get_study_defaults() -> StudyDefaults:
    """Get study defaults."""
    return StudyDefaults()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    bot: BotSettings = field(default_factory=get_bot_settings)
    study: StudyDefaults = field(default_factory=get_study_defaults)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self, require_token: bool = False) -> None:
        """Validate settings and raise ValueError if invalid."""
        if require_token and not self.bot.token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")

        if self.study.daily_new < 0:
            raise ValueError("DEFAULT_DAILY_NEW must not be negative")

        if self.study.review_cap < 0:
            raise ValueError("DEFAULT_REVIEW_CAP must not be negative")

        if self.study.relapse_cap < 0:
            raise ValueError("DEFAULT_RELAPSE_CAP must not be negative")

        if self.study.tts_rate <= 0:
            raise ValueError("DEFAULT_TTS_RATE must be positive")

        intervals = self.study.review_intervals
        if len(intervals) != self.study.max_level + 1:
            raise ValueError("review_intervals must have one entry per level")
        if any(later <= earlier for earlier, later in zip(intervals, intervals[1:])):
            raise ValueError("review_intervals must be strictly increasing")


# Create global settings instance
settings = Settings()
settings.validate()
