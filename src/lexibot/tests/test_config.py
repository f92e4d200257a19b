"""Tests for configuration settings."""
import os
from dataclasses import replace

import pytest

from lexibot.config import settings


def test_base_directories_exist():
    """Test that all required directories exist."""
    from lexibot.config import (
        DATA_DIR,
        DICTIONARIES_DIR,
        MEDIA_DIR,
        PRONUNCIATIONS_DIR,
    )

    assert DATA_DIR.exists()
    assert DICTIONARIES_DIR.exists()
    assert MEDIA_DIR.exists()
    assert PRONUNCIATIONS_DIR.exists()


def test_study_defaults():
    """Test default study values."""
    assert settings.study.review_intervals == [1, 2, 5, 10]
    assert settings.study.max_level == 3
    assert settings.study.minutes_per_word == 0.5
    assert settings.study.daily_new >= 0
    assert settings.study.review_cap >= 0
    assert settings.study.relapse_cap >= 0


def test_settings_from_env(monkeypatch):
    """Test that settings can be overridden by environment variables."""
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "test_token_123")
    monkeypatch.setenv("TELEGRAM_ADMIN_IDS", "11,22")

    from lexibot.config import BotSettings, get_admin_ids
    assert get_admin_ids() == [11, 22]
    assert BotSettings(token=os.environ["TELEGRAM_BOT_TOKEN"]).token == "test_token_123"


def test_validate_requires_token_when_asked():
    test_settings = replace(settings, bot=replace(settings.bot, token=""))

    test_settings.validate()
    with pytest.raises(ValueError):
        test_settings.validate(require_token=True)


@pytest.mark.parametrize(
    "changes",
    [
        {"daily_new": -1},
        {"review_cap": -1},
        {"relapse_cap": -5},
        {"tts_rate": 0.0},
        {"review_intervals": [1, 2, 5]},
        {"review_intervals": [1, 5, 5, 10]},
    ],
)
def test_validate_rejects_bad_study_values(changes):
    test_settings = replace(settings, study=replace(settings.study, **changes))

    with pytest.raises(ValueError):
        test_settings.validate()
