"""Text-to-speech pronunciation files for study cards."""
import logging
import re
from pathlib import Path
from typing import Optional

from gtts import gTTS
from gtts.tts import gTTSError

from lexibot.config import settings
from lexibot.models.study_models import StudySettings

logger = logging.getLogger(__name__)

SLOW_RATE_THRESHOLD = 1.0


def sanitize_filename(text: str) -> str:
    """Turn a word into a safe file stem."""
    return re.sub(r"[^a-z0-9]+", "_", text.strip().lower()).strip("_") or "word"


class PronunciationService:
    """Generates and caches mp3 pronunciations with gTTS."""

    def __init__(self, directory: Optional[Path] = None, lang: Optional[str] = None):
        self.directory = Path(directory or settings.paths.pronunciations_dir)
        self.lang = lang or settings.study.tts_lang

    def get_pronunciation(self, word: str, study_settings: StudySettings) -> Optional[Path]:
        """Path to an mp3 for `word`, or None when TTS is off or generation failed."""
        if not study_settings.tts_enabled:
            return None

        slow = study_settings.tts_rate < SLOW_RATE_THRESHOLD
        suffix = "_slow" if slow else ""
        path = self.directory / f"{sanitize_filename(word)}{suffix}.mp3"
        if path.exists():
            return path

        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            gTTS(text=word, lang=self.lang, slow=slow).save(str(path))
        except (gTTSError, OSError) as e:
            logger.error("Error generating pronunciation for word: %s, error: %s", word, e)
            return None

        logger.info("Pronunciation generated for word: %s, file: %s", word, path.name)
        return path
