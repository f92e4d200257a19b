"""Models for study-session data structures."""
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from lexibot.config import settings


class Phase(Enum):
    """Stages of a study session, in the order they may run."""
    REVIEW = "review"
    NEW_LEARN = "new_learn"
    NEW_REVIEW = "new_review"
    RELAPSE = "relapse"
    COMPLETE = "complete"


class Step(Enum):
    """The two per-word tasks within a phase."""
    RECALL = "recall"  # Recall the meaning, then self-assess
    SPELLING = "spelling"  # Type the word from its meaning


class SpellingResult(Enum):
    """Outcome of the latest spelling submission."""
    CORRECT = "correct"  # Right on the first attempt
    INCORRECT = "incorrect"  # Wrong; a correction is required
    CORRECTED = "corrected"  # Right after an earlier miss


@dataclass
class StudySettings:
    """The user tunables the study engine consumes."""
    daily_new: int
    review_cap: int
    relapse_cap: int
    tts_enabled: bool = True
    tts_rate: float = 1.0

    @classmethod
    def defaults(cls) -> "StudySettings":
        return cls(
            daily_new=settings.study.daily_new,
            review_cap=settings.study.review_cap,
            relapse_cap=settings.study.relapse_cap,
            tts_enabled=settings.study.tts_enabled,
            tts_rate=settings.study.tts_rate,
        )


@dataclass
class WordCard:
    """Display content of a word, with every distinct meaning found in the catalog."""
    word: str
    meanings: List[str] = field(default_factory=list)
    phonetic: Optional[str] = None
    example: Optional[str] = None
    unit: Optional[str] = None
    wordlist_id: Optional[int] = None

    @property
    def key(self) -> str:
        return self.word.lower()


@dataclass
class WordStateData:
    """Plain copy of a user's mastery state for one word."""
    word: str
    level: int = 0
    next_review_at: Optional[date] = None
    last_seen_at: Optional[datetime] = None
    wrong_count: int = 0
    correct_streak: int = 0


@dataclass(frozen=True)
class LevelUpdate:
    """New state fields computed for a word after a phase."""
    level: int
    next_review_at: date
    correct_streak: int
    wrong_count: int
    last_seen_at: datetime

    def as_fields(self) -> Dict[str, object]:
        return {
            "level": self.level,
            "next_review_at": self.next_review_at,
            "correct_streak": self.correct_streak,
            "wrong_count": self.wrong_count,
            "last_seen_at": self.last_seen_at,
        }


@dataclass(frozen=True)
class StudyItem:
    """A word placed in a queue, optionally tagged with the step it is due for."""
    card: WordCard
    state: Optional[WordStateData] = None
    step: Optional[Step] = None

    @property
    def key(self) -> str:
        return self.card.key

    def with_step(self, step: Step) -> "StudyItem":
        return replace(self, step=step)


@dataclass
class DailyQueue:
    """Words selected for today's session."""
    review_words: List[StudyItem] = field(default_factory=list)
    new_words: List[StudyItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.review_words and not self.new_words


@dataclass
class TaskCounts:
    """Dashboard counts computed without loading word content."""
    review_count: int
    new_count: int
    total_studied: int
    total_words: int

    @property
    def total(self) -> int:
        return self.review_count + self.new_count

    @property
    def estimated_minutes(self) -> int:
        return math.ceil(self.total * settings.study.minutes_per_word)


@dataclass
class WordOutcome:
    """Recall and spelling outcomes of one word within the current phase."""
    recall_passed: Optional[bool] = None
    spelling_passed: Optional[bool] = None

    @property
    def is_complete(self) -> bool:
        return self.recall_passed is not None and self.spelling_passed is not None


@dataclass
class SessionResults:
    """Running counters of a session. word_errors keeps first-miss order."""
    start_time: datetime
    new_count: int = 0
    review_count: int = 0
    spelling_correct: int = 0
    spelling_total: int = 0
    recall_know: int = 0
    recall_dont_know: int = 0
    level_ups: int = 0
    word_errors: Dict[str, int] = field(default_factory=dict)


@dataclass
class SessionRecordData:
    """Summary of a finished session, ready to be stored."""
    user_id: int
    date: date
    new_count: int
    review_count: int
    spelling_accuracy: float
    know_count: int
    dont_know_count: int
    duration_seconds: int
    hardest_word: str
    level_ups: int
    type: str = "all"


@dataclass
class PhaseReport:
    """What the store did when a phase finished."""
    phase: Phase
    updated_words: int = 0
    created_states: int = 0
    level_ups: int = 0
