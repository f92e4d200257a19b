"""Turns a finished session's counters into a stored summary."""
from datetime import datetime
from typing import Mapping, Optional

from lexibot.models.study_models import SessionRecordData, SessionResults
from lexibot.services import srs


def find_hardest_word(word_errors: Mapping[str, int]) -> str:
    """Word with the most spelling misses. Ties go to the word that missed first."""
    hardest = ""
    max_errors = 0
    for word, count in word_errors.items():
        if count > max_errors:
            max_errors = count
            hardest = word
    return hardest


def spelling_accuracy(correct: int, total: int) -> float:
    """First-attempt accuracy rounded to two places; 1.0 when nothing was spelled."""
    if total <= 0:
        return 1.0
    return round(correct / total, 2)


def summarize(results: SessionResults, user_id: int, now: Optional[datetime] = None) -> SessionRecordData:
    """Build the session record for a completed session."""
    if now is None:
        now = srs.utc_now()

    duration = max(0, round((now - results.start_time).total_seconds()))
    return SessionRecordData(
        user_id=user_id,
        date=now.date(),
        new_count=results.new_count,
        review_count=results.review_count,
        spelling_accuracy=spelling_accuracy(results.spelling_correct, results.spelling_total),
        know_count=results.recall_know,
        dont_know_count=results.recall_dont_know,
        duration_seconds=duration,
        hardest_word=find_hardest_word(results.word_errors),
        level_ups=results.level_ups,
    )
