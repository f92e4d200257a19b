"""Daily queue selection: due reviews first, then unseen catalog words."""
import logging
import random
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from lexibot.models.study_models import (
    DailyQueue,
    StudyItem,
    StudySettings,
    TaskCounts,
    WordCard,
    WordStateData,
)
from lexibot.services import srs
from lexibot.services.word_store import WordStore

logger = logging.getLogger(__name__)


def merge_catalog(catalog: Iterable[WordCard]) -> Dict[str, WordCard]:
    """Index catalog entries by lowercase key.

    The first entry for a key provides every field; later duplicates only
    contribute meanings not seen yet.
    """
    merged: Dict[str, WordCard] = {}
    for card in catalog:
        existing = merged.get(card.key)
        if existing is None:
            merged[card.key] = WordCard(
                word=card.word,
                meanings=list(dict.fromkeys(card.meanings)),
                phonetic=card.phonetic,
                example=card.example,
                unit=card.unit,
                wordlist_id=card.wordlist_id,
            )
            continue
        for meaning in card.meanings:
            if meaning not in existing.meanings:
                existing.meanings.append(meaning)
    return merged


def enrich_states(states: Iterable[WordStateData], merged: Dict[str, WordCard]) -> List[StudyItem]:
    """Attach catalog content to each state. Words missing from the catalog get a bare card."""
    items = []
    for state in states:
        card = merged.get(state.word.lower())
        if card is None:
            card = WordCard(word=state.word)
        items.append(StudyItem(card=card, state=state))
    return items


def select_new_words(
    catalog: Iterable[WordCard],
    studied_keys: Set[str],
    limit: int,
    merged: Optional[Dict[str, WordCard]] = None,
) -> List[StudyItem]:
    """Unseen words in catalog order, one per key, at most `limit`."""
    studied = {key.lower() for key in studied_keys}
    seen: Set[str] = set()
    selected: List[StudyItem] = []
    for card in catalog:
        if len(selected) >= limit:
            break
        key = card.key
        if key in studied or key in seen:
            continue
        seen.add(key)
        selected.append(StudyItem(card=merged[key] if merged else card))
    return selected


def build_daily_queue(
    study_settings: StudySettings,
    due_states: Iterable[WordStateData],
    catalog: List[WordCard],
    studied_keys: Set[str],
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
) -> DailyQueue:
    """Build today's review and new-word lists.

    Review words are shuffled; new words keep catalog order so the first
    learning pass is predictable.
    """
    if rng is None:
        rng = random.Random()
    if today is None:
        today = srs.utc_today()

    due = sorted(
        (state for state in due_states if state.next_review_at is not None and state.next_review_at <= today),
        key=lambda state: state.next_review_at,
    )[: max(study_settings.review_cap, 0)]

    merged = merge_catalog(catalog)
    review_words = enrich_states(due, merged)
    rng.shuffle(review_words)

    new_words = select_new_words(catalog, studied_keys, max(study_settings.daily_new, 0), merged)
    return DailyQueue(review_words=review_words, new_words=new_words)


def count_tasks(
    study_settings: StudySettings,
    due_count: int,
    studied_count: int,
    total_words: int,
) -> TaskCounts:
    """Counts for the dashboard, clamped to the user's caps."""
    available_new = max(0, total_words - studied_count)
    return TaskCounts(
        review_count=min(due_count, study_settings.review_cap),
        new_count=min(available_new, study_settings.daily_new),
        total_studied=studied_count,
        total_words=total_words,
    )


class QueueBuilder:
    """Loads queue inputs from a WordStore and builds the daily queue."""

    def __init__(self, store: WordStore, rng: Optional[random.Random] = None):
        """Initialize the builder with a store and an optional random source."""
        self.store = store
        self.rng = rng or random.Random()

    def build(self, user_id: int, study_settings: StudySettings, today: Optional[date] = None) -> DailyQueue:
        """Build the queue for `user_id`. Store failures propagate as PersistenceError."""
        if today is None:
            today = srs.utc_today()

        due_states = self.store.get_due_word_states(user_id, today, study_settings.review_cap)
        studied_keys = self.store.get_all_word_state_keys(user_id)
        catalog = self.store.get_catalog_words(user_id)

        queue = build_daily_queue(study_settings, due_states, catalog, studied_keys, self.rng, today)
        logger.info(
            "Built daily queue for user %s: %d reviews, %d new",
            user_id,
            len(queue.review_words),
            len(queue.new_words),
        )
        return queue

    def count_only(self, user_id: int, study_settings: StudySettings, today: Optional[date] = None) -> TaskCounts:
        """Counts without loading word content."""
        if today is None:
            today = srs.utc_today()

        due_count = self.store.count_due_word_states(user_id, today)
        studied_count = len(self.store.get_all_word_state_keys(user_id))
        total_words = self.store.count_catalog_words(user_id)
        return count_tasks(study_settings, due_count, studied_count, total_words)
