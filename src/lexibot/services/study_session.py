"""Study session engine.

A session walks the user through up to four phases:

    REVIEW -> NEW_LEARN -> NEW_REVIEW -> RELAPSE -> COMPLETE

Each word in a phase gets a recall step (reveal the meaning, then say whether
it was known) and a spelling step (type the word). During NEW_LEARN a word's
two steps run back to back; every other phase runs all recall steps first and
all spelling steps after, each block in its own random order.

Word levels change only at the end of a retrieval phase (REVIEW, NEW_REVIEW,
RELAPSE) and only for words whose two outcomes were both recorded in that
phase. Level updates of one phase are written as one batch. A failed write
never blocks the session: the phase still advances, the failure is raised to
the caller and the batch is kept for `retry_pending_writes`.
"""
import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from lexibot import monitoring
from lexibot.exceptions import (
    EmptyQueueError,
    MalformedInputError,
    PersistenceError,
    SessionStateError,
)
from lexibot.models.study_models import (
    DailyQueue,
    LevelUpdate,
    Phase,
    PhaseReport,
    SessionRecordData,
    SessionResults,
    SpellingResult,
    Step,
    StudyItem,
    StudySettings,
    WordOutcome,
    WordStateData,
)
from lexibot.services import srs
from lexibot.services.session_summary import summarize
from lexibot.services.word_store import WordStore

logger = logging.getLogger(__name__)


class StudySession:
    """One user's study session. Not shared between users or tasks."""

    def __init__(
        self,
        user_id: int,
        store: WordStore,
        study_settings: StudySettings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = srs.utc_now,
    ):
        """Initialize an idle session."""
        self.user_id = user_id
        self.store = store
        self.settings = study_settings
        self.rng = rng or random.Random()
        self.clock = clock
        self.reset()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop all in-memory session state without writing anything."""
        self.phase: Optional[Phase] = None
        self.current: Optional[StudyItem] = None
        self.queue: List[StudyItem] = []

        self.review_words: List[StudyItem] = []
        self.new_words: List[StudyItem] = []
        self.relapse_words: List[StudyItem] = []
        self._relapse_keys: Set[str] = set()

        self.results: Optional[SessionResults] = None
        self.phase_outcomes: Dict[str, WordOutcome] = {}

        self.answer_shown = False
        self.spelling_result: Optional[SpellingResult] = None
        self.needs_correction = False
        self._display_meaning: Optional[str] = None
        self._finished_items = 0
        self._relapse_planned = 0

        self.last_phase_report: Optional[PhaseReport] = None
        self.record: Optional[SessionRecordData] = None
        self.record_saved = False

        self._pending_batches: List[Dict[str, WordOutcome]] = []
        self._pending_new_keys: List[str] = []
        self._errors: List[PersistenceError] = []

    def exit(self) -> None:
        """Abandon the session. Nothing from the current phase is persisted."""
        if self.is_active:
            monitoring.study_sessions_abandoned.inc()
            logger.info("User %s exited session during %s", self.user_id, self.phase.value)
        self.reset()

    @property
    def is_active(self) -> bool:
        return self.phase is not None and self.phase is not Phase.COMPLETE

    @property
    def step(self) -> Optional[Step]:
        return self.current.step if self.current else None

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._pending_batches or self._pending_new_keys) or (
            self.record is not None and not self.record_saved
        )

    def total_items(self) -> int:
        """Planned item count: both steps of every review word, twice both steps
        of every new word, and both steps of each replayed mistake once the
        relapse phase has started."""
        return len(self.review_words) * 2 + len(self.new_words) * 4 + self._relapse_planned * 2

    def completed_items(self) -> int:
        return min(self._finished_items, self.total_items())

    def display_meaning(self) -> str:
        """One of the current word's meanings, picked at random once per item.

        Empty when the word has no meaning in the catalog.
        """
        if self.current is None:
            raise SessionStateError("No current word")
        if self._display_meaning is None:
            meanings = self.current.card.meanings
            self._display_meaning = self.rng.choice(meanings) if meanings else ""
        return self._display_meaning

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def start(self, queue: DailyQueue) -> Phase:
        """Start a session over today's queue.

        Raises EmptyQueueError when there is nothing to study; the session is
        then COMPLETE and nothing is recorded.
        """
        if self.is_active:
            raise SessionStateError("A session is already in progress")

        self.reset()
        self.review_words = list(queue.review_words)
        self.new_words = list(queue.new_words)
        self.results = SessionResults(
            start_time=self.clock(),
            new_count=len(self.new_words),
            review_count=len(self.review_words),
        )

        if self.review_words:
            self._start_phase(Phase.REVIEW, self.review_words)
        elif self.new_words:
            self._start_phase(Phase.NEW_LEARN, self.new_words)
        else:
            self.phase = Phase.COMPLETE
            self.results = None
            raise EmptyQueueError()

        monitoring.study_sessions_started.inc()
        logger.info(
            "User %s started session: %d reviews, %d new",
            self.user_id,
            len(self.review_words),
            len(self.new_words),
        )
        return self.phase

    def reveal(self) -> None:
        """Show the meaning on a recall card. Not scored."""
        self._require_step(Step.RECALL)
        self.answer_shown = True
        logger.debug("show_answer %s", self.current.key)

    def submit_recall(self, know: bool) -> Phase:
        """Record the user's self-assessment and move to the next item."""
        self._require_step(Step.RECALL)
        key = self.current.key

        if know:
            self.results.recall_know += 1
        else:
            self.results.recall_dont_know += 1
            self._add_to_relapse(self.current)

        self.phase_outcomes.setdefault(key, WordOutcome()).recall_passed = know
        monitoring.recall_answers.labels(choice="know" if know else "dont_know").inc()
        logger.debug("self_eval %s %s", key, "know" if know else "dont_know")

        self._advance_word()
        return self.phase

    def submit_spelling(self, text: str) -> SpellingResult:
        """Check a typed spelling against the current word, ignoring case.

        Only the first attempt at a word counts. A miss puts the step into
        correction mode, where the word must be typed correctly before
        `proceed` is allowed.
        """
        self._require_step(Step.SPELLING)
        if self.spelling_result in (SpellingResult.CORRECT, SpellingResult.CORRECTED):
            raise SessionStateError("Spelling already resolved; proceed to the next word")
        if text is None or not text.strip():
            raise MalformedInputError("Spelling must not be empty")

        key = self.current.key
        is_correct = text.strip().lower() == self.current.card.word.lower()

        if self.needs_correction:
            if is_correct:
                self.needs_correction = False
                self.spelling_result = SpellingResult.CORRECTED
            else:
                self.spelling_result = SpellingResult.INCORRECT
            monitoring.spelling_attempts.labels(result=f"retry_{self.spelling_result.value}").inc()
            return self.spelling_result

        self.results.spelling_total += 1
        outcome = self.phase_outcomes.setdefault(key, WordOutcome())

        if is_correct:
            self.results.spelling_correct += 1
            outcome.spelling_passed = True
            self.spelling_result = SpellingResult.CORRECT
        else:
            outcome.spelling_passed = False
            self.spelling_result = SpellingResult.INCORRECT
            self.needs_correction = True
            self._add_to_relapse(self.current)
            self.results.word_errors[key] = self.results.word_errors.get(key, 0) + 1

        monitoring.spelling_attempts.labels(result=self.spelling_result.value).inc()
        logger.debug("spelling_submit %s correct=%s", key, is_correct)
        return self.spelling_result

    def proceed(self) -> Phase:
        """Leave a resolved spelling step for the next item."""
        self._require_step(Step.SPELLING)
        if self.spelling_result not in (SpellingResult.CORRECT, SpellingResult.CORRECTED):
            raise SessionStateError("The word must be spelled correctly before moving on")
        self._advance_word()
        return self.phase

    def retry_pending_writes(self) -> None:
        """Write anything a previous failure left unsaved, in its original order."""
        if self.results is None:
            return
        self._flush_level_updates()
        self._flush_new_states()
        if self.record is not None and not self.record_saved:
            self.record.level_ups = self.results.level_ups
            self._save_record()

    # ------------------------------------------------------------------
    # Queue handling
    # ------------------------------------------------------------------

    def _require_step(self, step: Step) -> None:
        if not self.is_active or self.current is None:
            raise SessionStateError("No study session in progress")
        if self.current.step is not step:
            raise SessionStateError(f"Current step is {self.current.step.value}, not {step.value}")

    def _add_to_relapse(self, item: StudyItem) -> None:
        if item.key in self._relapse_keys:
            return
        self._relapse_keys.add(item.key)
        self.relapse_words.append(StudyItem(card=item.card, state=item.state))

    def _build_phase_queue(self, phase: Phase, words: List[StudyItem]) -> List[StudyItem]:
        if phase is Phase.NEW_LEARN:
            queue = []
            for word in words:
                queue.append(word.with_step(Step.RECALL))
                queue.append(word.with_step(Step.SPELLING))
            return queue

        recall_order = list(words)
        self.rng.shuffle(recall_order)
        spelling_order = list(words)
        self.rng.shuffle(spelling_order)
        return [w.with_step(Step.RECALL) for w in recall_order] + [
            w.with_step(Step.SPELLING) for w in spelling_order
        ]

    def _set_position(self, items: List[StudyItem]) -> None:
        """Make items[0] current and the rest the queue, in a single assignment."""
        self.current, self.queue = items[0], items[1:]
        self.answer_shown = False
        self.spelling_result = None
        self.needs_correction = False
        self._display_meaning = None

    def _start_phase(self, phase: Phase, words: List[StudyItem]) -> None:
        self.phase = phase
        self.phase_outcomes = {}
        if not words:
            self._advance_phase()
            return

        logger.info("User %s entering %s with %d words", self.user_id, phase.value, len(words))
        self._set_position(self._build_phase_queue(phase, words))

    def _advance_word(self) -> None:
        self._finished_items += 1
        if self.queue:
            self._set_position(self.queue)
            return

        self._finish_phase()
        self._raise_collected_errors()

    def _finish_phase(self) -> None:
        phase = self.phase
        report = PhaseReport(phase=phase)
        self.current, self.queue = None, []

        if phase is Phase.NEW_LEARN:
            self._pending_new_keys.extend(item.key for item in self.new_words)
            report.created_states = self._try(self._flush_new_states) or 0
        else:
            batch = {key: outcome for key, outcome in self.phase_outcomes.items() if outcome.is_complete}
            if batch:
                self._pending_batches.append(batch)
            flushed = self._try(self._flush_level_updates)
            if flushed:
                report.updated_words, report.level_ups = flushed

        self.last_phase_report = report
        logger.info(
            "User %s finished %s: %d updated, %d level-ups, %d new states",
            self.user_id,
            phase.value,
            report.updated_words,
            report.level_ups,
            report.created_states,
        )
        self._advance_phase()

    def _advance_phase(self) -> None:
        phase = self.phase
        if phase is Phase.REVIEW and self.new_words:
            self._start_phase(Phase.NEW_LEARN, self.new_words)
        elif phase is Phase.NEW_LEARN and self.new_words:
            self._start_phase(Phase.NEW_REVIEW, self.new_words)
        elif phase in (Phase.REVIEW, Phase.NEW_LEARN, Phase.NEW_REVIEW) and self.relapse_words:
            relapse = self.relapse_words[: max(self.settings.relapse_cap, 0)]
            self._relapse_planned = len(relapse)
            self._start_phase(Phase.RELAPSE, relapse)
        else:
            self._complete()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _try(self, operation: Callable):
        try:
            return operation()
        except PersistenceError as e:
            logger.error("User %s session write failed: %s", self.user_id, e)
            self._errors.append(e)
            return None

    def _raise_collected_errors(self) -> None:
        if not self._errors:
            return
        errors, self._errors = self._errors, []
        for extra in errors[1:]:
            logger.error("Additional session write failure: %s", extra)
        raise errors[0]

    def _compute_updates(self, batch: Dict[str, WordOutcome], now: datetime):
        current_states = self.store.get_word_states(self.user_id, batch.keys())
        updates: Dict[str, LevelUpdate] = {}
        level_ups = 0
        for key, outcome in batch.items():
            state = current_states.get(key) or WordStateData(word=key)
            update = srs.update_level(state, outcome.recall_passed, outcome.spelling_passed, now)
            if update.level > state.level:
                level_ups += 1
            updates[key] = update
        return updates, level_ups

    def _flush_level_updates(self):
        """Apply pending level-update batches oldest first. Returns (words, level-ups) applied."""
        updated = 0
        level_ups = 0
        while self._pending_batches:
            batch = self._pending_batches[0]
            updates, batch_level_ups = self._compute_updates(batch, self.clock())
            self.store.upsert_word_states(self.user_id, updates)
            self._pending_batches.pop(0)

            self.results.level_ups += batch_level_ups
            monitoring.level_ups.inc(batch_level_ups)
            updated += len(updates)
            level_ups += batch_level_ups
        return updated, level_ups

    def _flush_new_states(self) -> int:
        if not self._pending_new_keys:
            return 0
        created = self.store.ensure_word_states(self.user_id, self._pending_new_keys, self.clock())
        self._pending_new_keys = []
        return created

    def _save_record(self) -> None:
        self.store.insert_session_record(self.record)
        self.record_saved = True

    def _complete(self) -> None:
        self.phase = Phase.COMPLETE
        self.current, self.queue = None, []

        now = self.clock()
        self.record = summarize(self.results, self.user_id, now)
        if self._pending_batches:
            logger.warning("User %s completed with unsaved level updates", self.user_id)
        self._try(self._save_record)

        self.phase_outcomes = {}
        self.relapse_words = []
        self._relapse_keys = set()

        monitoring.study_sessions_completed.inc()
        monitoring.session_duration.observe(self.record.duration_seconds)
        logger.info("User %s session_complete: %s", self.user_id, self.record)
