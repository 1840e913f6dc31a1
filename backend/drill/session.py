"""Timed study session controller.

Drives one session from configuration through per-item timing to the
final summary. Quiz and flashcard sessions share this state machine; the
differences live in ``ModeRules``.

All transitions are plain methods meant to run on a single asyncio event
loop, so two transitions never interleave. A user action and a timer
expiry for the same item race only in arrival order: whichever arrives
first resolves the item, the other finds it resolved and is dropped.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from backend.config import settings
from backend.drill.distractors import build_options
from backend.drill.errors import EmptyPoolError, InvalidTransitionError, PersistenceError
from backend.drill.pool import WordPool
from backend.drill.progress import LocalFlashProgress, ProgressRecorder
from backend.drill.sampler import sample_words
from backend.drill.timer import CountdownTimer, TimerEvent, TimerPhase
from backend.drill.types import (
    Outcome,
    Resolution,
    SessionMode,
    SessionSnapshot,
    SessionSpec,
    StudyStatus,
    Word,
    accuracy_percent,
)

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    CONFIGURING = "configuring"
    ACTIVE = "active"
    FINISHED = "finished"
    ABANDONED = "abandoned"


class ItemPhase(str, Enum):
    PENDING = "pending"
    PRESENTED = "presented"
    RESOLVED = "resolved"


class SaveState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    SAVED = "saved"
    FAILED = "failed"


class Direction(str, Enum):
    PREV = "prev"
    NEXT = "next"


class _TimerKind(Enum):
    ITEM = "item"
    FEEDBACK = "feedback"


@dataclass(frozen=True)
class ModeRules:
    """Per-mode timing and resolution behavior."""

    item_units: int
    feedback_units: int
    builds_options: bool
    timeout_records_outcome: bool


def default_rules() -> dict[SessionMode, ModeRules]:
    """Mode rules built from the current settings."""
    return {
        SessionMode.QUIZ: ModeRules(
            item_units=settings.quiz_item_units,
            feedback_units=settings.quiz_feedback_units,
            builds_options=True,
            timeout_records_outcome=True,
        ),
        SessionMode.FLASHCARD: ModeRules(
            item_units=settings.flash_item_units,
            feedback_units=0,
            builds_options=False,
            timeout_records_outcome=False,
        ),
    }


@dataclass
class ItemState:
    """Mutable per-item state owned by the controller."""

    word: Word
    phase: ItemPhase = ItemPhase.PENDING
    options: list[str] = field(default_factory=list)
    flipped: bool = False
    outcome: Outcome | None = None
    save_state: SaveState = SaveState.NONE


@dataclass(frozen=True)
class ItemView:
    index: int
    word_id: int
    prompt: str
    answer: str | None  # revealed after a quiz answer, or while a card is flipped
    options: list[str]
    phase: ItemPhase
    flipped: bool
    outcome: Outcome | None
    learned: bool
    study_count: int
    save_state: SaveState


@dataclass(frozen=True)
class SessionSummary:
    total_items: int
    correct_count: int
    accuracy_percent: int
    outcomes: tuple[Outcome, ...]


@dataclass(frozen=True)
class SessionView:
    """What a caller needs to render the session right now."""

    phase: SessionPhase
    mode: SessionMode | None
    total_items: int
    current_index: int | None
    current_item: ItemView | None
    time_remaining: int | None
    time_up: bool
    result_log: tuple[Outcome, ...]
    summary: SessionSummary | None


class SessionController:
    """State machine for a single study session.

    Args:
        pool: Source of catalog words.
        recorder: Durable progress writer. Guest sessions may pass None.
        flash_progress: Local learned-card cache for flashcard mode.
        unit_seconds: Wall-clock length of one timer unit. None means the
            caller drives time with ``tick()``.
        rng: Random source for sampling and option shuffles.
        rules: Per-mode timing overrides.
        on_change: Called with the new view after every transition.
    """

    def __init__(
        self,
        pool: WordPool,
        recorder: ProgressRecorder | None = None,
        flash_progress: LocalFlashProgress | None = None,
        *,
        unit_seconds: float | None = None,
        rng: random.Random | None = None,
        rules: dict[SessionMode, ModeRules] | None = None,
        grace_units: int | None = None,
        on_change: Callable[[SessionView], None] | None = None,
    ) -> None:
        self.pool = pool
        self.recorder = recorder if recorder is not None else ProgressRecorder()
        self.flash_progress = flash_progress if flash_progress is not None else LocalFlashProgress()
        self.unit_seconds = unit_seconds
        self._rng = rng or random.Random()
        self._rules = rules or default_rules()
        self._grace_units = settings.grace_units if grace_units is None else grace_units
        self._on_change = on_change

        self._phase = SessionPhase.CONFIGURING
        self._spec: SessionSpec | None = None
        self._prepared: SessionSnapshot | None = None
        self._config_generation = 0
        self._generation = 0
        self._starting = False
        self._snapshot: SessionSnapshot | None = None
        self._items: list[ItemState] = []
        self._index = 0
        self._timer: CountdownTimer | None = None
        self._timer_kind: _TimerKind | None = None
        self._frozen_remaining: int | None = None
        self._summary: SessionSummary | None = None
        self._pending: set[asyncio.Task] = set()

    # --- Properties ---

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def spec(self) -> SessionSpec | None:
        return self._spec

    @property
    def snapshot(self) -> SessionSnapshot | None:
        return self._snapshot

    @property
    def summary(self) -> SessionSummary | None:
        return self._summary

    @property
    def timer(self) -> CountdownTimer | None:
        return self._timer

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    @property
    def _mode_rules(self) -> ModeRules:
        if self._spec is None:
            raise InvalidTransitionError("session is not configured")
        return self._rules[self._spec.mode]

    # --- Configuration ---

    def configure(self, spec: SessionSpec) -> SessionView:
        """Set what to study. Discards any previously prepared word list."""
        if self._phase is SessionPhase.ACTIVE or self._starting:
            raise InvalidTransitionError("finish or abandon the current session before reconfiguring")

        self._cancel_timer()
        self._spec = spec
        self._prepared = None
        self._config_generation += 1
        self._phase = SessionPhase.CONFIGURING
        self._snapshot = None
        self._items = []
        self._index = 0
        self._summary = None
        self._frozen_remaining = None
        logger.debug("Configured %s session: level=%s size=%d", spec.mode.value, spec.level, spec.requested_size)
        return self._changed()

    async def prepare(self) -> SessionView:
        """Load the word list ahead of ``start()`` so its size can be shown."""
        spec = self._require_configuring()
        generation = self._config_generation
        snapshot = await self._build_snapshot(spec)
        if generation != self._config_generation or self._phase is not SessionPhase.CONFIGURING:
            logger.debug("Discarding word list for a superseded configuration")
            return self.view()
        self._prepared = snapshot
        return self._changed()

    async def start(self) -> SessionView:
        """Fix the snapshot and present the first item.

        Raises:
            EmptyPoolError: No words match the configured level.
            PoolUnavailableError: The pool could not be reached.
            InvalidTransitionError: Not configured, or already started.
        """
        spec = self._require_configuring()
        if self._starting:
            raise InvalidTransitionError("session is already starting")

        self._starting = True
        try:
            snapshot = self._prepared if self._prepared is not None else await self._build_snapshot(spec)
        finally:
            self._starting = False
        if self._phase is not SessionPhase.CONFIGURING:
            raise InvalidTransitionError(f"session was {self._phase.value} while loading words")

        self._generation += 1
        self._snapshot = snapshot
        self._items = [ItemState(word=w) for w in snapshot.words]
        self._prepared = None
        self._summary = None
        self._phase = SessionPhase.ACTIVE
        logger.info(
            "Started %s session #%d with %d items",
            spec.mode.value,
            self._generation,
            len(snapshot),
        )
        self._present(0)
        return self._changed()

    def _require_configuring(self) -> SessionSpec:
        if self._phase is not SessionPhase.CONFIGURING or self._spec is None:
            raise InvalidTransitionError(f"cannot start from phase {self._phase.value} without a configuration")
        return self._spec

    async def _build_snapshot(self, spec: SessionSpec) -> SessionSnapshot:
        batch = await self.pool.fetch_words(spec.level, spec.requested_size)
        words = sample_words(batch.words, spec.requested_size, self._rng)
        if not words:
            level = spec.level.value if spec.level else "any"
            raise EmptyPoolError(f"no words available for level {level}")
        return SessionSnapshot(words=tuple(words))

    # --- Item actions ---

    def resolve(self, item_index: int, response: str) -> SessionView:
        """Answer the presented quiz question."""
        self._require_mode(SessionMode.QUIZ, "resolve")
        if not self._accepts(item_index, "resolve"):
            return self.view()

        item = self._items[item_index]
        elapsed = self._timer.elapsed if self._timer_kind is _TimerKind.ITEM and self._timer else 0
        self._freeze_clock()
        is_correct = response == item.word.japanese
        outcome = Outcome(
            word_id=item.word.id,
            prompt=item.word.english,
            user_response=response,
            correct_answer=item.word.japanese,
            is_correct=is_correct,
            elapsed_units=elapsed,
            resolution=Resolution.ANSWERED,
        )
        self._settle(item_index, outcome, StudyStatus.MASTERED if is_correct else StudyStatus.LEARNING)

        feedback_units = self._mode_rules.feedback_units
        if feedback_units > 0:
            self._arm(_TimerKind.FEEDBACK, feedback_units, grace_units=0)
        else:
            self._advance()
        return self._changed()

    def mark_learned(self, item_index: int) -> SessionView:
        """Mark the presented flashcard as learned and move on.

        The local cache is bumped every time. The item gets one outcome, and
        one durable write, per session pass; revisiting a marked card only
        touches the local cache.
        """
        self._require_mode(SessionMode.FLASHCARD, "mark_learned")
        if self._phase is not SessionPhase.ACTIVE or item_index != self._index:
            self._ignore("mark_learned", item_index)
            return self.view()

        item = self._items[item_index]
        if self.flash_progress.mark_learned(item.word.id):
            logger.debug("Word %d learned on this device", item.word.id)
        if item.phase is ItemPhase.RESOLVED:
            logger.debug("Card %d already marked in this session", item_index)
            return self._changed()

        elapsed = self._timer.elapsed if self._timer else 0
        self._freeze_clock()
        outcome = Outcome(
            word_id=item.word.id,
            prompt=item.word.english,
            user_response=None,
            correct_answer=item.word.japanese,
            is_correct=True,
            elapsed_units=elapsed,
            resolution=Resolution.MARKED,
        )
        self._settle(item_index, outcome, StudyStatus.LEARNING)
        self._advance()
        return self._changed()

    def timer_auto_advance(self, item_index: int) -> SessionView:
        """Handle the end of an item's grace period.

        Only acts once the presented item's own timer has run out, grace
        included; earlier calls are ignored.
        """
        timer = self._timer
        if (
            self._phase is not SessionPhase.ACTIVE
            or item_index != self._index
            or timer is None
            or self._timer_kind is not _TimerKind.ITEM
            or timer.item_index != item_index
            or timer.phase is not TimerPhase.DONE
        ):
            self._ignore("timer_auto_advance", item_index)
            return self.view()

        item = self._items[item_index]
        if not self._mode_rules.timeout_records_outcome:
            self._advance()
            return self._changed()

        if item.phase is ItemPhase.RESOLVED:
            self._ignore("timer_auto_advance", item_index)
            return self.view()

        duration = timer.duration_units
        self._freeze_clock()
        outcome = Outcome(
            word_id=item.word.id,
            prompt=item.word.english,
            user_response=None,
            correct_answer=item.word.japanese,
            is_correct=False,
            elapsed_units=duration,
            resolution=Resolution.TIMED_OUT,
        )
        self._settle(item_index, outcome, StudyStatus.LEARNING)
        self._advance()
        return self._changed()

    def flip(self, item_index: int) -> SessionView:
        """Toggle which side of the presented flashcard is shown."""
        self._require_mode(SessionMode.FLASHCARD, "flip")
        if self._phase is not SessionPhase.ACTIVE or item_index != self._index:
            self._ignore("flip", item_index)
            return self.view()
        item = self._items[item_index]
        item.flipped = not item.flipped
        return self._changed()

    def navigate(self, direction: Direction) -> SessionView:
        """Move to the previous or next flashcard without recording anything."""
        self._require_mode(SessionMode.FLASHCARD, "navigate")
        if self._phase is not SessionPhase.ACTIVE:
            self._ignore("navigate", self._index)
            return self.view()

        target = self._index + (1 if direction is Direction.NEXT else -1)
        if not 0 <= target < len(self._items):
            logger.debug("Cannot navigate %s from card %d", direction.value, self._index)
            return self.view()
        self._present(target)
        return self._changed()

    def advance_manually(self) -> SessionView:
        """Skip ahead: past the quiz feedback delay, or to the next flashcard."""
        if self._phase is not SessionPhase.ACTIVE:
            self._ignore("advance_manually", self._index)
            return self.view()
        if self._spec and self._spec.mode is SessionMode.QUIZ and self._items[self._index].phase is not ItemPhase.RESOLVED:
            self._ignore("advance_manually", self._index)
            return self.view()
        self._advance()
        return self._changed()

    def tick(self) -> SessionView:
        """Advance the armed timer by one unit."""
        if self._phase is not SessionPhase.ACTIVE or self._timer is None:
            return self.view()
        self._timer.tick()
        return self.view()

    # --- Ending ---

    def finish(self) -> SessionView:
        """End the session now. Unresolved items are logged as timed out."""
        if self._phase is SessionPhase.FINISHED:
            return self.view()
        if self._phase is not SessionPhase.ACTIVE:
            raise InvalidTransitionError(f"cannot finish a session in phase {self._phase.value}")
        self._finish()
        return self._changed()

    def abandon(self) -> SessionView:
        """Drop the session. The timer is cancelled and no summary is produced."""
        if self._phase in (SessionPhase.ACTIVE, SessionPhase.CONFIGURING):
            self._cancel_timer()
            self._prepared = None
            self._phase = SessionPhase.ABANDONED
            logger.info("Abandoned session #%d", self._generation)
        return self._changed()

    async def drain(self) -> None:
        """Wait for in-flight progress writes to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # --- Internals ---

    def _require_mode(self, mode: SessionMode, action: str) -> None:
        if self._spec is None or self._spec.mode is not mode:
            raise InvalidTransitionError(f"{action} is only available in {mode.value} sessions")

    def _accepts(self, item_index: int, action: str) -> bool:
        if (
            self._phase is not SessionPhase.ACTIVE
            or item_index != self._index
            or self._items[item_index].phase is ItemPhase.RESOLVED
        ):
            self._ignore(action, item_index)
            return False
        return True

    def _ignore(self, action: str, item_index: int) -> None:
        logger.debug(
            "Ignoring %s for item %d (phase=%s, current=%d)",
            action,
            item_index,
            self._phase.value,
            self._index,
        )

    def _present(self, index: int) -> None:
        self._cancel_timer()
        self._index = index
        self._frozen_remaining = None
        item = self._items[index]
        if item.phase is ItemPhase.PENDING:
            item.phase = ItemPhase.PRESENTED
        item.flipped = False
        if self._mode_rules.builds_options and item.phase is not ItemPhase.RESOLVED:
            item.options = build_options(item.word, [i.word for i in self._items], self._rng)
        self._arm(_TimerKind.ITEM, self._mode_rules.item_units, grace_units=self._grace_units)

    def _arm(self, kind: _TimerKind, units: int, grace_units: int) -> None:
        self._cancel_timer()
        self._timer = CountdownTimer(self._index, units, grace_units=grace_units, listener=self._on_timer_event)
        self._timer_kind = kind
        if self.unit_seconds is not None:
            self._timer.start(self.unit_seconds)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_kind = None

    def _freeze_clock(self) -> None:
        if self._timer is not None and self._timer_kind is _TimerKind.ITEM:
            self._frozen_remaining = self._timer.remaining
        self._cancel_timer()

    def _on_timer_event(self, timer: CountdownTimer, event: TimerEvent) -> None:
        if timer is not self._timer or self._phase is not SessionPhase.ACTIVE:
            logger.debug("Dropping %s from a stale timer %r", event.value, timer)
            return

        if event is not TimerEvent.AUTO_ADVANCE:
            if event is TimerEvent.EXPIRED and self._timer_kind is _TimerKind.ITEM:
                logger.debug("Time is up for item %d", timer.item_index)
            self._notify()
            return

        if self._timer_kind is _TimerKind.FEEDBACK:
            self._advance()
            self._notify()
        else:
            self.timer_auto_advance(timer.item_index)

    def _advance(self) -> None:
        self._cancel_timer()
        if self._index + 1 < len(self._items):
            self._present(self._index + 1)
        else:
            self._finish()

    def _finish(self) -> None:
        self._cancel_timer()
        for item in self._items:
            if item.outcome is None:
                item.outcome = Outcome(
                    word_id=item.word.id,
                    prompt=item.word.english,
                    user_response=None,
                    correct_answer=item.word.japanese,
                    is_correct=False,
                    elapsed_units=0,
                    resolution=Resolution.TIMED_OUT,
                )
                item.phase = ItemPhase.RESOLVED

        outcomes = self._result_log()
        correct = sum(1 for o in outcomes if o.is_correct)
        self._summary = SessionSummary(
            total_items=len(outcomes),
            correct_count=correct,
            accuracy_percent=accuracy_percent(correct, len(outcomes)),
            outcomes=outcomes,
        )
        self._phase = SessionPhase.FINISHED
        logger.info(
            "Finished session #%d: %d/%d correct (%d%%)",
            self._generation,
            correct,
            len(outcomes),
            self._summary.accuracy_percent,
        )

    def _settle(self, index: int, outcome: Outcome, status: StudyStatus) -> None:
        item = self._items[index]
        item.outcome = outcome
        item.phase = ItemPhase.RESOLVED
        if self.recorder.enabled:
            self._submit(index, outcome, status)

    def _submit(self, index: int, outcome: Outcome, status: StudyStatus) -> None:
        item = self._items[index]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop; progress for word %d was not saved", outcome.word_id)
            item.save_state = SaveState.FAILED
            return

        item.save_state = SaveState.PENDING
        task = loop.create_task(self.recorder.record((self._generation, index), outcome, status))
        self._pending.add(task)
        task.add_done_callback(functools.partial(self._on_saved, self._generation, index))

    def _on_saved(self, generation: int, index: int, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, PersistenceError):
            logger.error("Unexpected error while saving progress", exc_info=exc)

        if generation != self._generation or index >= len(self._items):
            logger.debug("Ignoring save completion for item %d of session #%d", index, generation)
            return
        self._items[index].save_state = SaveState.FAILED if exc is not None else SaveState.SAVED
        # No redraw once the session has ended
        if self._phase is SessionPhase.ACTIVE:
            self._notify()

    def _result_log(self) -> tuple[Outcome, ...]:
        return tuple(item.outcome for item in self._items if item.outcome is not None)

    def _changed(self) -> SessionView:
        view = self.view()
        if self._on_change is not None:
            self._on_change(view)
        return view

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.view())

    # --- Views ---

    def view(self) -> SessionView:
        """Return the public state of the session."""
        current = None
        current_index = None
        if self._phase is SessionPhase.ACTIVE and self._items:
            current_index = self._index
            current = self._item_view(self._index)

        if self._phase is SessionPhase.CONFIGURING:
            total = len(self._prepared) if self._prepared is not None else 0
        else:
            total = len(self._items)

        return SessionView(
            phase=self._phase,
            mode=self._spec.mode if self._spec else None,
            total_items=total,
            current_index=current_index,
            current_item=current,
            time_remaining=self._time_remaining(),
            time_up=self._time_up(),
            result_log=self._result_log(),
            summary=self._summary,
        )

    def _item_view(self, index: int) -> ItemView:
        item = self._items[index]
        is_flash = self._spec is not None and self._spec.mode is SessionMode.FLASHCARD
        entry = self.flash_progress.get(item.word.id) if is_flash else None
        if is_flash:
            answer = item.word.japanese if item.flipped else None
        else:
            answer = item.word.japanese if item.phase is ItemPhase.RESOLVED else None
        return ItemView(
            index=index,
            word_id=item.word.id,
            prompt=item.word.english,
            answer=answer,
            options=list(item.options),
            phase=item.phase,
            flipped=item.flipped,
            outcome=item.outcome,
            learned=entry.is_learned if entry else False,
            study_count=entry.study_count if entry else 0,
            save_state=item.save_state,
        )

    def _time_remaining(self) -> int | None:
        if self._phase is not SessionPhase.ACTIVE:
            return None
        if self._timer is not None and self._timer_kind is _TimerKind.ITEM:
            return self._timer.remaining
        return self._frozen_remaining

    def _time_up(self) -> bool:
        return (
            self._phase is SessionPhase.ACTIVE
            and self._timer is not None
            and self._timer_kind is _TimerKind.ITEM
            and self._timer.phase is TimerPhase.GRACE
        )
