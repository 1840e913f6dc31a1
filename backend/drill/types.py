"""Value types shared by the drill engine components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# Size choices offered by the quiz and flashcard setup screens
QUIZ_SIZES: tuple[int, ...] = (10, 30, 50)
FLASH_SIZES: tuple[int, ...] = (10, 30, 50, 100)

_LEVEL_ALIASES = {
    "中1": "L1",
    "中2": "L2",
    "中3": "L3",
    "1": "L1",
    "2": "L2",
    "3": "L3",
}
_ANY_LEVEL = {"", "all", "any", "全て"}


class Level(str, Enum):
    """Catalog difficulty level (junior-high school year)."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    @classmethod
    def parse(cls, raw: str | None) -> Level | None:
        """Parse a level label. Returns None for "any level".

        Accepts ``L1``, ``1``, ``中1`` and the "all" spellings.
        Raises ValueError for anything else.
        """
        if raw is None:
            return None
        text = raw.strip()
        if text.lower() in _ANY_LEVEL:
            return None
        text = _LEVEL_ALIASES.get(text, text.upper())
        return cls(text)


class SessionMode(str, Enum):
    QUIZ = "quiz"
    FLASHCARD = "flashcard"


class Resolution(str, Enum):
    """How an item reached its outcome."""

    ANSWERED = "answered"
    MARKED = "marked"  # flipped + marked learned
    TIMED_OUT = "timed_out"


class StudyStatus(str, Enum):
    LEARNING = "learning"
    MASTERED = "mastered"


@dataclass(frozen=True)
class Word:
    """An immutable catalog entry as seen by the session engine."""

    id: int
    english: str
    japanese: str
    level: Level


@dataclass(frozen=True)
class WordBatch:
    """Result of a pool fetch: the words returned plus the filtered catalog size."""

    words: list[Word]
    total: int


@dataclass(frozen=True)
class SessionSpec:
    """What to study: mode, level filter (None = any level) and item count."""

    mode: SessionMode
    level: Level | None
    requested_size: int

    def __post_init__(self) -> None:
        if self.requested_size < 1:
            raise ValueError(f"requested_size must be positive, got {self.requested_size}")


@dataclass(frozen=True)
class SessionSnapshot:
    """The ordered word list fixed at session start."""

    words: tuple[Word, ...]

    def __len__(self) -> int:
        return len(self.words)


@dataclass(frozen=True)
class Outcome:
    """The recorded result of resolving one session item."""

    word_id: int
    prompt: str
    user_response: str | None
    correct_answer: str
    is_correct: bool
    elapsed_units: int
    resolution: Resolution


@dataclass(frozen=True)
class UserWordStat:
    """Durable per-user counters for one word."""

    user_id: int
    word_id: int
    correct_count: int
    mistake_count: int
    last_studied_at: datetime | None
    status: StudyStatus


def accuracy_percent(correct: int, total: int) -> int:
    """Percentage of correct outcomes, rounded half up. 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)
