"""Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from backend.config import settings
from backend.drill.session import Direction, ItemPhase, SaveState, SessionPhase
from backend.drill.types import Level, Resolution, SessionMode

# --- Session ---


class StartSessionRequest(BaseModel):
    """Request to configure and start a study session."""

    mode: SessionMode
    level: Level | None = None  # None = any level
    size: int = Field(default=settings.default_session_size, ge=1, le=settings.max_session_size)
    user_id: int | None = None  # None = guest, nothing is saved

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, value: object) -> object:
        if value is None or isinstance(value, Level):
            return value
        return Level.parse(str(value))


class AnswerRequest(BaseModel):
    item_index: int
    response: str


class ItemRequest(BaseModel):
    item_index: int


class NavigateRequest(BaseModel):
    direction: Direction


class OutcomeResponse(BaseModel):
    word_id: int
    prompt: str
    user_response: str | None
    correct_answer: str
    is_correct: bool
    elapsed_units: int
    resolution: Resolution


class ItemResponse(BaseModel):
    """The item currently on screen."""

    index: int
    word_id: int
    prompt: str
    answer: str | None
    options: list[str]
    phase: ItemPhase
    flipped: bool
    outcome: OutcomeResponse | None
    learned: bool
    study_count: int
    save_state: SaveState


class SummaryResponse(BaseModel):
    total_items: int
    correct_count: int
    accuracy_percent: int
    outcomes: list[OutcomeResponse]


class SessionViewResponse(BaseModel):
    """Public state of a session after any action."""

    session_id: str
    phase: SessionPhase
    mode: SessionMode | None
    total_items: int
    current_index: int | None
    current_item: ItemResponse | None
    time_remaining: int | None
    time_up: bool
    result_log: list[OutcomeResponse]
    summary: SummaryResponse | None


# --- Words ---


class WordResponse(BaseModel):
    id: int
    english: str
    japanese: str
    level: Level

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class WordListResponse(BaseModel):
    words: list[WordResponse]
    pagination: Pagination


class RandomWordsResponse(BaseModel):
    words: list[WordResponse]
    total: int


# --- Stats ---


class UserWordResponse(BaseModel):
    word: WordResponse
    status: str
    correct_count: int
    mistake_count: int
    last_studied_at: datetime | None


class LevelStats(BaseModel):
    words: int
    correct: int
    mistakes: int
    accuracy_percent: int


class UserStatsResponse(BaseModel):
    """Study history and totals for one user."""

    total_words: int
    total_correct: int
    total_mistakes: int
    accuracy_percent: int
    levels: dict[str, LevelStats]
    recent: list[UserWordResponse]
