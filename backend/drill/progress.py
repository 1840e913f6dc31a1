"""Progress recording: durable per-user word stats and the local flashcard cache.

Two independent write targets:

- ``ProgressSink``: the durable store. Writes are async and best effort;
  a failure raises ``PersistenceError`` and never touches the session log.
- ``LocalFlashProgress``: a small JSON file kept on this device. Writes are
  synchronous and the in-memory copy is authoritative for the flashcard
  "already learned" guard.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.config import utcnow
from backend.drill.errors import PersistenceError
from backend.drill.types import Outcome, StudyStatus, UserWordStat
from backend.models.user_word import UserWord

logger = logging.getLogger(__name__)


# --- Durable store ---


class ProgressSink(Protocol):
    async def upsert_user_word_stat(
        self,
        user_id: int,
        word_id: int,
        is_correct: bool,
        status: StudyStatus | None = None,
    ) -> UserWordStat:
        """Create or bump the (user, word) counters by exactly one."""
        ...


class SqlProgressSink:
    """Upserts ``UserWord`` rows through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_user_word_stat(
        self,
        user_id: int,
        word_id: int,
        is_correct: bool,
        status: StudyStatus | None = None,
    ) -> UserWordStat:
        now = utcnow()
        stmt = select(UserWord).where(and_(UserWord.user_id == user_id, UserWord.word_id == word_id))
        try:
            async with self._session_factory() as db:
                row = (await db.execute(stmt)).scalar_one_or_none()
                if row is None:
                    row = UserWord(
                        user_id=user_id,
                        word_id=word_id,
                        correct_count=1 if is_correct else 0,
                        mistake_count=0 if is_correct else 1,
                        last_studied_at=now,
                        status=(status or StudyStatus.LEARNING).value,
                    )
                    db.add(row)
                else:
                    if is_correct:
                        row.correct_count += 1
                    else:
                        row.mistake_count += 1
                    row.last_studied_at = now
                    if status is not None:
                        row.status = status.value
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"could not save progress for word {word_id}") from exc

        return UserWordStat(
            user_id=row.user_id,
            word_id=row.word_id,
            correct_count=row.correct_count,
            mistake_count=row.mistake_count,
            last_studied_at=row.last_studied_at,
            status=StudyStatus(row.status),
        )


class ProgressRecorder:
    """Submits session outcomes to the durable store, at most once each.

    Without a user id (guest mode) or without a sink every call is a no-op.
    """

    def __init__(self, sink: ProgressSink | None = None, user_id: int | None = None) -> None:
        self.sink = sink
        self.user_id = user_id
        self.saved = 0
        self.failures = 0
        self._submitted: set[Hashable] = set()

    @property
    def enabled(self) -> bool:
        return self.sink is not None and self.user_id is not None

    async def record(
        self,
        key: Hashable,
        outcome: Outcome,
        status: StudyStatus | None = None,
    ) -> UserWordStat | None:
        """Upsert the stat for ``outcome``.

        ``key`` identifies the outcome; a key that was already submitted is
        dropped. Raises PersistenceError when the store write fails.
        """
        if not self.enabled:
            return None
        if key in self._submitted:
            logger.debug("Outcome %r already submitted, skipping", key)
            return None
        self._submitted.add(key)

        try:
            stat = await self.sink.upsert_user_word_stat(  # type: ignore[union-attr]
                self.user_id,  # type: ignore[arg-type]
                outcome.word_id,
                outcome.is_correct,
                status,
            )
        except PersistenceError:
            self.failures += 1
            logger.warning("Progress for word %d was not saved", outcome.word_id, exc_info=True)
            raise

        self.saved += 1
        return stat


# --- Local flashcard cache ---


class FlashProgressEntry(BaseModel):
    study_count: int = 0
    last_studied_at: datetime | None = None
    is_learned: bool = False


_ENTRIES = TypeAdapter(dict[int, FlashProgressEntry])


class LocalFlashProgress:
    """Device-local record of which flashcards were marked learned.

    ``path=None`` keeps the cache in memory only.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._entries: dict[int, FlashProgressEntry] = {}
        if path is not None:
            self._load(path)

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            self._entries = _ENTRIES.validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            # A corrupt cache only costs the learned marks; start over
            logger.error("Could not read flashcard progress from %s: %s", path, exc)
            self._entries = {}

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(_ENTRIES.dump_json(self._entries, indent=2))
        except OSError as exc:
            logger.warning("Could not write flashcard progress to %s: %s", self.path, exc)

    def get(self, word_id: int) -> FlashProgressEntry | None:
        return self._entries.get(word_id)

    def is_learned(self, word_id: int) -> bool:
        entry = self._entries.get(word_id)
        return entry is not None and entry.is_learned

    def mark_learned(self, word_id: int, now: datetime | None = None) -> bool:
        """Record a mark-learned action.

        Always bumps the study count and timestamp. Returns True only when the
        word was not learned before this call.
        """
        now = now or utcnow()
        entry = self._entries.get(word_id) or FlashProgressEntry()
        newly_learned = not entry.is_learned
        self._entries[word_id] = entry.model_copy(
            update={
                "study_count": entry.study_count + 1,
                "last_studied_at": now,
                "is_learned": True,
            }
        )
        self._save()
        return newly_learned

    def __len__(self) -> int:
        return len(self._entries)
