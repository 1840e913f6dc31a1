"""Word pool providers.

The session engine only needs ``fetch_words(level, limit)``. ``SqlWordPool``
serves it from the catalog table; ``StaticWordPool`` from an in-memory list.
"""

from __future__ import annotations

import logging
import random
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.drill.errors import PoolUnavailableError
from backend.drill.types import Level, Word, WordBatch
from backend.models.word import CatalogWord

logger = logging.getLogger(__name__)


class WordPool(Protocol):
    async def fetch_words(self, level: Level | None, limit: int) -> WordBatch:
        """Return at most ``limit`` words of ``level`` (any level when None)."""
        ...


def to_word(row: CatalogWord) -> Word:
    """Convert a catalog row to the engine's immutable word type."""
    return Word(id=row.id, english=row.english, japanese=row.japanese, level=Level(row.level))


class SqlWordPool:
    """Random catalog sample straight from the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def fetch_words(self, level: Level | None, limit: int) -> WordBatch:
        words_stmt = select(CatalogWord).order_by(func.random()).limit(max(limit, 0))
        count_stmt = select(func.count(CatalogWord.id))
        if level is not None:
            words_stmt = words_stmt.where(CatalogWord.level == level.value)
            count_stmt = count_stmt.where(CatalogWord.level == level.value)

        try:
            async with self._session_factory() as db:
                rows = list((await db.execute(words_stmt)).scalars().all())
                total = (await db.execute(count_stmt)).scalar() or 0
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Word pool fetch failed: %s", exc)
            raise PoolUnavailableError("could not load words from the catalog") from exc

        logger.info(
            "Fetched %d of %d words (level=%s)",
            len(rows),
            total,
            level.value if level else "any",
        )
        return WordBatch(words=[to_word(row) for row in rows], total=total)


class StaticWordPool:
    """Pool over a fixed word list, e.g. a catalog file loaded in memory."""

    def __init__(self, words: list[Word], rng: random.Random | None = None) -> None:
        self._words = list(words)
        self._rng = rng or random.Random()

    async def fetch_words(self, level: Level | None, limit: int) -> WordBatch:
        matching = [w for w in self._words if level is None or w.level == level]
        picked = self._rng.sample(matching, min(max(limit, 0), len(matching)))
        return WordBatch(words=picked, total=len(matching))
