"""API routes for browsing the word catalog."""

import logging
import math
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.schemas import Pagination, RandomWordsResponse, WordListResponse, WordResponse
from backend.config import settings
from backend.database import get_session, get_session_factory
from backend.drill.errors import PoolUnavailableError
from backend.drill.pool import SqlWordPool
from backend.drill.types import Level
from backend.models.word import CatalogWord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/words", tags=["words"])


def _level_param(level: str | None) -> Level | None:
    try:
        return Level.parse(level)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown level: {level}") from exc


@router.get("", response_model=WordListResponse)
async def list_words(
    level: str | None = None,
    search: str | None = None,
    sort: Literal["english", "japanese"] = "english",
    order: Literal["asc", "desc"] = "asc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> WordListResponse:
    """List catalog words with filtering, search, sorting and pagination."""
    conditions = []
    parsed_level = _level_param(level)
    if parsed_level is not None:
        conditions.append(CatalogWord.level == parsed_level.value)
    if search:
        pattern = f"%{search.lower()}%"
        conditions.append(
            or_(
                func.lower(CatalogWord.english).like(pattern),
                func.lower(CatalogWord.japanese).like(pattern),
            )
        )

    sort_column = CatalogWord.english if sort == "english" else CatalogWord.japanese
    stmt = (
        select(CatalogWord)
        .where(*conditions)
        .order_by(sort_column.desc() if order == "desc" else sort_column.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    count_stmt = select(func.count(CatalogWord.id)).where(*conditions)

    words = list((await db.execute(stmt)).scalars().all())
    total = (await db.execute(count_stmt)).scalar() or 0

    return WordListResponse(
        words=[WordResponse.model_validate(w) for w in words],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/random", response_model=RandomWordsResponse)
async def random_words(
    level: str | None = None,
    count: int = Query(default=settings.default_session_size, ge=1, le=settings.max_session_size),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RandomWordsResponse:
    """Return a random selection of words, as used to build a session."""
    try:
        batch = await SqlWordPool(session_factory).fetch_words(_level_param(level), count)
    except PoolUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return RandomWordsResponse(
        words=[WordResponse(id=w.id, english=w.english, japanese=w.japanese, level=w.level) for w in batch.words],
        total=batch.total,
    )
