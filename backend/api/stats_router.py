"""API routes for user study statistics."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.api.schemas import LevelStats, UserStatsResponse, UserWordResponse, WordResponse
from backend.database import get_session
from backend.drill.types import accuracy_percent
from backend.models.user_word import UserWord
from backend.models.word import CatalogWord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])

RECENT_LIMIT = 100


@router.get("/{user_id}", response_model=UserStatsResponse)
async def get_user_stats(
    user_id: int,
    db: AsyncSession = Depends(get_session),
) -> UserStatsResponse:
    """Get study totals, per-level breakdown and recent history for a user."""
    # Per-level totals
    level_stmt = (
        select(
            CatalogWord.level,
            func.count(UserWord.id),
            func.coalesce(func.sum(UserWord.correct_count), 0),
            func.coalesce(func.sum(UserWord.mistake_count), 0),
        )
        .join(CatalogWord, UserWord.word_id == CatalogWord.id)
        .where(UserWord.user_id == user_id)
        .group_by(CatalogWord.level)
        .order_by(CatalogWord.level)
    )
    levels: dict[str, LevelStats] = {}
    for level, words, correct, mistakes in (await db.execute(level_stmt)).all():
        levels[level] = LevelStats(
            words=words,
            correct=correct,
            mistakes=mistakes,
            accuracy_percent=accuracy_percent(correct, correct + mistakes),
        )

    total_words = sum(s.words for s in levels.values())
    total_correct = sum(s.correct for s in levels.values())
    total_mistakes = sum(s.mistakes for s in levels.values())

    # Most recently studied words
    recent_stmt = (
        select(UserWord)
        .where(UserWord.user_id == user_id)
        .order_by(UserWord.last_studied_at.desc())
        .limit(RECENT_LIMIT)
        .options(selectinload(UserWord.word))
    )
    recent = list((await db.execute(recent_stmt)).scalars().all())

    return UserStatsResponse(
        total_words=total_words,
        total_correct=total_correct,
        total_mistakes=total_mistakes,
        accuracy_percent=accuracy_percent(total_correct, total_correct + total_mistakes),
        levels=levels,
        recent=[
            UserWordResponse(
                word=WordResponse.model_validate(uw.word),
                status=uw.status,
                correct_count=uw.correct_count,
                mistake_count=uw.mistake_count,
                last_studied_at=uw.last_studied_at,
            )
            for uw in recent
        ],
    )
