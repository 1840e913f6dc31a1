"""Draws the session word list from a pool."""

import logging
import random

from backend.drill.types import Word

logger = logging.getLogger(__name__)


def sample_words(pool: list[Word], size: int, rng: random.Random | None = None) -> list[Word]:
    """Return ``min(size, len(pool))`` distinct words in random order.

    Words are distinct by id; repeated ids in the pool count once.
    An empty pool yields an empty list.
    """
    rng = rng or random.Random()
    unique: dict[int, Word] = {}
    for word in pool:
        unique.setdefault(word.id, word)

    if len(unique) < len(pool):
        logger.debug("Collapsed %d duplicate pool entries", len(pool) - len(unique))

    candidates = list(unique.values())
    return rng.sample(candidates, min(max(size, 0), len(candidates)))
