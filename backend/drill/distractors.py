"""Answer option generation for quiz questions."""

import random

from backend.drill.types import Word

DEFAULT_DISTRACTORS = 3


def build_options(
    target: Word,
    snapshot: tuple[Word, ...] | list[Word],
    rng: random.Random | None = None,
    distractors: int = DEFAULT_DISTRACTORS,
) -> list[str]:
    """Build a shuffled option list for one question.

    The list holds ``target.japanese`` exactly once plus up to ``distractors``
    distinct wrong translations taken from the other snapshot words. Wrong
    answers that read the same as the correct one are excluded. Small
    snapshots give fewer options rather than padded ones.
    """
    rng = rng or random.Random()
    correct = target.japanese

    wrong: list[str] = []
    seen = {correct}
    for word in snapshot:
        if word.id == target.id or word.japanese in seen:
            continue
        seen.add(word.japanese)
        wrong.append(word.japanese)

    options = [correct, *rng.sample(wrong, min(distractors, len(wrong)))]
    rng.shuffle(options)
    return options
