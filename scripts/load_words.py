"""Load catalog words from a JSON file into the database.

The file holds a list of ``{"english": ..., "japanese": ..., "level": ...}``
objects. Words are keyed by their normalized English spelling, so the
script is safe to re-run after editing the file.

Usage:
    python -m scripts.load_words data/words.json
    python -m scripts.load_words data/words.json -v
"""

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.database import async_session, init_models
from backend.drill.types import Level
from backend.models.word import CatalogWord

logger = logging.getLogger(__name__)


@dataclass
class LoadReport:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


def normalize_entry(entry: dict) -> tuple[str, str, Level] | None:
    """Normalize one raw entry. Returns None when a field is blank.

    Raises ValueError for an unknown level.
    """
    english = str(entry.get("english") or "").strip().lower()
    japanese = str(entry.get("japanese") or "").strip()
    raw_level = str(entry.get("level") or "").strip()
    if not english or not japanese or not raw_level:
        return None

    level = Level.parse(raw_level)
    if level is None:
        raise ValueError(f"a concrete level is required, got {raw_level!r}")
    return english, japanese, level


async def load_words(
    entries: list[dict],
    session_factory: async_sessionmaker[AsyncSession] = async_session,
) -> LoadReport:
    """Insert new words and update changed ones."""
    report = LoadReport()

    async with session_factory() as session:
        for entry in entries:
            try:
                normalized = normalize_entry(entry)
            except ValueError as exc:
                logger.error("✗ %s: %s", entry.get("english"), exc)
                report.errors += 1
                continue
            if normalized is None:
                report.skipped += 1
                continue

            english, japanese, level = normalized
            stmt = select(CatalogWord).where(CatalogWord.english == english)
            existing = (await session.execute(stmt)).scalar_one_or_none()
            if existing is None:
                session.add(CatalogWord(english=english, japanese=japanese, level=level.value))
                # Later duplicates in the same file must see this row
                await session.flush()
                report.created += 1
            elif existing.japanese != japanese or existing.level != level.value:
                existing.japanese = japanese
                existing.level = level.value
                report.updated += 1
            else:
                logger.debug("Unchanged: %s", english)
                report.skipped += 1

        await session.commit()

    logger.info(
        "Loaded words: %d created, %d updated, %d skipped, %d errors",
        report.created,
        report.updated,
        report.skipped,
        report.errors,
    )
    return report


async def level_counts(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
) -> dict[str, int]:
    """Number of catalog words per level."""
    async with session_factory() as session:
        stmt = (
            select(CatalogWord.level, func.count(CatalogWord.id))
            .group_by(CatalogWord.level)
            .order_by(CatalogWord.level)
        )
        return {level: count for level, count in (await session.execute(stmt)).all()}


async def main_async(args: argparse.Namespace) -> None:
    await init_models()

    entries = json.loads(args.words.read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        logger.error("%s must contain a JSON list of words", args.words)
        raise SystemExit(1)
    logger.info("Read %d entries from %s", len(entries), args.words)

    report = await load_words(entries)

    print("\nImport complete:")
    print(f"  created: {report.created}")
    print(f"  updated: {report.updated}")
    print(f"  skipped: {report.skipped}")
    print(f"  errors:  {report.errors}")

    print("\nWords per level:")
    for level, count in (await level_counts()).items():
        print(f"  {level}: {count}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Load catalog words into the database")
    parser.add_argument("words", type=Path, help="Path to a JSON list of words")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.words.exists():
        logger.error("%s not found", args.words)
        raise SystemExit(1)

    asyncio.run(main_async(args))
    print("Done.")


if __name__ == "__main__":
    main()
