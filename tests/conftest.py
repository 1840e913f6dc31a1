import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

# Point the app at a throwaway database before anything imports backend.config
_TMP_DIR = Path(tempfile.mkdtemp(prefix="tango_drill_tests_"))
os.environ.setdefault("TANGO_DRILL_DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}")
os.environ.setdefault("TANGO_DRILL_FLASH_PROGRESS_PATH", str(_TMP_DIR / "flashcard_progress.json"))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.drill.types import Level, Word  # noqa: E402
from backend.models import Base, CatalogWord, User  # noqa: E402

WORDS = [
    ("apple", "りんご", "L1"),
    ("book", "本", "L1"),
    ("cat", "猫", "L1"),
    ("dog", "犬", "L1"),
    ("river", "川", "L2"),
    ("mountain", "山", "L2"),
    ("library", "図書館", "L3"),
]


@pytest.fixture
def words() -> list[Word]:
    return [
        Word(id=i, english=english, japanese=japanese, level=Level(level))
        for i, (english, japanese, level) in enumerate(WORDS, 1)
    ]


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Empty in-memory database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> async_sessionmaker[AsyncSession]:
    """In-memory database with the catalog words and one user (id=1)."""
    async with session_factory() as db:
        db.add(User(name="Learner"))
        for english, japanese, level in WORDS:
            db.add(CatalogWord(english=english, japanese=japanese, level=level))
        await db.commit()
    return session_factory
