from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Keeps datetimes naive so they stay compatible with SQLite (which
    doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Tango Drill"
    database_url: str = f"sqlite+aiosqlite:///{_DATA_DIR / 'tango_drill.db'}"
    quiz_item_units: int = 10
    flash_item_units: int = 5
    grace_units: int = 1
    quiz_feedback_units: int = 2
    timer_unit_seconds: float = 1.0
    default_session_size: int = 10
    max_session_size: int = 100
    flash_progress_path: Path = _DATA_DIR / "flashcard_progress.json"
    pool_fetch_attempts: int = 3
    debug: bool = False

    model_config = {"env_prefix": "TANGO_DRILL_", "env_file": ".env"}


settings = Settings()
