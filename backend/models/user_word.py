"""Per-user study statistics for a catalog word."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class UserWord(Base, TimestampMixin):
    """Running correct/mistake counters for one (user, word) pair."""

    __tablename__ = "user_words"
    __table_args__ = (UniqueConstraint("user_id", "word_id", name="uq_user_words_user_word"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    word_id: Mapped[int] = mapped_column(ForeignKey("words.id"), nullable=False)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mistake_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_studied_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="learning")  # learning, mastered

    user: Mapped["User"] = relationship(back_populates="user_words")  # type: ignore[name-defined] # noqa: F821
    word: Mapped["CatalogWord"] = relationship(back_populates="user_words")  # type: ignore[name-defined] # noqa: F821
