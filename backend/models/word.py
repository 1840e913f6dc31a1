"""Catalog word model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class CatalogWord(Base, TimestampMixin):
    """One English/Japanese pair in the shared word catalog."""

    __tablename__ = "words"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    english: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    japanese: Mapped[str] = mapped_column(String(500), nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # L1, L2, L3

    user_words: Mapped[list["UserWord"]] = relationship(back_populates="word")  # type: ignore[name-defined] # noqa: F821
