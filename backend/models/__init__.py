"""SQLAlchemy ORM models for the Tango Drill database."""

from backend.models.base import Base
from backend.models.user import User
from backend.models.user_word import UserWord
from backend.models.word import CatalogWord

__all__ = ["Base", "CatalogWord", "User", "UserWord"]
