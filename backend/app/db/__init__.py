"""Database base class and the scheduling models registered on it."""

from app.db.base import Base
from app.db import models  # noqa: F401  (registers tables on Base.metadata)

__all__ = ["Base"]
