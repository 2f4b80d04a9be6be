"""Declarative base shared by every ORM model."""
from __future__ import annotations

from sqlalchemy.orm import declarative_base

Base = declarative_base()
