"""Helpers for working with users."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models.user import User

logger = logging.getLogger(__name__)


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Return the local row for an identity-provider user, creating it on first sight."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id)
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Another request inserted the same id first.
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise
    logger.debug("Created local user row %s", user_id)
    return user
