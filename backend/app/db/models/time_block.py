"""TimeBlock ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base

BLOCK_TYPES = ("work", "personal", "focus", "buffer", "meeting", "break")


class TimeBlock(Base):
    __tablename__ = "time_blocks"
    __table_args__ = (
        Index("ix_time_blocks_user_id", "user_id"),
        Index("ix_time_blocks_user_range", "user_id", "start_time", "end_time"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    block_type = Column(String(length=20), nullable=False, server_default=sa_text("'work'"))
    is_protected = Column(Boolean, nullable=False, server_default=sa_text("false"))
    is_recurring = Column(Boolean, nullable=False, server_default=sa_text("false"))
    recurrence_rule = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
