"""Storage access for scheduled tasks and time blocks."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import asc
from sqlalchemy.orm import Session

from app.db.models.task import Task
from app.db.models.time_block import TimeBlock
from app.services.timeline import ensure_utc

INACTIVE_TASK_STATUSES = ("cancelled",)
TIME_BLOCK_FIELDS = (
    "title",
    "description",
    "start_time",
    "end_time",
    "block_type",
    "is_protected",
    "task_id",
    "is_recurring",
    "recurrence_rule",
)


def fetch_scheduled_tasks(
    db: Session,
    user_id: UUID,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> List[Task]:
    """Scheduled, non-cancelled tasks whose interval intersects [range_start, range_end)."""
    query = db.query(Task).filter(
        Task.user_id == user_id,
        Task.scheduled_start.isnot(None),
        Task.scheduled_end.isnot(None),
        Task.status.notin_(INACTIVE_TASK_STATUSES),
    )
    if range_end is not None:
        query = query.filter(Task.scheduled_start < ensure_utc(range_end))
    if range_start is not None:
        query = query.filter(Task.scheduled_end > ensure_utc(range_start))
    return query.order_by(asc(Task.scheduled_start), asc(Task.created_at)).all()


def fetch_time_blocks(
    db: Session,
    user_id: UUID,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> List[TimeBlock]:
    """Time blocks whose interval intersects [range_start, range_end)."""
    query = db.query(TimeBlock).filter(TimeBlock.user_id == user_id)
    if range_end is not None:
        query = query.filter(TimeBlock.start_time < ensure_utc(range_end))
    if range_start is not None:
        query = query.filter(TimeBlock.end_time > ensure_utc(range_start))
    return query.order_by(asc(TimeBlock.start_time), asc(TimeBlock.created_at)).all()


def get_user_time_block(db: Session, user_id: UUID, block_id: UUID) -> Optional[TimeBlock]:
    block = db.get(TimeBlock, block_id)
    if block is None or block.user_id != user_id:
        return None
    return block


def persist_time_block(db: Session, user_id: UUID, **fields: Any) -> TimeBlock:
    """Add a new time block to the session and flush it; the caller commits."""
    values = _time_block_values(fields)
    block = TimeBlock(user_id=user_id, **values)
    db.add(block)
    db.flush()
    return block


def update_time_block(db: Session, block: TimeBlock, **fields: Any) -> Dict[str, Any]:
    """Apply `fields` to `block` and return the values that actually changed."""
    changed: Dict[str, Any] = {}
    for name, value in _time_block_values(fields).items():
        current = getattr(block, name)
        if name in ("start_time", "end_time") and current is not None:
            current = ensure_utc(current)
        if current != value:
            setattr(block, name, value)
            changed[name] = value
    db.add(block)
    db.flush()
    return changed


def update_task_schedule(db: Session, task: Task, scheduled_start: datetime, scheduled_end: datetime) -> Task:
    task.scheduled_start = ensure_utc(scheduled_start)
    task.scheduled_end = ensure_utc(scheduled_end)
    db.add(task)
    db.flush()
    return task


def clear_task_schedule(db: Session, task: Task) -> Task:
    task.scheduled_start = None
    task.scheduled_end = None
    db.add(task)
    db.flush()
    return task


def _time_block_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(TIME_BLOCK_FIELDS)
    if unknown:
        raise TypeError(f"Unknown time block fields: {', '.join(sorted(unknown))}")
    values = dict(fields)
    for name in ("start_time", "end_time"):
        if values.get(name) is not None:
            values[name] = ensure_utc(values[name])
    return values
