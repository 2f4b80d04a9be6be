"""Conflict detection for proposed task and time-block schedules.

The detector only reports. Whether a conflict blocks a save or is returned as a
warning is decided by the calling route.
"""
from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.services.calendar_events import EventKind, TimedEvent, build_events, intervals_overlap
from app.services.calendar_repository import fetch_scheduled_tasks, fetch_time_blocks
from app.services.timeline import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleConflict:
    event_id: str
    kind: EventKind
    title: str
    start: datetime
    end: datetime
    is_protected: bool = False
    block_type: Optional[str] = None
    linked_task_id: Optional[str] = None

    @classmethod
    def from_event(cls, event: TimedEvent) -> "ScheduleConflict":
        return cls(
            event_id=event.id,
            kind=event.kind,
            title=event.title,
            start=event.start,
            end=event.end,
            is_protected=event.is_protected,
            block_type=getattr(event.payload, "block_type", None) if event.kind == "time_block" else None,
            linked_task_id=_linked_task_id(event),
        )


def find_conflicts(
    proposed_start: datetime,
    proposed_end: datetime,
    events: Iterable[TimedEvent],
    exclude_event_id: Optional[str] = None,
) -> List[ScheduleConflict]:
    """Events overlapping the proposed interval, ordered by start time.

    `exclude_event_id` drops the event being edited so it can move without
    colliding with its own current slot.
    """
    start = ensure_utc(proposed_start)
    end = ensure_utc(proposed_end)
    excluded = str(exclude_event_id) if exclude_event_id is not None else None

    overlapping = [
        event
        for event in events
        if event.id != excluded and intervals_overlap(start, end, event.start, event.end)
    ]
    overlapping.sort(key=lambda event: event.start)
    return [ScheduleConflict.from_event(event) for event in overlapping]


def detect_conflicts(
    db: Session,
    user_id: UUID,
    proposed_start: datetime,
    proposed_end: datetime,
    exclude_event_id: Optional[str | UUID] = None,
) -> List[ScheduleConflict]:
    """Compare a proposed interval with the user's stored tasks and time blocks.

    Read-only. Without `lock_user_schedule` held, two concurrent requests can
    both see a free slot and both write.
    """
    if ensure_utc(proposed_start) >= ensure_utc(proposed_end):
        return []

    tasks = fetch_scheduled_tasks(db, user_id, proposed_start, proposed_end)
    blocks = fetch_time_blocks(db, user_id, proposed_start, proposed_end)
    conflicts = find_conflicts(
        proposed_start,
        proposed_end,
        build_events(tasks, blocks),
        exclude_event_id=str(exclude_event_id) if exclude_event_id is not None else None,
    )
    logger.debug(
        "Conflict check for user %s [%s, %s): %d conflict(s)",
        user_id,
        proposed_start.isoformat(),
        proposed_end.isoformat(),
        len(conflicts),
    )
    return conflicts


def is_time_slot_available(
    start: datetime,
    end: datetime,
    events: Iterable[TimedEvent],
    exclude_event_id: Optional[str] = None,
) -> bool:
    return not find_conflicts(start, end, events, exclude_event_id)


def exclude_linked_conflicts(conflicts: Iterable[ScheduleConflict], task_id: Optional[str | UUID]) -> List[ScheduleConflict]:
    """Drop conflicts between a task and the time blocks attached to it.

    A block created for a task may sit on the task's own slot, and the task
    may move inside its own block.
    """
    if task_id is None:
        return list(conflicts)
    linked = str(task_id)
    return [
        conflict
        for conflict in conflicts
        if not (conflict.kind == "task" and conflict.event_id == linked) and conflict.linked_task_id != linked
    ]


def has_protected_conflict(conflicts: Iterable[ScheduleConflict]) -> bool:
    return any(conflict.is_protected for conflict in conflicts)


def lock_user_schedule(db: Session, user_id: UUID) -> bool:
    """Serialize schedule writes for one user until the transaction ends.

    Takes a transaction-scoped PostgreSQL advisory lock. Other dialects have no
    equivalent, so the call is a no-op there and returns False.
    """
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return False
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": schedule_lock_key(user_id)})
    logger.debug("Acquired schedule lock for user %s", user_id)
    return True


def schedule_lock_key(user_id: UUID) -> int:
    """Stable signed 32-bit key for the user's advisory lock."""
    key = zlib.crc32(f"schedule:{user_id}".encode("utf-8"))
    return key - (1 << 32) if key >= (1 << 31) else key


def _linked_task_id(event: TimedEvent) -> Optional[str]:
    if event.kind != "time_block":
        return None
    task_id = getattr(event.payload, "task_id", None)
    return str(task_id) if task_id is not None else None
