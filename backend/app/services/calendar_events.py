"""Uniform timed-event view over scheduled tasks and time blocks.

Events are rebuilt from storage rows on every request and never persisted; the
`payload` is a reference to the row that produced the event.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Iterable, List, Literal

from app.services.timeline import MINUTES_PER_DAY, day_bounds, ensure_utc

EventKind = Literal["task", "time_block"]

TASK_PRIORITY_COLORS = (
    (80, "red"),
    (60, "orange"),
    (40, "yellow"),
)
DEFAULT_TASK_COLOR = "blue"

BLOCK_TYPE_COLORS = {
    "work": "blue",
    "personal": "green",
    "focus": "purple",
    "buffer": "gray",
    "meeting": "indigo",
    "break": "teal",
}
DEFAULT_BLOCK_COLOR = "gray"


@dataclass(frozen=True)
class TimedEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    kind: EventKind
    payload: Any

    @property
    def color_hint(self) -> str:
        if self.kind == "task":
            return task_color(getattr(self.payload, "priority_score", None))
        return block_color(getattr(self.payload, "block_type", None))

    @property
    def is_protected(self) -> bool:
        return self.kind == "time_block" and bool(getattr(self.payload, "is_protected", False))


@dataclass(frozen=True)
class EventPosition:
    top_percent: float
    height_percent: float


def task_color(priority_score: int | None) -> str:
    score = priority_score or 0
    for threshold, color in TASK_PRIORITY_COLORS:
        if score >= threshold:
            return color
    return DEFAULT_TASK_COLOR


def block_color(block_type: str | None) -> str:
    return BLOCK_TYPE_COLORS.get(block_type or "", DEFAULT_BLOCK_COLOR)


def tasks_to_events(tasks: Iterable[Any]) -> List[TimedEvent]:
    """Convert task rows; tasks without both schedule timestamps are skipped."""
    return [
        TimedEvent(
            id=str(task.id),
            title=task.title,
            start=ensure_utc(task.scheduled_start),
            end=ensure_utc(task.scheduled_end),
            kind="task",
            payload=task,
        )
        for task in tasks
        if task.scheduled_start is not None and task.scheduled_end is not None
    ]


def time_blocks_to_events(blocks: Iterable[Any]) -> List[TimedEvent]:
    return [
        TimedEvent(
            id=str(block.id),
            title=block.title,
            start=ensure_utc(block.start_time),
            end=ensure_utc(block.end_time),
            kind="time_block",
            payload=block,
        )
        for block in blocks
    ]


def build_events(tasks: Iterable[Any], blocks: Iterable[Any]) -> List[TimedEvent]:
    """Tasks first, then time blocks, each in input order."""
    return tasks_to_events(tasks) + time_blocks_to_events(blocks)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """True iff the open intervals (start_a, end_a) and (start_b, end_b) intersect.

    Shared endpoints do not count, and an empty interval overlaps nothing.
    """
    if start_a >= end_a or start_b >= end_b:
        return False
    return start_a < end_b and start_b < end_a


def events_overlap(a: TimedEvent, b: TimedEvent) -> bool:
    return intervals_overlap(a.start, a.end, b.start, b.end)


def events_for_day(events: Iterable[TimedEvent], day: date, tz: tzinfo = timezone.utc) -> List[TimedEvent]:
    """Events intersecting `day`, including ones that span the whole day."""
    day_start, day_end = day_bounds(day, tz)
    return [event for event in events if event.start < day_end and event.end > day_start]


def event_duration(event: TimedEvent) -> float:
    """Length of the event in minutes."""
    return (event.end - event.start).total_seconds() / 60


def position_within_day(event: TimedEvent, day: date, tz: tzinfo = timezone.utc) -> EventPosition:
    """Vertical placement of `event` in a day column, as percentages of 24h.

    The event is clamped to the day first, so a multi-day event is drawn only
    for the part that falls on `day`. An event that misses `day` gets a
    zero-height position at the nearer edge of the column.
    """
    day_start, day_end = day_bounds(day, tz)
    visible_start = min(max(event.start, day_start), day_end)
    visible_end = min(event.end, day_end)

    start_minutes = (visible_start - day_start).total_seconds() / 60
    visible_minutes = max((visible_end - visible_start).total_seconds() / 60, 0.0)
    return EventPosition(
        top_percent=start_minutes / MINUTES_PER_DAY * 100,
        height_percent=visible_minutes / MINUTES_PER_DAY * 100,
    )


def format_event_time(event: TimedEvent, tz: tzinfo = timezone.utc) -> str:
    """Render the event's span as "HH:MM - HH:MM" in `tz`."""
    return f"{event.start.astimezone(tz):%H:%M} - {event.end.astimezone(tz):%H:%M}"
