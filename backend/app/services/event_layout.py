"""Side-by-side column layout for overlapping events in a day column."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timezone, tzinfo
from typing import Iterable, List

from app.services.calendar_events import (
    EventPosition,
    TimedEvent,
    events_for_day,
    position_within_day,
)


@dataclass(frozen=True)
class LaidOutEvent:
    event: TimedEvent
    column: int
    column_count: int

    @property
    def width_percent(self) -> float:
        return 100 / self.column_count

    @property
    def left_percent(self) -> float:
        return self.column * self.width_percent


@dataclass(frozen=True)
class DayLayoutEntry:
    placement: LaidOutEvent
    position: EventPosition


def group_overlapping_events(events: Iterable[TimedEvent]) -> List[List[TimedEvent]]:
    """Split events into chains of overlaps, in start order (stable on ties).

    An event joins the open group when it starts before the group's latest end;
    otherwise it starts a new group. Zero-length events inside a group stay in
    it rather than splitting it. Groups chain transitively: if A overlaps B and
    B overlaps C, all three share a group even when A and C are disjoint. Events in different groups never overlap.
    """
    ordered = sorted(events, key=lambda event: event.start)
    groups: List[List[TimedEvent]] = []
    group_end = None
    for event in ordered:
        if groups and event.start < group_end:
            groups[-1].append(event)
            group_end = max(group_end, event.end)
        else:
            groups.append([event])
            group_end = event.end
    return groups


def layout_overlapping_events(events: Iterable[TimedEvent]) -> List[LaidOutEvent]:
    """Assign each event a column within its overlap group.

    Column is the event's position in the group and column_count the group
    size, so no two events of a group share a column. Columns freed by events
    that already ended are not reused.
    """
    laid_out: List[LaidOutEvent] = []
    for group in group_overlapping_events(events):
        size = len(group)
        laid_out.extend(LaidOutEvent(event=event, column=index, column_count=size) for index, event in enumerate(group))
    return laid_out


def layout_day(events: Iterable[TimedEvent], day: date, tz: tzinfo = timezone.utc) -> List[DayLayoutEntry]:
    """Filter events to `day`, lay them out, and position them vertically."""
    todays = events_for_day(events, day, tz)
    return [
        DayLayoutEntry(placement=placement, position=position_within_day(placement.event, day, tz))
        for placement in layout_overlapping_events(todays)
    ]
