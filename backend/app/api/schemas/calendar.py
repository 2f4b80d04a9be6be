"""Schemas for calendar events, time blocks and task scheduling."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.services.timeline import ensure_utc

BlockType = Literal["work", "personal", "focus", "buffer", "meeting", "break"]
EventKindLiteral = Literal["task", "time_block"]


def _check_interval(start: Optional[datetime], end: Optional[datetime], label: str) -> None:
    if start is not None and end is not None and ensure_utc(start) >= ensure_utc(end):
        raise ValueError(f"{label} must start before it ends")


class ConflictPayload(BaseModel):
    event_id: str
    kind: EventKindLiteral
    title: str
    start: datetime
    end: datetime
    is_protected: bool
    block_type: Optional[str] = None


class ConflictCheckRequest(BaseModel):
    user_id: UUID
    start: datetime
    end: datetime
    exclude_event_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_interval(self) -> "ConflictCheckRequest":
        _check_interval(self.start, self.end, "Proposed interval")
        return self


class ConflictCheckResponse(BaseModel):
    available: bool
    has_protected_conflict: bool
    conflicts: List[ConflictPayload]
    request_id: str


class CalendarEventPayload(BaseModel):
    id: str
    kind: EventKindLiteral
    title: str
    start: datetime
    end: datetime
    color_hint: str
    duration_minutes: float
    time_label: str
    is_protected: bool = False
    block_type: Optional[str] = None
    priority_score: Optional[int] = None
    status: Optional[str] = None


class EventPlacement(BaseModel):
    event_id: str
    column: int
    column_count: int
    left_percent: float
    width_percent: float
    top_percent: float
    height_percent: float


class DayLayout(BaseModel):
    day: date
    placements: List[EventPlacement]


class CalendarEventsResponse(BaseModel):
    user_id: UUID
    start: date
    end: date
    events: List[CalendarEventPayload]
    days: List[DayLayout]
    request_id: str


class CalendarGridResponse(BaseModel):
    view: Literal["week", "month"]
    start: date
    end: date
    days: List[date]
    hour_slots: List[str]


class TimeBlockCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_time: datetime
    end_time: datetime
    block_type: BlockType = "work"
    is_protected: bool = False
    task_id: Optional[UUID] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be blank")
        return cleaned

    @model_validator(mode="after")
    def validate_interval(self) -> "TimeBlockCreateRequest":
        _check_interval(self.start_time, self.end_time, "Time block")
        return self


class TimeBlockUpdateRequest(BaseModel):
    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    block_type: Optional[BlockType] = None
    is_protected: Optional[bool] = None
    is_recurring: Optional[bool] = None
    recurrence_rule: Optional[str] = None

    @model_validator(mode="after")
    def validate_interval(self) -> "TimeBlockUpdateRequest":
        _check_interval(self.start_time, self.end_time, "Time block")
        return self


class TimeBlockPayload(BaseModel):
    id: UUID
    user_id: UUID
    task_id: Optional[UUID]
    title: str
    description: Optional[str]
    start_time: datetime
    end_time: datetime
    block_type: str
    is_protected: bool
    is_recurring: bool
    recurrence_rule: Optional[str]


class TimeBlockResponse(BaseModel):
    time_block: TimeBlockPayload
    request_id: str


class TimeBlockDeleteResponse(BaseModel):
    id: UUID
    deleted: bool
    request_id: str


class TaskScheduleRequest(BaseModel):
    user_id: UUID
    scheduled_start: datetime
    scheduled_end: datetime

    @model_validator(mode="after")
    def validate_interval(self) -> "TaskScheduleRequest":
        _check_interval(self.scheduled_start, self.scheduled_end, "Task schedule")
        return self


class TaskSchedulePayload(BaseModel):
    id: UUID
    title: str
    status: str
    priority_score: int
    scheduled_start: Optional[datetime]
    scheduled_end: Optional[datetime]


class TaskScheduleResponse(BaseModel):
    task: TaskSchedulePayload
    conflicts: List[ConflictPayload]
    request_id: str
