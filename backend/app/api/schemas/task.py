"""Schemas for task creation and listing."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.api.schemas.calendar import ConflictPayload
from app.services.timeline import ensure_utc


class TaskCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    goal_id: Optional[UUID] = None
    priority_score: int = Field(default=50, ge=0, le=100)
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be blank")
        return cleaned

    @model_validator(mode="after")
    def validate_schedule(self) -> "TaskCreateRequest":
        if (self.scheduled_start is None) != (self.scheduled_end is None):
            raise ValueError("scheduled_start and scheduled_end must be provided together")
        if self.scheduled_start is not None and ensure_utc(self.scheduled_start) >= ensure_utc(self.scheduled_end):
            raise ValueError("Task schedule must start before it ends")
        return self


class TaskSummary(BaseModel):
    id: UUID
    goal_id: Optional[UUID]
    title: str
    status: str
    priority_score: int
    scheduled_start: Optional[datetime]
    scheduled_end: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class TaskCreateResponse(BaseModel):
    task: TaskSummary
    conflicts: List[ConflictPayload]
    request_id: str


class TaskUpdateRequest(BaseModel):
    user_id: UUID
    completed: bool


class TaskUpdateResponse(BaseModel):
    id: UUID
    status: str
    completed_at: Optional[datetime]
    request_id: str
