"""Schemas for goals and their milestone breakdowns."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

PeriodTypeLiteral = Literal["12_month", "6_month", "3_month", "1_month", "weekly"]


class GoalCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[date] = None
    target_date: date
    enrich: bool = False

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) < 3:
            raise ValueError("title must be at least 3 characters after trimming")
        return cleaned


class GoalUpdateRequest(BaseModel):
    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    status: Optional[Literal["active", "paused", "completed", "archived"]] = None


class BreakdownRequest(BaseModel):
    user_id: UUID
    enrich: bool = False


class MilestoneUpdateRequest(BaseModel):
    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    target_date: Optional[date] = None
    order_index: Optional[int] = Field(default=None, ge=0)
    completed: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be blank")
        return cleaned

    @field_validator("description")
    @classmethod
    def blank_description_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip() or None


class MilestonePayload(BaseModel):
    id: UUID
    period_type: PeriodTypeLiteral
    title: str
    description: Optional[str]
    target_date: date
    completion_percentage_target: int
    key_deliverables: List[str]
    order_index: int
    completed: bool
    completed_at: Optional[datetime] = None


class MilestoneUpdateResponse(BaseModel):
    goal_id: UUID
    milestone: MilestonePayload
    request_id: str


class GoalPayload(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: Optional[str]
    start_date: date
    target_date: date
    status: str


class GoalBreakdownResponse(BaseModel):
    goal: GoalPayload
    total_duration_months: int
    current_tier: PeriodTypeLiteral
    time_based_completion: int
    milestones: List[MilestonePayload]
    regenerated: bool
    request_id: str
