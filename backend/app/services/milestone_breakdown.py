"""Deterministic milestone schedule for a goal's date span.

A goal is broken down into 12-month, 6-month and 3-month milestones (only when
the goal is at least that long), an always-present 1-month milestone and four
weekly checkpoints for the first month.
"""
from __future__ import annotations

import calendar
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Literal, Optional

PeriodType = Literal["12_month", "6_month", "3_month", "1_month", "weekly"]

PERIOD_TYPES: tuple[PeriodType, ...] = ("12_month", "6_month", "3_month", "1_month", "weekly")

# (period type, months from start, description) for the conditional tiers, coarsest first.
MONTH_TIERS: tuple[tuple[PeriodType, int, str], ...] = (
    ("12_month", 12, "Major milestone at 12 months"),
    ("6_month", 6, "Mid-term checkpoint at 6 months"),
    ("3_month", 3, "Quarter checkpoint at 3 months"),
)
WEEKLY_CHECKPOINTS = 4


class InvalidGoalSpanError(ValueError):
    """Raised when a goal's target date precedes its start date."""


@dataclass
class MilestoneDraft:
    period_type: PeriodType
    title: str
    description: str
    target_date: date
    completion_percentage_target: int
    order_index: int
    key_deliverables: List[str] = field(default_factory=list)


@dataclass
class MilestoneDates:
    month_1: date
    weekly: List[date]
    month_12: Optional[date] = None
    month_6: Optional[date] = None
    month_3: Optional[date] = None


@dataclass
class BreakdownStructure:
    goal_title: str
    start_date: date
    target_date: date
    total_duration_months: int
    milestones: List[MilestoneDraft]


def months_between(start: date, end: date) -> int:
    """Whole calendar months from `start` to `end`, ignoring the day of month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def add_months(day: date, months: int) -> date:
    """Shift `day` by `months`, clamping to the last day of a shorter month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def calculate_milestone_dates(start_date: date, target_date: date) -> MilestoneDates:
    _validate_span(start_date, target_date)
    total_months = months_between(start_date, target_date)
    dates = MilestoneDates(
        month_1=add_months(start_date, 1),
        weekly=[start_date + timedelta(days=7 * week) for week in range(1, WEEKLY_CHECKPOINTS + 1)],
    )
    for _, months, _ in MONTH_TIERS:
        if total_months >= months:
            setattr(dates, f"month_{months}", add_months(start_date, months))
    return dates


def generate_milestone_structure(goal_title: str, start_date: date, target_date: date) -> BreakdownStructure:
    """Build the milestone list for a goal.

    order_index follows emission order (12, 6, 3, 1-month, then weekly), which
    is not chronological; consumers group by tier using this order.
    Key deliverables are left empty for a later enrichment step.
    """
    dates = calculate_milestone_dates(start_date, target_date)
    total_months = months_between(start_date, target_date)
    # Goals shorter than a month still get percentages out of a one-month span.
    divisor = max(total_months, 1)

    milestones: List[MilestoneDraft] = []
    for period_type, months, description in MONTH_TIERS:
        tier_date = getattr(dates, f"month_{months}")
        if tier_date is None:
            continue
        milestones.append(
            MilestoneDraft(
                period_type=period_type,
                title=f"{goal_title} - {months} Month Milestone",
                description=description,
                target_date=tier_date,
                completion_percentage_target=_percent(months, divisor),
                order_index=len(milestones),
            )
        )

    milestones.append(
        MilestoneDraft(
            period_type="1_month",
            title=f"{goal_title} - 1 Month Milestone",
            description="First month checkpoint",
            target_date=dates.month_1,
            completion_percentage_target=_percent(1, divisor),
            order_index=len(milestones),
        )
    )

    for week, week_date in enumerate(dates.weekly, start=1):
        milestones.append(
            MilestoneDraft(
                period_type="weekly",
                title=f"Week {week} Focus",
                description=f"Week {week} objectives",
                target_date=week_date,
                completion_percentage_target=_percent(week, divisor * WEEKLY_CHECKPOINTS),
                order_index=len(milestones),
            )
        )

    return BreakdownStructure(
        goal_title=goal_title,
        start_date=start_date,
        target_date=target_date,
        total_duration_months=total_months,
        milestones=milestones,
    )


def current_period_tier(start_date: date, today: Optional[date] = None) -> PeriodType:
    """Coarsest tier that applies given the months elapsed since `start_date`."""
    elapsed = months_between(start_date, today or date.today())
    if elapsed < 1:
        return "weekly"
    if elapsed < 3:
        return "1_month"
    if elapsed < 6:
        return "3_month"
    if elapsed < 12:
        return "6_month"
    return "12_month"


def time_based_completion(start_date: date, target_date: date, today: Optional[date] = None) -> int:
    """Share of the goal span already elapsed, as an integer percentage in [0, 100]."""
    current = today or date.today()
    total_days = (target_date - start_date).days
    elapsed_days = (current - start_date).days
    if elapsed_days <= 0:
        return 0
    if elapsed_days >= total_days:
        return 100
    return _percent(elapsed_days, total_days)


def _percent(part: int, whole: int) -> int:
    # Half-up, not banker's rounding.
    return int(math.floor(part / whole * 100 + 0.5))


def _validate_span(start_date: date, target_date: date) -> None:
    if target_date < start_date:
        raise InvalidGoalSpanError(
            f"target_date {target_date.isoformat()} is before start_date {start_date.isoformat()}"
        )
