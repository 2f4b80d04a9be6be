"""Calendar API routes: event feed, grid ranges, time blocks and task scheduling."""
from __future__ import annotations

from datetime import date, timezone
from time import perf_counter
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.schemas.calendar import (
    CalendarEventPayload,
    CalendarEventsResponse,
    CalendarGridResponse,
    ConflictCheckRequest,
    ConflictCheckResponse,
    ConflictPayload,
    DayLayout,
    EventPlacement,
    TaskSchedulePayload,
    TaskScheduleRequest,
    TaskScheduleResponse,
    TimeBlockCreateRequest,
    TimeBlockDeleteResponse,
    TimeBlockPayload,
    TimeBlockResponse,
    TimeBlockUpdateRequest,
)
from app.core.config import settings
from app.db.deps import get_db
from app.db.models.schedule_action_log import ScheduleActionLog
from app.db.models.task import Task
from app.db.models.time_block import TimeBlock
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.calendar_events import (
    TimedEvent,
    build_events,
    event_duration,
    format_event_time,
)
from app.services.calendar_repository import (
    clear_task_schedule,
    fetch_scheduled_tasks,
    fetch_time_blocks,
    get_user_time_block,
    persist_time_block,
    update_task_schedule,
    update_time_block,
)
from app.services.conflict_detector import (
    ScheduleConflict,
    detect_conflicts,
    exclude_linked_conflicts,
    has_protected_conflict,
    lock_user_schedule,
)
from app.services.event_layout import layout_day
from app.services.timeline import day_bounds, ensure_utc, hour_slots, month_grid_days, month_range, week_range
from app.services.user_service import get_or_create_user

router = APIRouter()

MAX_RANGE_DAYS = 62


@router.get("/calendar/events", response_model=CalendarEventsResponse, tags=["calendar"])
def list_calendar_events(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the events"),
    start: date = Query(..., description="First calendar day (inclusive)"),
    end: date = Query(..., description="Last calendar day (inclusive)"),
    db: Session = Depends(get_db),
) -> CalendarEventsResponse:
    """Return the user's events in [start, end] plus a column layout for each day."""
    if end < start:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="end must not be before start")
    if (end - start).days + 1 > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Range must cover at most {MAX_RANGE_DAYS} days",
        )

    request_id = getattr(http_request.state, "request_id", None)
    tz = _calendar_tz()
    range_start = day_bounds(start, tz)[0]
    range_end = day_bounds(end, tz)[1]
    start_time = perf_counter()

    with trace(
        "calendar.events",
        metadata={
            "route": "/calendar/events",
            "start": start.isoformat(),
            "end": end.isoformat(),
        },
        user_id=str(user_id),
        request_id=request_id,
    ):
        tasks = fetch_scheduled_tasks(db, user_id, range_start, range_end)
        blocks = fetch_time_blocks(db, user_id, range_start, range_end)
        events = build_events(tasks, blocks)

        days: List[DayLayout] = []
        for offset in range((end - start).days + 1):
            day = date.fromordinal(start.toordinal() + offset)
            placements = [
                EventPlacement(
                    event_id=entry.placement.event.id,
                    column=entry.placement.column,
                    column_count=entry.placement.column_count,
                    left_percent=entry.placement.left_percent,
                    width_percent=entry.placement.width_percent,
                    top_percent=entry.position.top_percent,
                    height_percent=entry.position.height_percent,
                )
                for entry in layout_day(events, day, tz)
            ]
            days.append(DayLayout(day=day, placements=placements))

    latency_ms = (perf_counter() - start_time) * 1000
    log_metric("calendar.events.count", len(events), metadata={"user_id": str(user_id)})
    log_metric("calendar.events.latency_ms", latency_ms, metadata={"user_id": str(user_id)})

    return CalendarEventsResponse(
        user_id=user_id,
        start=start,
        end=end,
        events=[_serialize_event(event, tz) for event in events],
        days=days,
        request_id=request_id or "",
    )


@router.get("/calendar/grid", response_model=CalendarGridResponse, tags=["calendar"])
def get_calendar_grid(
    day: date = Query(..., alias="date"),
    view: str = Query("week", pattern="^(week|month)$"),
) -> CalendarGridResponse:
    """Day cells and hour rows for a week or month view around `date`."""
    if view == "month":
        span = month_range(day)
        days = month_grid_days(day, settings.week_starts_on)
    else:
        span = week_range(day, settings.week_starts_on)
        days = span.days()
    return CalendarGridResponse(view=view, start=span.start, end=span.end, days=days, hour_slots=hour_slots())


@router.post("/calendar/conflicts", response_model=ConflictCheckResponse, tags=["calendar"])
def check_conflicts(
    payload: ConflictCheckRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> ConflictCheckResponse:
    """Report what a proposed interval would collide with, without writing anything."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "calendar.conflicts.check",
        metadata={"route": "/calendar/conflicts", "exclude_event_id": payload.exclude_event_id},
        user_id=str(payload.user_id),
        request_id=request_id,
    ):
        conflicts = detect_conflicts(
            db,
            payload.user_id,
            payload.start,
            payload.end,
            exclude_event_id=payload.exclude_event_id,
        )

    log_metric("calendar.conflicts.found", len(conflicts), metadata={"user_id": str(payload.user_id)})
    return ConflictCheckResponse(
        available=not conflicts,
        has_protected_conflict=has_protected_conflict(conflicts),
        conflicts=serialize_conflicts(conflicts),
        request_id=request_id or "",
    )


@router.get("/calendar/time-blocks", response_model=List[TimeBlockPayload], tags=["calendar"])
def list_time_blocks(
    user_id: UUID = Query(...),
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> List[TimeBlockPayload]:
    tz = _calendar_tz()
    range_start = day_bounds(start, tz)[0] if start else None
    range_end = day_bounds(end, tz)[1] if end else None
    blocks = fetch_time_blocks(db, user_id, range_start, range_end)
    return [_serialize_block(block) for block in blocks]


@router.post(
    "/calendar/time-blocks",
    response_model=TimeBlockResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["calendar"],
)
def create_time_block(
    payload: TimeBlockCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TimeBlockResponse:
    """Create a time block unless it overlaps anything already on the calendar."""
    request_id = getattr(http_request.state, "request_id", None)
    user_id = payload.user_id
    metadata: Dict[str, Any] = {
        "route": "/calendar/time-blocks",
        "block_type": payload.block_type,
        "is_protected": payload.is_protected,
        "request_id": request_id,
    }

    conflicts: List[ScheduleConflict] = []
    block: TimeBlock | None = None
    try:
        with trace("calendar.time_block.create", metadata=metadata, user_id=str(user_id), request_id=request_id):
            get_or_create_user(db, user_id)
            if payload.task_id is not None:
                _require_user_task(db, user_id, payload.task_id)
            lock_user_schedule(db, user_id)
            conflicts = exclude_linked_conflicts(
                detect_conflicts(db, user_id, payload.start_time, payload.end_time),
                payload.task_id,
            )
            if conflicts:
                raise conflict_error("Time block conflicts with existing events", conflicts)

            block = persist_time_block(
                db,
                user_id,
                title=payload.title,
                description=payload.description,
                start_time=payload.start_time,
                end_time=payload.end_time,
                block_type=payload.block_type,
                is_protected=payload.is_protected,
                task_id=payload.task_id,
                is_recurring=payload.is_recurring,
                recurrence_rule=payload.recurrence_rule,
            )
            _log_action(
                db,
                user_id,
                "time_block_created",
                {
                    "time_block_id": str(block.id),
                    "start_time": ensure_utc(block.start_time).isoformat(),
                    "end_time": ensure_utc(block.end_time).isoformat(),
                    "is_protected": bool(block.is_protected),
                    "request_id": request_id,
                },
                reason="Time block created",
            )
            db.commit()
            db.refresh(block)
    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save time block") from exc
    except Exception:
        db.rollback()
        raise
    finally:
        log_metric("calendar.time_block.create.conflicts", len(conflicts), metadata={"user_id": str(user_id)})

    log_metric("calendar.time_block.create.success", 1, metadata={"user_id": str(user_id)})
    return TimeBlockResponse(time_block=_serialize_block(block), request_id=request_id or "")


@router.patch("/calendar/time-blocks/{block_id}", response_model=TimeBlockResponse, tags=["calendar"])
def update_time_block_endpoint(
    block_id: UUID,
    payload: TimeBlockUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TimeBlockResponse:
    """Edit a time block; moving it re-runs conflict detection against everything else."""
    block = get_user_time_block(db, payload.user_id, block_id)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Time block not found")

    request_id = getattr(http_request.state, "request_id", None)
    fields = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    fields = {name: value for name, value in fields.items() if value is not None or name in ("description", "recurrence_rule")}

    new_start = fields.get("start_time", block.start_time)
    new_end = fields.get("end_time", block.end_time)
    if ensure_utc(new_start) >= ensure_utc(new_end):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Time block must start before it ends")

    moved = "start_time" in fields or "end_time" in fields
    try:
        with trace(
            "calendar.time_block.update",
            metadata={"route": f"/calendar/time-blocks/{block_id}", "moved": moved, "request_id": request_id},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            if moved:
                lock_user_schedule(db, payload.user_id)
                conflicts = exclude_linked_conflicts(
                    detect_conflicts(db, payload.user_id, new_start, new_end, exclude_event_id=block.id),
                    block.task_id,
                )
                if conflicts:
                    raise conflict_error("Time block conflicts with existing events", conflicts)

            changed = update_time_block(db, block, **fields)
            if changed:
                _log_action(
                    db,
                    payload.user_id,
                    "time_block_updated",
                    {
                        "time_block_id": str(block.id),
                        "fields": sorted(changed),
                        "request_id": request_id,
                    },
                    reason="Time block updated",
                )
            db.commit()
            db.refresh(block)
    except HTTPException:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        raise

    log_metric("calendar.time_block.update.success", 1, metadata={"user_id": str(payload.user_id)})
    return TimeBlockResponse(time_block=_serialize_block(block), request_id=request_id or "")


@router.delete("/calendar/time-blocks/{block_id}", response_model=TimeBlockDeleteResponse, tags=["calendar"])
def delete_time_block(
    block_id: UUID,
    http_request: Request,
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> TimeBlockDeleteResponse:
    block = get_user_time_block(db, user_id, block_id)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Time block not found")

    request_id = getattr(http_request.state, "request_id", None)
    try:
        with trace(
            "calendar.time_block.delete",
            metadata={"route": f"/calendar/time-blocks/{block_id}"},
            user_id=str(user_id),
            request_id=request_id,
        ):
            _log_action(
                db,
                user_id,
                "time_block_deleted",
                {
                    "time_block_id": str(block.id),
                    "title": block.title,
                    "start_time": ensure_utc(block.start_time).isoformat(),
                    "end_time": ensure_utc(block.end_time).isoformat(),
                    "request_id": request_id,
                },
                reason="Time block deleted",
            )
            db.delete(block)
            db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("calendar.time_block.delete.success", 1, metadata={"user_id": str(user_id)})
    return TimeBlockDeleteResponse(id=block_id, deleted=True, request_id=request_id or "")


@router.patch("/calendar/tasks/{task_id}/schedule", response_model=TaskScheduleResponse, tags=["calendar"])
def schedule_task(
    task_id: UUID,
    payload: TaskScheduleRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskScheduleResponse:
    """Place a task on the calendar.

    Overlapping a protected time block rejects the change; any other overlap is
    saved and returned as a warning.
    """
    task = _require_user_task(db, payload.user_id, task_id)
    request_id = getattr(http_request.state, "request_id", None)

    conflicts: List[ScheduleConflict] = []
    try:
        with trace(
            "calendar.task.schedule",
            metadata={"route": f"/calendar/tasks/{task_id}/schedule", "request_id": request_id},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            lock_user_schedule(db, payload.user_id)
            conflicts = exclude_linked_conflicts(
                detect_conflicts(
                    db,
                    payload.user_id,
                    payload.scheduled_start,
                    payload.scheduled_end,
                    exclude_event_id=task.id,
                ),
                task.id,
            )
            if has_protected_conflict(conflicts):
                raise conflict_error("Task overlaps a protected time block", conflicts)

            update_task_schedule(db, task, payload.scheduled_start, payload.scheduled_end)
            _log_action(
                db,
                payload.user_id,
                "task_scheduled",
                {
                    "task_id": str(task.id),
                    "scheduled_start": ensure_utc(payload.scheduled_start).isoformat(),
                    "scheduled_end": ensure_utc(payload.scheduled_end).isoformat(),
                    "conflicts": [conflict.event_id for conflict in conflicts],
                    "request_id": request_id,
                },
                reason="Task scheduled",
            )
            db.commit()
            db.refresh(task)
    except HTTPException:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        raise
    finally:
        log_metric("calendar.task.schedule.conflicts", len(conflicts), metadata={"task_id": str(task_id)})

    return TaskScheduleResponse(
        task=serialize_task_schedule(task),
        conflicts=serialize_conflicts(conflicts),
        request_id=request_id or "",
    )


@router.delete("/calendar/tasks/{task_id}/schedule", response_model=TaskScheduleResponse, tags=["calendar"])
def unschedule_task(
    task_id: UUID,
    http_request: Request,
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> TaskScheduleResponse:
    task = _require_user_task(db, user_id, task_id)
    request_id = getattr(http_request.state, "request_id", None)
    try:
        with trace(
            "calendar.task.unschedule",
            metadata={"route": f"/calendar/tasks/{task_id}/schedule"},
            user_id=str(user_id),
            request_id=request_id,
        ):
            was_scheduled = task.scheduled_start is not None
            clear_task_schedule(db, task)
            if was_scheduled:
                _log_action(
                    db,
                    user_id,
                    "task_unscheduled",
                    {"task_id": str(task.id), "request_id": request_id},
                    reason="Task removed from calendar",
                )
            db.commit()
            db.refresh(task)
    except Exception:
        db.rollback()
        raise

    return TaskScheduleResponse(task=serialize_task_schedule(task), conflicts=[], request_id=request_id or "")


def serialize_conflicts(conflicts: Iterable[ScheduleConflict]) -> List[ConflictPayload]:
    return [
        ConflictPayload(
            event_id=conflict.event_id,
            kind=conflict.kind,
            title=conflict.title,
            start=conflict.start,
            end=conflict.end,
            is_protected=conflict.is_protected,
            block_type=conflict.block_type,
        )
        for conflict in conflicts
    ]


def serialize_task_schedule(task: Task) -> TaskSchedulePayload:
    return TaskSchedulePayload(
        id=task.id,
        title=task.title,
        status=task.status,
        priority_score=task.priority_score,
        scheduled_start=ensure_utc(task.scheduled_start) if task.scheduled_start else None,
        scheduled_end=ensure_utc(task.scheduled_end) if task.scheduled_end else None,
    )


def conflict_error(message: str, conflicts: Iterable[ScheduleConflict]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": message,
            "conflicts": [entry.model_dump(mode="json") for entry in serialize_conflicts(conflicts)],
        },
    )


def _require_user_task(db: Session, user_id: UUID, task_id: UUID) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    if task.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task does not belong to user")
    return task


def _log_action(
    db: Session,
    user_id: UUID,
    action_type: str,
    payload: Dict[str, Any],
    *,
    reason: str,
) -> None:
    db.add(
        ScheduleActionLog(
            user_id=user_id,
            action_type=action_type,
            action_payload=payload,
            reason=reason,
            undo_available=True,
        )
    )


def _calendar_tz():
    if settings.calendar_timezone.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(settings.calendar_timezone)


def _serialize_event(event: TimedEvent, tz) -> CalendarEventPayload:
    payload = event.payload
    return CalendarEventPayload(
        id=event.id,
        kind=event.kind,
        title=event.title,
        start=event.start,
        end=event.end,
        color_hint=event.color_hint,
        duration_minutes=event_duration(event),
        time_label=format_event_time(event, tz),
        is_protected=event.is_protected,
        block_type=getattr(payload, "block_type", None) if event.kind == "time_block" else None,
        priority_score=getattr(payload, "priority_score", None) if event.kind == "task" else None,
        status=getattr(payload, "status", None) if event.kind == "task" else None,
    )


def _serialize_block(block: TimeBlock) -> TimeBlockPayload:
    return TimeBlockPayload(
        id=block.id,
        user_id=block.user_id,
        task_id=block.task_id,
        title=block.title,
        description=block.description,
        start_time=ensure_utc(block.start_time),
        end_time=ensure_utc(block.end_time),
        block_type=block.block_type,
        is_protected=bool(block.is_protected),
        is_recurring=bool(block.is_recurring),
        recurrence_rule=block.recurrence_rule,
    )
