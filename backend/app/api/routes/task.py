"""Task API routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import asc, nulls_last
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.routes.calendar import conflict_error, serialize_conflicts
from app.api.schemas.task import (
    TaskCreateRequest,
    TaskCreateResponse,
    TaskSummary,
    TaskUpdateRequest,
    TaskUpdateResponse,
)
from app.db.deps import get_db
from app.db.models.goal import Goal
from app.db.models.schedule_action_log import ScheduleActionLog
from app.db.models.task import Task
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.conflict_detector import (
    ScheduleConflict,
    detect_conflicts,
    has_protected_conflict,
    lock_user_schedule,
)
from app.services.timeline import ensure_utc
from app.services.user_service import get_or_create_user

router = APIRouter()


@router.get("/tasks", response_model=List[TaskSummary], tags=["tasks"])
def list_tasks(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the tasks"),
    status_filter: str = Query("open", alias="status", pattern="^(open|scheduled|unscheduled|all)$"),
    goal_id: Optional[UUID] = Query(default=None),
    db: Session = Depends(get_db),
) -> List[TaskSummary]:
    """List a user's tasks, scheduled ones first in calendar order."""
    request_id = getattr(http_request.state, "request_id", None)

    with trace(
        "task.list",
        metadata={"route": "/tasks", "status": status_filter, "goal_id": str(goal_id) if goal_id else None},
        user_id=str(user_id),
        request_id=request_id,
    ):
        query = db.query(Task).filter(Task.user_id == user_id)
        if goal_id is not None:
            query = query.filter(Task.goal_id == goal_id)
        if status_filter == "open":
            query = query.filter(Task.status.notin_(("completed", "cancelled")))
        elif status_filter == "scheduled":
            query = query.filter(Task.scheduled_start.isnot(None), Task.scheduled_end.isnot(None))
        elif status_filter == "unscheduled":
            query = query.filter(Task.scheduled_start.is_(None))

        tasks = query.order_by(
            nulls_last(asc(Task.scheduled_start)),
            asc(Task.created_at),
        ).all()

    log_metric("task.list.count", len(tasks), metadata={"user_id": str(user_id), "status": status_filter})
    return [_serialize_task(task) for task in tasks]


@router.post("/tasks", response_model=TaskCreateResponse, status_code=status.HTTP_201_CREATED, tags=["tasks"])
def create_task(
    payload: TaskCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskCreateResponse:
    """Create a task, optionally already placed on the calendar.

    A schedule overlapping a protected time block is rejected; other overlaps
    are saved and reported back.
    """
    request_id = getattr(http_request.state, "request_id", None)
    user_id = payload.user_id
    scheduled = payload.scheduled_start is not None

    conflicts: List[ScheduleConflict] = []
    task: Task | None = None
    try:
        with trace(
            "task.create",
            metadata={"route": "/tasks", "scheduled": scheduled, "priority_score": payload.priority_score},
            user_id=str(user_id),
            request_id=request_id,
        ):
            get_or_create_user(db, user_id)
            if payload.goal_id is not None:
                goal = db.get(Goal, payload.goal_id)
                if not goal or goal.user_id != user_id:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

            if scheduled:
                lock_user_schedule(db, user_id)
                conflicts = detect_conflicts(db, user_id, payload.scheduled_start, payload.scheduled_end)
                if has_protected_conflict(conflicts):
                    raise conflict_error("Task overlaps a protected time block", conflicts)

            task = Task(
                user_id=user_id,
                goal_id=payload.goal_id,
                title=payload.title,
                priority_score=payload.priority_score,
                scheduled_start=ensure_utc(payload.scheduled_start) if scheduled else None,
                scheduled_end=ensure_utc(payload.scheduled_end) if scheduled else None,
                metadata_json={"source": "manual"},
            )
            db.add(task)
            db.flush()
            db.add(
                ScheduleActionLog(
                    user_id=user_id,
                    action_type="task_created",
                    action_payload={
                        "task_id": str(task.id),
                        "scheduled": scheduled,
                        "conflicts": [conflict.event_id for conflict in conflicts],
                        "request_id": request_id,
                    },
                    reason="Task created",
                    undo_available=True,
                )
            )
            db.commit()
            db.refresh(task)
    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save task") from exc
    except Exception:
        db.rollback()
        raise

    log_metric("task.create.success", 1, metadata={"user_id": str(user_id), "scheduled": scheduled})
    return TaskCreateResponse(
        task=_serialize_task(task),
        conflicts=serialize_conflicts(conflicts),
        request_id=request_id or "",
    )


@router.patch("/tasks/{task_id}", response_model=TaskUpdateResponse, tags=["tasks"])
def update_task_completion(
    task_id: UUID,
    payload: TaskUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskUpdateResponse:
    """Mark a task complete or reopen it."""
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    if task.user_id != payload.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task does not belong to user")

    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": f"/tasks/{task_id}",
        "task_id": str(task_id),
        "completed": payload.completed,
        "request_id": request_id,
    }

    changed = False
    try:
        with trace("task.complete", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
            is_completed = task.status == "completed"
            if is_completed != payload.completed:
                changed = True
                task.status = "completed" if payload.completed else "pending"
                task.completed_at = datetime.now(timezone.utc) if payload.completed else None
                db.add(
                    ScheduleActionLog(
                        user_id=payload.user_id,
                        action_type="task_completed" if payload.completed else "task_reopened",
                        action_payload={
                            "task_id": str(task.id),
                            "goal_id": str(task.goal_id) if task.goal_id else None,
                            "request_id": request_id,
                        },
                        reason="Task completion toggled",
                        undo_available=True,
                    )
                )
            db.add(task)
            db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("task.complete.changed", 1 if changed else 0, metadata={"task_id": str(task_id)})
    return TaskUpdateResponse(
        id=task.id,
        status=task.status,
        completed_at=task.completed_at,
        request_id=request_id or "",
    )


def _serialize_task(task: Task) -> TaskSummary:
    return TaskSummary(
        id=task.id,
        goal_id=task.goal_id,
        title=task.title,
        status=task.status,
        priority_score=task.priority_score,
        scheduled_start=ensure_utc(task.scheduled_start) if task.scheduled_start else None,
        scheduled_end=ensure_utc(task.scheduled_end) if task.scheduled_end else None,
        completed_at=task.completed_at,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )
