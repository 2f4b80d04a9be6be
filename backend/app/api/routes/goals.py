"""Goal API routes and milestone breakdown endpoints."""
from __future__ import annotations

from datetime import date, datetime, timezone
from time import perf_counter
from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.schemas.goal import (
    BreakdownRequest,
    GoalBreakdownResponse,
    GoalCreateRequest,
    GoalPayload,
    GoalUpdateRequest,
    MilestonePayload,
    MilestoneUpdateRequest,
    MilestoneUpdateResponse,
)
from app.db.deps import get_db
from app.db.models.goal import Goal, GoalMilestone
from app.db.models.schedule_action_log import ScheduleActionLog
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.goal_breakdown import build_goal_breakdown, load_goal_milestones, replace_goal_milestones
from app.services.milestone_breakdown import (
    InvalidGoalSpanError,
    current_period_tier,
    months_between,
    time_based_completion,
)
from app.services.timeline import ensure_utc
from app.services.user_service import get_or_create_user

router = APIRouter()


@router.post("/goals", response_model=GoalBreakdownResponse, status_code=status.HTTP_201_CREATED, tags=["goals"])
def create_goal(
    payload: GoalCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GoalBreakdownResponse:
    """Create a goal and generate its milestone breakdown."""
    request_id = getattr(http_request.state, "request_id", None)
    start_date = payload.start_date or date.today()

    goal: Goal | None = None
    milestones: List[GoalMilestone] = []
    try:
        with trace(
            "goal.create",
            metadata={"route": "/goals", "enrich": payload.enrich},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            get_or_create_user(db, payload.user_id)
            goal = Goal(
                user_id=payload.user_id,
                title=payload.title,
                description=payload.description,
                start_date=start_date,
                target_date=payload.target_date,
            )
            db.add(goal)
            db.flush()
            milestones = _regenerate_breakdown(db, goal, enrich=payload.enrich, request_id=request_id)
            db.commit()
            db.refresh(goal)
    except InvalidGoalSpanError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save goal") from exc
    except Exception:
        db.rollback()
        raise

    log_metric("goal.create.success", 1, metadata={"user_id": str(payload.user_id)})
    return _breakdown_response(goal, milestones, regenerated=True, request_id=request_id)


@router.patch("/goals/{goal_id}", response_model=GoalBreakdownResponse, tags=["goals"])
def update_goal(
    goal_id: UUID,
    payload: GoalUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GoalBreakdownResponse:
    """Update a goal; changing either date regenerates the breakdown."""
    goal = _require_user_goal(db, payload.user_id, goal_id)
    request_id = getattr(http_request.state, "request_id", None)
    fields = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    fields = {name: value for name, value in fields.items() if value is not None or name == "description"}
    dates_changed = any(
        name in fields and fields[name] != getattr(goal, name) for name in ("start_date", "target_date")
    )

    try:
        with trace(
            "goal.update",
            metadata={"route": f"/goals/{goal_id}", "fields": sorted(fields), "dates_changed": dates_changed},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            for name, value in fields.items():
                setattr(goal, name, value)
            if dates_changed:
                _regenerate_breakdown(db, goal, enrich=False, request_id=request_id)
            db.add(goal)
            db.commit()
            db.refresh(goal)
    except InvalidGoalSpanError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise

    milestones = load_goal_milestones(db, goal.id)
    return _breakdown_response(goal, milestones, regenerated=dates_changed, request_id=request_id)


@router.get("/goals/{goal_id}/breakdown", response_model=GoalBreakdownResponse, tags=["goals"])
def get_goal_breakdown(
    goal_id: UUID,
    http_request: Request,
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> GoalBreakdownResponse:
    goal = _require_user_goal(db, user_id, goal_id)
    request_id = getattr(http_request.state, "request_id", None)
    milestones = load_goal_milestones(db, goal.id)
    return _breakdown_response(goal, milestones, regenerated=False, request_id=request_id)


@router.post("/goals/{goal_id}/breakdown", response_model=GoalBreakdownResponse, tags=["goals"])
@router.put("/goals/{goal_id}/breakdown", response_model=GoalBreakdownResponse, tags=["goals"])
def generate_goal_breakdown(
    goal_id: UUID,
    payload: BreakdownRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GoalBreakdownResponse:
    """Regenerate the goal's milestones, replacing any existing set."""
    goal = _require_user_goal(db, payload.user_id, goal_id)
    request_id = getattr(http_request.state, "request_id", None)
    start_time = perf_counter()
    success = False

    try:
        with trace(
            "goal.breakdown.generate",
            metadata={"route": f"/goals/{goal_id}/breakdown", "enrich": payload.enrich},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            _regenerate_breakdown(db, goal, enrich=payload.enrich, request_id=request_id)
            db.commit()
            success = True
    except InvalidGoalSpanError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        metric_metadata: Dict[str, Any] = {"goal_id": str(goal_id), "enrich": payload.enrich}
        log_metric("goal.breakdown.success", 1 if success else 0, metadata=metric_metadata)
        log_metric("goal.breakdown.latency_ms", (perf_counter() - start_time) * 1000, metadata=metric_metadata)

    milestones = load_goal_milestones(db, goal.id)
    return _breakdown_response(goal, milestones, regenerated=True, request_id=request_id)


@router.patch(
    "/goals/{goal_id}/milestones/{milestone_id}",
    response_model=MilestoneUpdateResponse,
    tags=["goals"],
)
def update_milestone(
    goal_id: UUID,
    milestone_id: UUID,
    payload: MilestoneUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> MilestoneUpdateResponse:
    """Edit a milestone's text, date or position, or mark it complete."""
    goal = _require_user_goal(db, payload.user_id, goal_id)
    milestone = db.get(GoalMilestone, milestone_id)
    if milestone is None or milestone.goal_id != goal.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Milestone not found")

    request_id = getattr(http_request.state, "request_id", None)
    fields = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    fields = {name: value for name, value in fields.items() if value is not None or name == "description"}

    changed: List[str] = []
    try:
        with trace(
            "goal.milestone.update",
            metadata={"route": f"/goals/{goal_id}/milestones/{milestone_id}", "fields": sorted(fields)},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            for name, value in fields.items():
                if name == "completed":
                    if bool(milestone.completed) != value:
                        milestone.completed = value
                        milestone.completed_at = datetime.now(timezone.utc) if value else None
                        changed.append(name)
                elif getattr(milestone, name) != value:
                    setattr(milestone, name, value)
                    changed.append(name)

            if changed:
                completed_now = "completed" in changed and bool(milestone.completed)
                db.add(
                    ScheduleActionLog(
                        user_id=payload.user_id,
                        action_type="milestone_completed" if completed_now else "milestone_updated",
                        action_payload={
                            "goal_id": str(goal.id),
                            "milestone_id": str(milestone.id),
                            "fields": sorted(changed),
                            "request_id": request_id,
                        },
                        reason="Milestone updated",
                        undo_available=True,
                    )
                )
            db.add(milestone)
            db.commit()
            db.refresh(milestone)
    except Exception:
        db.rollback()
        raise

    log_metric("goal.milestone.update.changed", 1 if changed else 0, metadata={"goal_id": str(goal_id)})
    return MilestoneUpdateResponse(
        goal_id=goal.id,
        milestone=_serialize_milestone(milestone),
        request_id=request_id or "",
    )


def _regenerate_breakdown(db: Session, goal: Goal, *, enrich: bool, request_id: str | None) -> List[GoalMilestone]:
    structure = build_goal_breakdown(goal, enrich=enrich, request_id=request_id)
    rows = replace_goal_milestones(db, goal, structure)
    db.add(
        ScheduleActionLog(
            user_id=goal.user_id,
            action_type="goal_breakdown_generated",
            action_payload={
                "goal_id": str(goal.id),
                "start_date": goal.start_date.isoformat(),
                "target_date": goal.target_date.isoformat(),
                "total_duration_months": structure.total_duration_months,
                "milestones": len(rows),
                "enriched": enrich,
                "request_id": request_id,
            },
            reason="Goal breakdown regenerated",
        )
    )
    return rows


def _require_user_goal(db: Session, user_id: UUID, goal_id: UUID) -> Goal:
    goal = db.get(Goal, goal_id)
    if not goal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    if goal.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Goal does not belong to user")
    return goal


def _breakdown_response(
    goal: Goal,
    milestones: List[GoalMilestone],
    *,
    regenerated: bool,
    request_id: str | None,
) -> GoalBreakdownResponse:
    today = date.today()
    return GoalBreakdownResponse(
        goal=GoalPayload(
            id=goal.id,
            user_id=goal.user_id,
            title=goal.title,
            description=goal.description,
            start_date=goal.start_date,
            target_date=goal.target_date,
            status=goal.status,
        ),
        total_duration_months=months_between(goal.start_date, goal.target_date),
        current_tier=current_period_tier(goal.start_date, today),
        time_based_completion=time_based_completion(goal.start_date, goal.target_date, today),
        milestones=[
            _serialize_milestone(milestone) for milestone in sorted(milestones, key=lambda row: row.order_index)
        ],
        regenerated=regenerated,
        request_id=request_id or "",
    )


def _serialize_milestone(milestone: GoalMilestone) -> MilestonePayload:
    return MilestonePayload(
        id=milestone.id,
        period_type=milestone.period_type,
        title=milestone.title,
        description=milestone.description,
        target_date=milestone.target_date,
        completion_percentage_target=milestone.completion_percentage_target,
        key_deliverables=list(milestone.key_deliverables or []),
        order_index=milestone.order_index,
        completed=bool(milestone.completed),
        completed_at=ensure_utc(milestone.completed_at) if milestone.completed_at else None,
    )
