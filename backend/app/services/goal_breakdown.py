"""Goal breakdown persistence and optional LLM enrichment."""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Dict, List, Optional

import openai
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models.goal import Goal, GoalMilestone
from app.observability.tracing import trace
from app.services.milestone_breakdown import BreakdownStructure, MilestoneDraft, generate_milestone_structure

logger = logging.getLogger(__name__)

ENRICHMENT_SYSTEM_PROMPT = (
    "You help people plan long-term goals. For each milestone in the given schedule, write a concise "
    "title, a one-sentence description and 2-4 concrete key deliverables. Keep every order_index. "
    'Respond with JSON: {"milestones": [{"order_index": int, "title": str, "description": str, '
    '"key_deliverables": [str]}]}'
)


class EnrichedMilestone(BaseModel):
    order_index: int
    title: Optional[str] = None
    description: Optional[str] = None
    key_deliverables: List[str] = Field(default_factory=list)


class EnrichedBreakdown(BaseModel):
    milestones: List[EnrichedMilestone] = Field(default_factory=list)


def build_goal_breakdown(goal: Goal, *, enrich: bool = False, request_id: str | None = None) -> BreakdownStructure:
    """Deterministic structure for `goal`, optionally enriched with LLM text."""
    structure = generate_milestone_structure(goal.title, goal.start_date, goal.target_date)
    if enrich:
        structure = enrich_breakdown_with_llm(structure, goal_description=goal.description, request_id=request_id)
    return structure


def enrich_breakdown_with_llm(
    structure: BreakdownStructure,
    *,
    goal_description: str | None = None,
    request_id: str | None = None,
) -> BreakdownStructure:
    """Fill titles, descriptions and deliverables from the LLM.

    Only text fields are merged back, matched on order_index; dates, tiers and
    percentage targets are never taken from the model. Without an API key the
    structure is returned unchanged. Provider errors propagate.
    """
    api_key = settings.openai_api_key
    if not api_key:
        logger.info("OPENAI_API_KEY missing; keeping structural milestone text.")
        return structure

    client = openai.OpenAI(api_key=api_key)
    user_prompt = json.dumps(
        {
            "goal_title": structure.goal_title,
            "goal_description": goal_description or "",
            "start_date": structure.start_date.isoformat(),
            "target_date": structure.target_date.isoformat(),
            "total_duration_months": structure.total_duration_months,
            "milestones": [
                {
                    "order_index": draft.order_index,
                    "period_type": draft.period_type,
                    "target_date": draft.target_date.isoformat(),
                    "completion_percentage_target": draft.completion_percentage_target,
                }
                for draft in structure.milestones
            ],
        },
        indent=2,
    )

    with trace(
        "goal.breakdown.enrich",
        metadata={"milestones": len(structure.milestones), "model": settings.openai_model},
        request_id=request_id,
    ):
        completion = client.chat.completions.create(
            model=settings.openai_model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": ENRICHMENT_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )
    content = completion.choices[0].message.content or "{}"
    enriched = EnrichedBreakdown.model_validate_json(content)
    return merge_enrichment(structure, enriched)


def merge_enrichment(structure: BreakdownStructure, enriched: EnrichedBreakdown) -> BreakdownStructure:
    by_index: Dict[int, EnrichedMilestone] = {entry.order_index: entry for entry in enriched.milestones}
    merged: List[MilestoneDraft] = []
    for draft in structure.milestones:
        entry = by_index.get(draft.order_index)
        if entry is None:
            merged.append(draft)
            continue
        merged.append(
            replace(
                draft,
                title=(entry.title or "").strip() or draft.title,
                description=(entry.description or "").strip() or draft.description,
                key_deliverables=[item.strip() for item in entry.key_deliverables if item and item.strip()],
            )
        )
    return replace(structure, milestones=merged)


def replace_goal_milestones(db: Session, goal: Goal, structure: BreakdownStructure) -> List[GoalMilestone]:
    """Swap the goal's stored breakdown for `structure`.

    Regeneration replaces the full set, so calling this twice with the same
    structure leaves one copy. The caller commits.
    """
    removed = (
        db.query(GoalMilestone)
        .filter(GoalMilestone.goal_id == goal.id)
        .delete(synchronize_session="fetch")
    )
    if removed:
        logger.info("Replacing %d breakdown milestone(s) for goal %s", removed, goal.id)

    rows = [
        GoalMilestone(
            goal_id=goal.id,
            user_id=goal.user_id,
            period_type=draft.period_type,
            title=draft.title,
            description=draft.description,
            target_date=draft.target_date,
            completion_percentage_target=draft.completion_percentage_target,
            key_deliverables=list(draft.key_deliverables),
            order_index=draft.order_index,
        )
        for draft in structure.milestones
    ]
    db.add_all(rows)
    db.flush()
    return rows


def load_goal_milestones(db: Session, goal_id) -> List[GoalMilestone]:
    return (
        db.query(GoalMilestone)
        .filter(GoalMilestone.goal_id == goal_id)
        .order_by(GoalMilestone.order_index.asc())
        .all()
    )
