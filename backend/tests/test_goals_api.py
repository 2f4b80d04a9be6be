from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.deps import get_db
from app.db.models.goal import Goal, GoalMilestone
from app.db.models.schedule_action_log import ScheduleActionLog
from app.db.models.user import User
from app.main import app
from app.services import goal_breakdown


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setattr(goal_breakdown.settings, "openai_api_key", None)
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    Goal.__table__.create(bind=engine)
    GoalMilestone.__table__.create(bind=engine)
    ScheduleActionLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _create_goal(client: TestClient, user_id: UUID, **overrides):
    body = {
        "user_id": str(user_id),
        "title": "Learn Spanish",
        "description": "Reach B1 conversation level",
        "start_date": "2025-01-01",
        "target_date": "2026-06-01",
    }
    body.update(overrides)
    return client.post("/goals", json=body)


def test_create_goal_generates_breakdown(client):
    test_client, session_factory = client
    user_id = uuid4()

    resp = _create_goal(test_client, user_id)

    assert resp.status_code == 201
    body = resp.json()
    assert body["goal"]["status"] == "active"
    assert body["total_duration_months"] == 17
    assert body["regenerated"] is True
    summary = [
        (m["period_type"], m["target_date"], m["completion_percentage_target"]) for m in body["milestones"]
    ]
    assert summary == [
        ("12_month", "2026-01-01", 71),
        ("6_month", "2025-07-01", 35),
        ("3_month", "2025-04-01", 18),
        ("1_month", "2025-02-01", 6),
        ("weekly", "2025-01-08", 1),
        ("weekly", "2025-01-15", 3),
        ("weekly", "2025-01-22", 4),
        ("weekly", "2025-01-29", 6),
    ]
    assert all(m["completed"] is False for m in body["milestones"])

    with session_factory() as db:
        goal_id = UUID(body["goal"]["id"])
        assert db.query(GoalMilestone).filter(GoalMilestone.goal_id == goal_id).count() == 8
        logs = db.query(ScheduleActionLog).filter(ScheduleActionLog.user_id == user_id).all()
        assert [log.action_type for log in logs] == ["goal_breakdown_generated"]
        assert logs[0].action_payload["milestones"] == 8


def test_create_goal_rejects_target_before_start(client):
    test_client, session_factory = client
    user_id = uuid4()

    resp = _create_goal(test_client, user_id, start_date="2025-06-01", target_date="2025-01-01")

    assert resp.status_code == 422
    with session_factory() as db:
        assert db.query(Goal).count() == 0


def test_create_goal_defaults_start_to_today(client):
    test_client, _ = client
    today = date.today()

    resp = _create_goal(
        test_client,
        uuid4(),
        start_date=None,
        target_date=date(today.year + 2, today.month, 1).isoformat(),
    )

    assert resp.status_code == 201
    assert resp.json()["goal"]["start_date"] == today.isoformat()
    assert resp.json()["current_tier"] == "weekly"
    assert resp.json()["time_based_completion"] == 0


def test_regenerating_breakdown_replaces_rows(client):
    test_client, session_factory = client
    user_id = uuid4()
    goal_id = _create_goal(test_client, user_id).json()["goal"]["id"]

    first = test_client.post(f"/goals/{goal_id}/breakdown", json={"user_id": str(user_id)})
    second = test_client.put(f"/goals/{goal_id}/breakdown", json={"user_id": str(user_id)})

    assert first.status_code == 200
    assert second.status_code == 200
    assert len(second.json()["milestones"]) == 8
    with session_factory() as db:
        assert db.query(GoalMilestone).filter(GoalMilestone.goal_id == UUID(goal_id)).count() == 8
        logs = db.query(ScheduleActionLog).filter(ScheduleActionLog.action_type == "goal_breakdown_generated").all()
        assert len(logs) == 3


def test_get_breakdown_reads_without_regenerating(client):
    test_client, _ = client
    user_id = uuid4()
    created = _create_goal(test_client, user_id).json()

    resp = test_client.get(f"/goals/{created['goal']['id']}/breakdown", params={"user_id": str(user_id)})

    assert resp.status_code == 200
    assert resp.json()["regenerated"] is False
    assert [m["id"] for m in resp.json()["milestones"]] == [m["id"] for m in created["milestones"]]


def test_changing_target_date_regenerates(client):
    test_client, _ = client
    user_id = uuid4()
    goal_id = _create_goal(test_client, user_id).json()["goal"]["id"]

    resp = test_client.patch(f"/goals/{goal_id}", json={"user_id": str(user_id), "target_date": "2025-05-01"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["regenerated"] is True
    assert body["total_duration_months"] == 4
    assert [m["period_type"] for m in body["milestones"]] == [
        "3_month",
        "1_month",
        "weekly",
        "weekly",
        "weekly",
        "weekly",
    ]


def test_updating_title_keeps_breakdown(client):
    test_client, _ = client
    user_id = uuid4()
    created = _create_goal(test_client, user_id).json()
    goal_id = created["goal"]["id"]

    resp = test_client.patch(f"/goals/{goal_id}", json={"user_id": str(user_id), "title": "Learn Portuguese"})

    assert resp.status_code == 200
    assert resp.json()["regenerated"] is False
    assert resp.json()["goal"]["title"] == "Learn Portuguese"
    assert [m["id"] for m in resp.json()["milestones"]] == [m["id"] for m in created["milestones"]]


def test_goal_of_another_user_is_forbidden(client):
    test_client, _ = client
    goal_id = _create_goal(test_client, uuid4()).json()["goal"]["id"]

    resp = test_client.get(f"/goals/{goal_id}/breakdown", params={"user_id": str(uuid4())})
    missing = test_client.post(f"/goals/{uuid4()}/breakdown", json={"user_id": str(uuid4())})

    assert resp.status_code == 403
    assert missing.status_code == 404


def test_complete_and_reopen_milestone(client):
    test_client, session_factory = client
    user_id = uuid4()
    created = _create_goal(test_client, user_id).json()
    goal_id = created["goal"]["id"]
    milestone_id = created["milestones"][3]["id"]
    url = f"/goals/{goal_id}/milestones/{milestone_id}"

    done = test_client.patch(url, json={"user_id": str(user_id), "completed": True})
    assert done.status_code == 200
    assert done.json()["milestone"]["completed"] is True
    assert done.json()["milestone"]["completed_at"]

    repeat = test_client.patch(url, json={"user_id": str(user_id), "completed": True})
    assert repeat.json()["milestone"]["completed_at"] == done.json()["milestone"]["completed_at"]

    reopened = test_client.patch(url, json={"user_id": str(user_id), "completed": False})
    assert reopened.json()["milestone"]["completed"] is False
    assert reopened.json()["milestone"]["completed_at"] is None

    with session_factory() as db:
        actions = sorted(
            log.action_type
            for log in db.query(ScheduleActionLog).filter(ScheduleActionLog.user_id == user_id).all()
            if log.action_type.startswith("milestone_")
        )
        assert actions == ["milestone_completed", "milestone_updated"]
        milestone = db.get(GoalMilestone, UUID(milestone_id))
        assert milestone.completed is False
        assert milestone.completed_at is None


def test_edit_milestone_fields(client):
    test_client, _ = client
    user_id = uuid4()
    created = _create_goal(test_client, user_id).json()
    goal_id = created["goal"]["id"]
    milestone_id = created["milestones"][4]["id"]

    resp = test_client.patch(
        f"/goals/{goal_id}/milestones/{milestone_id}",
        json={
            "user_id": str(user_id),
            "title": "  Book a tutor  ",
            "description": "   ",
            "target_date": "2025-01-10",
            "order_index": 9,
        },
    )

    assert resp.status_code == 200
    milestone = resp.json()["milestone"]
    assert milestone["title"] == "Book a tutor"
    assert milestone["description"] is None
    assert milestone["target_date"] == "2025-01-10"
    assert milestone["order_index"] == 9
    assert milestone["completion_percentage_target"] == 1

    breakdown = test_client.get(f"/goals/{goal_id}/breakdown", params={"user_id": str(user_id)}).json()
    assert breakdown["milestones"][-1]["id"] == milestone_id


def test_milestone_update_checks_ownership_and_input(client):
    test_client, _ = client
    user_id = uuid4()
    created = _create_goal(test_client, user_id).json()
    goal_id = created["goal"]["id"]
    milestone_id = created["milestones"][0]["id"]
    other_goal_id = _create_goal(test_client, user_id, title="Run a marathon").json()["goal"]["id"]

    foreign = test_client.patch(
        f"/goals/{goal_id}/milestones/{milestone_id}",
        json={"user_id": str(uuid4()), "completed": True},
    )
    wrong_goal = test_client.patch(
        f"/goals/{other_goal_id}/milestones/{milestone_id}",
        json={"user_id": str(user_id), "completed": True},
    )
    missing = test_client.patch(
        f"/goals/{goal_id}/milestones/{uuid4()}",
        json={"user_id": str(user_id), "completed": True},
    )
    blank = test_client.patch(
        f"/goals/{goal_id}/milestones/{milestone_id}",
        json={"user_id": str(user_id), "title": "   "},
    )

    assert foreign.status_code == 403
    assert wrong_goal.status_code == 404
    assert missing.status_code == 404
    assert blank.status_code == 422
