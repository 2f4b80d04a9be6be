from __future__ import annotations

import os
import importlib
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.deps import get_db
from app.db.models.goal import Goal, GoalMilestone
from app.db.models.schedule_action_log import ScheduleActionLog
from app.db.models.task import Task
from app.db.models.time_block import TimeBlock
from app.db.models.user import User
from app.observability import client as client_module
from app.services import goal_breakdown


class _DummyTrace:
    def __init__(self, metadata=None, **kwargs):
        self.metadata = metadata or {}

    def update(self, metadata=None, **kwargs):
        if metadata:
            self.metadata = metadata

    def end(self):
        pass


class _DummyOpik:
    def __init__(self, *args, **kwargs):
        self.traces = []

    def trace(self, **kwargs):
        trace = _DummyTrace(metadata=kwargs.get("metadata"))
        self.traces.append(trace)
        return trace


class _RecordingOpik(_DummyOpik):
    def trace(self, **kwargs):
        trace = super().trace(**kwargs)
        trace.name = kwargs.get("name")
        return trace

    @property
    def names(self):
        return [trace.name for trace in self.traces]


@pytest.fixture()
def sqlite_override():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover - sqlite setup
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    Goal.__table__.create(bind=engine)
    GoalMilestone.__table__.create(bind=engine)
    Task.__table__.create(bind=engine)
    TimeBlock.__table__.create(bind=engine)
    ScheduleActionLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    return override_get_db


@pytest.mark.skipif("OPIK_API_KEY" not in os.environ, reason="OPIK_API_KEY env var required for Opik tests")
def test_app_runs_with_opik_enabled(monkeypatch, sqlite_override):
    api_key = os.environ["OPIK_API_KEY"]
    monkeypatch.setenv("OPIK_ENABLED", "true")
    monkeypatch.setenv("OPIK_PROJECT", "cadence-test")
    monkeypatch.setenv("OPIK_API_KEY", api_key)

    import app.core.config as config_module
    import app.main as main_module

    importlib.reload(config_module)
    importlib.reload(client_module)
    monkeypatch.setattr(client_module, "Opik", _DummyOpik)
    client_module._client = None
    client_module._init_attempted = False
    reloaded_main = importlib.reload(main_module)

    override = sqlite_override
    reloaded_main.app.dependency_overrides[get_db] = override

    with TestClient(reloaded_main.app) as test_client:
        assert test_client.get("/health").status_code == 200
        resp = test_client.post(
            "/calendar/conflicts",
            json={
                "user_id": str(uuid4()),
                "start": "2025-03-03T09:00:00Z",
                "end": "2025-03-03T10:00:00Z",
            },
        )
        assert resp.status_code == 200
        assert resp.json()["available"] is True
        assert client_module._client.traces

    reloaded_main.app.dependency_overrides.clear()

    monkeypatch.setenv("OPIK_ENABLED", "false")
    importlib.reload(config_module)
    importlib.reload(client_module)
    client_module._client = None
    client_module._init_attempted = False
    importlib.reload(main_module)


def test_goal_and_calendar_routes_open_named_traces(monkeypatch, sqlite_override):
    import app.main as main_module

    recorder = _RecordingOpik()
    monkeypatch.setattr(client_module, "get_opik_client", lambda: recorder)
    monkeypatch.setattr(goal_breakdown.settings, "openai_api_key", None)
    main_module.app.dependency_overrides[get_db] = sqlite_override
    user_id = str(uuid4())

    try:
        with TestClient(main_module.app) as test_client:
            goal = test_client.post(
                "/goals",
                json={
                    "user_id": user_id,
                    "title": "Learn Spanish",
                    "start_date": "2025-01-01",
                    "target_date": "2025-12-01",
                },
            )
            block = test_client.post(
                "/calendar/time-blocks",
                json={
                    "user_id": user_id,
                    "title": "Deep work",
                    "start_time": "2025-03-03T09:00:00Z",
                    "end_time": "2025-03-03T10:00:00Z",
                },
            )
            clash = test_client.post(
                "/calendar/time-blocks",
                json={
                    "user_id": user_id,
                    "title": "Standup",
                    "start_time": "2025-03-03T09:30:00Z",
                    "end_time": "2025-03-03T09:45:00Z",
                },
            )
    finally:
        main_module.app.dependency_overrides.clear()

    assert goal.status_code == 201
    assert block.status_code == 201
    assert clash.status_code == 409
    assert "goal.create" in recorder.names
    assert "metric:goal.create.success" in recorder.names
    assert recorder.names.count("calendar.time_block.create") == 2
    assert "metric:calendar.time_block.create.success" in recorder.names
    assert "metric:calendar.time_block.create.conflicts" in recorder.names
    created = next(trace for trace in recorder.traces if trace.name == "goal.create")
    assert created.metadata["user_id"] == user_id
