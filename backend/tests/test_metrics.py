"""Tests for metrics helpers."""
from __future__ import annotations

from typing import Any, Dict

from app.observability import client as client_module
from app.observability import metrics


class _DummyTrace:
    def __init__(self, name: str, metadata: Dict[str, Any]):
        self.name = name
        self.metadata = metadata
        self.ended = False

    def end(self) -> None:
        self.ended = True


class _DummyClient:
    def __init__(self):
        self.traces: list[_DummyTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        trace = _DummyTrace(name, metadata or {})
        self.traces.append(trace)
        return trace


def test_log_metric_closes_trace(monkeypatch) -> None:
    dummy_client = _DummyClient()
    monkeypatch.setattr(client_module, "get_opik_client", lambda: dummy_client)

    metrics.log_metric("calendar.events.count", 3, metadata={"user_id": "abc", "empty": None})

    assert dummy_client.traces, "Metric call should record a trace"
    recorded = dummy_client.traces[0]
    assert recorded.name == "metric:calendar.events.count"
    assert recorded.metadata == {"value": 3, "user_id": "abc"}
    assert recorded.ended is True


def test_log_metric_is_a_no_op_without_client(monkeypatch) -> None:
    monkeypatch.setattr(client_module, "get_opik_client", lambda: None)

    metrics.log_metric("calendar.events.count", 3)
