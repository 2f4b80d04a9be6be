import logging

from fastapi.testclient import TestClient


def _get_client() -> TestClient:
    from app.main import app

    return TestClient(app)


def test_health_endpoint_returns_ok() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_generated_and_returned() -> None:
    client = _get_client()
    response = client.get("/health")

    assert len(response.headers.get("X-Request-Id", "")) == 32


def test_request_id_echoed_from_header() -> None:
    client = _get_client()
    req_id = "calendar-req-123"
    response = client.get("/health", headers={"X-Request-Id": req_id})

    assert response.headers.get("X-Request-Id") == req_id


def test_access_line_logged_with_status(caplog) -> None:
    client = _get_client()
    caplog.set_level(logging.INFO, logger="app.access")

    client.get("/calendar/events", params={"user_id": "not-a-uuid"})

    lines = [record.getMessage() for record in caplog.records if record.name == "app.access"]
    assert lines
    assert lines[-1].startswith("GET /calendar/events -> 422 in ")
