from __future__ import annotations

import types
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from myevent import api
from myevent.services import Services


@pytest.fixture()
def client(monkeypatch, dispatcher, subscriptions, reminder_scheduler, executor):
    """FastAPI test client wired to in-memory services, scheduler disabled."""

    services = Services(
        dispatcher=dispatcher,
        subscriptions=subscriptions,
        scheduler=reminder_scheduler,
        executor=executor,
    )
    monkeypatch.setattr(api, "init_db", lambda: None)
    monkeypatch.setattr(api, "build_services", lambda config: services)
    monkeypatch.setattr(api, "settings", types.SimpleNamespace(enable_scheduler=False))
    with TestClient(api.app) as test_client:
        yield test_client


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_subscribe_success(client, make_event, transport):
    event_id = make_event(capacity=2)

    response = client.post(
        f"/api/events/{event_id}/subscribe", json={"email": "Guest@X.com", "name": "Guest"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "guest@x.com"
    assert body["event_id"] == event_id
    assert body["notified"] is False
    assert transport.recipients == ["guest@x.com"]


def test_subscribe_twice_returns_same_participant(client, make_event):
    event_id = make_event(capacity=1)
    first = client.post(f"/api/events/{event_id}/subscribe", json={"email": "a@x.com"})
    second = client.post(f"/api/events/{event_id}/subscribe", json={"email": "a@x.com"})

    assert first.status_code == second.status_code == 200
    assert first.json()["id"] == second.json()["id"]


def test_subscribe_when_full(client, make_event):
    event_id = make_event(capacity=1)
    client.post(f"/api/events/{event_id}/subscribe", json={"email": "a@x.com"})

    response = client.post(f"/api/events/{event_id}/subscribe", json={"email": "b@x.com"})

    assert response.status_code == 409
    assert response.json()["error"] == "CapacityExceeded"


def test_subscribe_to_started_event(client, make_event):
    event_id = make_event(starts_in=timedelta(minutes=-5))

    response = client.post(f"/api/events/{event_id}/subscribe", json={"email": "a@x.com"})

    assert response.status_code == 409
    assert response.json() == {
        "error": "EventAlreadyStarted",
        "message": "This event has already started.",
    }


def test_subscribe_to_unknown_event(client):
    response = client.post("/api/events/missing/subscribe", json={"email": "a@x.com"})

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_subscribe_validation(client, make_event):
    event_id = make_event()

    assert client.post(f"/api/events/{event_id}/subscribe", json={}).status_code == 422
    blank = client.post(f"/api/events/{event_id}/subscribe", json={"email": "  "})
    assert blank.status_code == 422


def test_unsubscribe(client, make_event):
    event_id = make_event(participants=(("a@x.com", False),))

    response = client.delete(
        f"/api/events/{event_id}/subscribe", params={"email": "a@x.com"}
    )
    assert response.status_code == 204

    again = client.delete(f"/api/events/{event_id}/subscribe", params={"email": "a@x.com"})
    assert again.status_code == 404


def test_list_participants(client, make_event):
    event_id = make_event(participants=(("a@x.com", False), ("b@x.com", True)))

    response = client.get(f"/api/events/{event_id}/participants")

    assert response.status_code == 200
    assert sorted(item["email"] for item in response.json()) == ["a@x.com", "b@x.com"]
    assert client.get("/api/events/missing/participants").status_code == 404


def test_run_reminders(client, make_event, transport):
    make_event(
        starts_in=timedelta(hours=23, minutes=30),
        participants=(("a@x.com", False), ("b@x.com", True)),
    )

    response = client.post("/api/reminders/run")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Reminders processed: 1 sent, 0 failed",
        "outcome": {"sent": 1, "failed": 0},
    }
    assert transport.recipients == ["a@x.com"]


def test_run_reminders_for_event(client, make_event):
    event_id = make_event(participants=(("a@x.com", False),))
    empty_id = make_event()

    response = client.post(f"/api/reminders/events/{event_id}")
    assert response.status_code == 200
    assert response.json()["outcome"] == {"sent": 1, "failed": 0}

    empty = client.post(f"/api/reminders/events/{empty_id}")
    assert empty.status_code == 400
    assert empty.json()["success"] is False

    missing = client.post("/api/reminders/events/missing")
    assert missing.status_code == 404


def test_scheduler_start_stop_status(client):
    assert client.get("/api/reminders/status").json() == {"running": False}

    started = client.post("/api/reminders/start")
    assert started.status_code == 200
    assert started.json()["schedule"] == "Daily at 09:00 (Europe/Paris)"
    assert client.get("/api/reminders/status").json()["running"] is True

    assert client.post("/api/reminders/stop").json() == {"stopped": True}
    assert client.get("/api/reminders/status").json() == {"running": False}


def test_email_endpoints(client, transport):
    assert client.post("/api/email/test-connection").json() == {"connected": True}

    response = client.post(
        "/api/email/send-test", json={"to": "me@x.com", "kind": "confirmation"}
    )
    assert response.status_code == 200
    assert response.json() == {"sent": True, "kind": "confirmation", "to": "me@x.com"}

    transport.connected = False
    transport.failing.add("me@x.com")
    assert client.post("/api/email/test-connection").status_code == 500
    failed = client.post("/api/email/send-test", json={"to": "me@x.com", "kind": "reminder"})
    assert failed.status_code == 500
    assert client.post(
        "/api/email/send-test", json={"to": "me@x.com", "kind": "digest"}
    ).status_code == 422
