from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import (
    FakeAttendanceStore,
    FakeEventStore,
    FakeLock,
    FakeOverrideStore,
    FakeReminderLog,
    FakeSender,
    make_event,
)

from app.features.events.api import cron
from app.features.events.domain import ReminderStatus, TemplateKind
from app.features.events.api.router import get_attendance_ledger, get_occurrence_service
from app.features.events.api.router import router as events_router
from app.features.events.services.attendance_service import AttendanceLedger
from app.features.events.services.occurrence_service import OccurrenceService
from app.features.events.services.reminder_dispatcher import ReminderDispatcher


@pytest.fixture
def stores():
    events = FakeEventStore(
        make_event("evt-1", start_date=date(2025, 3, 12), rrule="FREQ=WEEKLY;BYDAY=WE", max_attendees=3),
        make_event("evt-s", start_date=date(2025, 3, 11)),
    )
    return {
        "events": events,
        "overrides": FakeOverrideStore(),
        "attendance": FakeAttendanceStore(),
        "reminder_log": FakeReminderLog(),
        "sender": FakeSender(),
    }


@pytest.fixture
def client(stores, apply_auth_override, monkeypatch):
    monkeypatch.setattr("app.features.events.api.cron.settings.CRON_SECRET", None)
    app = FastAPI()
    apply_auth_override(app)
    app.include_router(events_router)
    app.include_router(cron.router)

    service = OccurrenceService(
        events=stores["events"],
        overrides=stores["overrides"],
        reminder_log=stores["reminder_log"],
        horizon_days=365,
    )
    ledger = AttendanceLedger(
        events=stores["events"], overrides=stores["overrides"], records=stores["attendance"]
    )
    dispatcher = ReminderDispatcher(
        sender=stores["sender"],
        events=stores["events"],
        overrides=stores["overrides"],
        attendance=stores["attendance"],
        reminder_log=stores["reminder_log"],
        lock=FakeLock(),
        timezone="UTC",
    )

    app.dependency_overrides[get_occurrence_service] = lambda: service
    app.dependency_overrides[get_attendance_ledger] = lambda: ledger
    app.dependency_overrides[cron.get_reminder_dispatcher] = lambda: dispatcher
    return TestClient(app)


def test_presets_for_start_date(client):
    response = client.get("/recurrence/presets", params={"start_date": "2025-03-17"})

    assert response.status_code == 200
    presets = {p["key"]: p for p in response.json()["presets"]}
    assert presets["monthly_same_week"]["label"] == "Monthly on the 3rd Monday"
    assert presets["monthly_same_week"]["rule"] == "FREQ=MONTHLY;BYDAY=3MO;DTSTART=20250317"
    assert "monthly_last" not in presets
    assert presets["custom"]["rule"] is None


def test_generic_presets_without_start_date(client):
    response = client.get("/recurrence/presets")

    assert response.status_code == 200
    assert all(p["rule"] is None for p in response.json()["presets"])


def test_preview_preset_with_count(client):
    response = client.post(
        "/recurrence/preview",
        json={"preset": "weekly", "start_date": "2025-03-12", "end_type": "count", "count": 3},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["rule"] == "FREQ=WEEKLY;BYDAY=WE;DTSTART=20250312;COUNT=3"
    assert data["description"] == "Weekly on Wednesday, 3 times"
    assert data["detected_preset"] == "weekly"
    assert data["occurrences"] == ["2025-03-12", "2025-03-19", "2025-03-26"]
    assert data["truncated"] is False
    assert data["effective_end_date"] == "2025-03-26"


def test_preview_encoded_rule_is_truncated_to_limit(client):
    response = client.post(
        "/recurrence/preview", json={"rule": "FREQ=DAILY;DTSTART=20250312", "limit": 5}
    )

    assert response.status_code == 200
    data = response.json()
    assert len(data["occurrences"]) == 5
    assert data["truncated"] is True


def test_preview_custom_cadence(client):
    response = client.post(
        "/recurrence/preview",
        json={
            "preset": "custom",
            "start_date": "2025-03-10",
            "end_type": "count",
            "count": 4,
            "custom": {"frequency": "WEEKLY", "interval": 2, "weekdays": ["MO", "WE"]},
        },
    )

    assert response.status_code == 200
    assert response.json()["occurrences"] == ["2025-03-10", "2025-03-12", "2025-03-24", "2025-03-26"]


def test_preview_malformed_rule(client):
    response = client.post("/recurrence/preview", json={"rule": "FREQ=YEARLY;DTSTART=20250312"})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "malformed_rule"
    assert detail["field"] == "FREQ"


def test_preview_date_end_requires_end_date(client):
    response = client.post(
        "/recurrence/preview", json={"preset": "daily", "start_date": "2025-03-12", "end_type": "date"}
    )

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "end_date"


def test_preview_rejects_oversized_count(client):
    response = client.post(
        "/recurrence/preview", json={"rule": "FREQ=DAILY;DTSTART=20250101;COUNT=5000000"}
    )

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "COUNT"


def test_preview_open_rule_near_date_max(client):
    response = client.post("/recurrence/preview", json={"rule": "FREQ=DAILY;DTSTART=99991220"})

    assert response.status_code == 200
    body = response.json()
    assert body["effective_end_date"] == "9999-12-31"
    assert body["occurrences"][0] == "9999-12-20"
    assert body["occurrences"][-1] == "9999-12-30"


def test_list_instances_excludes_cancelled(client):
    cancel = client.post("/events/evt-1/occurrences/2025-03-19/cancellation")
    assert cancel.status_code == 200
    assert cancel.json()["is_cancelled"] is True

    response = client.get(
        "/events/evt-1/instances", params={"start": "2025-03-01", "end": "2025-04-01"}
    )

    assert response.status_code == 200
    instances = response.json()["instances"]
    assert [i["occurrence_date"] for i in instances] == ["2025-03-12", "2025-03-26"]
    assert instances[0]["related_key"] == "evt-1:2025-03-12"


def test_uncancel_occurrence(client):
    client.post("/events/evt-1/occurrences/2025-03-19/cancellation")
    response = client.delete("/events/evt-1/occurrences/2025-03-19/cancellation")

    assert response.status_code == 200
    assert response.json()["is_cancelled"] is False


def test_cancel_unknown_occurrence(client):
    response = client.post("/events/evt-1/occurrences/2025-03-20/cancellation")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "occurrence_not_found"


def test_instances_unknown_event(client):
    response = client.get(
        "/events/missing/instances", params={"start": "2025-03-01", "end": "2025-04-01"}
    )

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "event_not_found"


def test_rsvp_upsert_returns_headcount(client):
    response = client.put(
        "/events/evt-1/occurrences/2025-03-12/rsvp",
        json={"status": "attending", "guest_count": 1},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["participant_id"] == "member-1"
    assert data["headcount"] == 2


def test_rsvp_over_capacity(client):
    response = client.put(
        "/events/evt-1/occurrences/2025-03-12/rsvp",
        json={"status": "attending", "guest_count": 3},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "capacity_exceeded"


def test_rsvp_on_cancelled_occurrence(client):
    client.post("/events/evt-1/occurrences/2025-03-19/cancellation")

    response = client.put("/events/evt-1/occurrences/2025-03-19/rsvp", json={"status": "attending"})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "occurrence_cancelled"


def test_rsvp_rejects_negative_guests(client):
    response = client.put(
        "/events/evt-1/occurrences/2025-03-12/rsvp",
        json={"status": "attending", "guest_count": -1},
    )

    assert response.status_code == 422


def test_rsvp_list_of_cancelled_occurrence(client, stores):
    stores["attendance"].add_member("member-1", "ada@example.com", "Ada")
    client.put(
        "/events/evt-1/occurrences/2025-03-19/rsvp", json={"status": "attending", "guest_count": 1}
    )
    client.post(
        "/events/evt-1/occurrences/2025-03-19/guest-rsvp",
        json={"name": "Grace Hopper", "email": "grace@example.com"},
    )
    client.post("/events/evt-1/occurrences/2025-03-19/cancellation")

    response = client.get("/events/evt-1/occurrences/2025-03-19/rsvps")

    assert response.status_code == 200
    data = response.json()
    assert data["is_cancelled"] is True
    assert data["members"][0]["participant_id"] == "member-1"
    assert data["members"][0]["first_name"] == "Ada"
    assert data["members"][0]["email"] == "ada@example.com"
    assert data["guests"][0]["email"] == "grace@example.com"
    assert data["totals"] == {"attending": 3, "maybe": 0, "declined": 0}


def test_rsvp_list_for_non_occurrence(client):
    response = client.get("/events/evt-1/occurrences/2025-03-20/rsvps")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "occurrence_not_found"


def test_reminder_history_for_occurrence(client, stores):
    stores["reminder_log"].entries.extend(
        [
            (TemplateKind.DAY_BEFORE, "ada@example.com", "evt-1:2025-03-19", ReminderStatus.FAILED),
            (TemplateKind.DAY_BEFORE, "ada@example.com", "evt-1:2025-03-19", ReminderStatus.SENT),
            (TemplateKind.DAY_OF, "ada@example.com", "evt-1:2025-03-26", ReminderStatus.SENT),
        ]
    )

    response = client.get("/events/evt-1/occurrences/2025-03-19/reminders")

    assert response.status_code == 200
    data = response.json()
    assert data["related_key"] == "evt-1:2025-03-19"
    assert [e["status"] for e in data["entries"]] == ["failed", "sent"]
    assert data["entries"][0]["template_kind"] == "event_reminder_day_before"


def test_reminder_history_of_single_event_uses_event_id(client):
    response = client.get("/events/evt-s/occurrences/2025-03-11/reminders")

    assert response.status_code == 200
    assert response.json() == {
        "event_id": "evt-s",
        "occurrence_date": "2025-03-11",
        "related_key": "evt-s",
        "entries": [],
    }


def test_withdraw_rsvp(client):
    client.put("/events/evt-1/occurrences/2025-03-12/rsvp", json={"status": "maybe"})

    assert client.delete("/events/evt-1/occurrences/2025-03-12/rsvp").status_code == 204

    missing = client.delete("/events/evt-1/occurrences/2025-03-12/rsvp")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "rsvp_not_found"


def test_guest_rsvp(client):
    response = client.post(
        "/events/evt-1/occurrences/2025-03-12/guest-rsvp",
        json={"name": "Grace Hopper", "email": "Grace@Example.com"},
    )

    assert response.status_code == 201
    assert response.json()["status"] == "attending"

    duplicate = client.post(
        "/events/evt-1/occurrences/2025-03-12/guest-rsvp",
        json={"name": "Grace Hopper", "email": "grace@example.com"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "guest_already_registered"


def test_guest_rsvp_invalid_email(client):
    response = client.post(
        "/events/evt-1/occurrences/2025-03-12/guest-rsvp",
        json={"name": "Grace Hopper", "email": "not-an-email"},
    )

    assert response.status_code == 422


def test_cron_trigger_is_idempotent(client, stores):
    stores["attendance"].add_member("member-1", "ada@example.com", "Ada")
    client.put("/events/evt-s/occurrences/2025-03-11/rsvp", json={"status": "attending"})

    first = client.post("/cron/event-reminders", params={"now": "2025-03-11T15:00:00Z"})
    second = client.get("/cron/event-reminders", params={"now": "2025-03-11T15:00:00Z"})

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["results"]["event_reminder_day_of"]["sent"] == 1
    assert second.json()["results"]["event_reminder_day_of"] == {"sent": 0, "failed": 0, "skipped": 1}
    assert len(stores["sender"].calls) == 1


def test_cron_secret_required_when_configured(client, monkeypatch):
    monkeypatch.setattr("app.features.events.api.cron.settings.CRON_SECRET", "s3cret")

    assert client.post("/cron/event-reminders").status_code == 401

    response = client.post(
        "/cron/event-reminders",
        params={"now": "2025-03-11T15:00:00Z"},
        headers={"Authorization": "Bearer s3cret"},
    )
    assert response.status_code == 200
