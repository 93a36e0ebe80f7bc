from datetime import date

import pytest

from app.features.events.domain import AttendanceRecord, CapacityExceeded, GuestAlreadyRegistered, RsvpStatus
from app.features.events.repository import attendance_repository as module
from app.features.events.repository.attendance_repository import ADVISORY_LOCK_QUERY, AttendanceRepository

DAY = date(2025, 3, 12)


class FakeConnection:
    def __init__(self):
        self.executed = []

    async def execute(self, query, params=()):
        self.executed.append((query, params))


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn
        self.exited = False

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        return False


@pytest.fixture
def conn(monkeypatch):
    connection = FakeConnection()

    async def fake_transaction():
        return FakeTransaction(connection)

    monkeypatch.setattr(module, "get_db_transaction", fake_transaction)
    return connection


def _patch_queries(monkeypatch, headcount, prior_row=None, inserted_row=None, existing_guest=None):
    calls = []

    async def fake_fetch_val(query, params=(), *, connection=None):
        calls.append(("fetch_val", query, connection))
        if "event_guest_rsvps" in query and "SELECT id" in query:
            return existing_guest
        return headcount

    async def fake_fetch_one(query, params=(), *, connection=None):
        calls.append(("fetch_one", query, connection))
        if query.strip().startswith("SELECT"):
            return prior_row
        return inserted_row

    monkeypatch.setattr(module, "fetch_val", fake_fetch_val)
    monkeypatch.setattr(module, "fetch_one", fake_fetch_one)
    return calls


def _row(status="attending", guest_count=0):
    return {
        "event_id": "evt-1",
        "instance_date": DAY,
        "member_id": "member-1",
        "status": status,
        "guest_count": guest_count,
        "notes": None,
        "updated_at": None,
    }


@pytest.mark.asyncio
async def test_upsert_locks_occurrence_before_checking_capacity(conn, monkeypatch):
    calls = _patch_queries(monkeypatch, headcount=2, inserted_row=_row(guest_count=1))
    record = AttendanceRecord("evt-1", DAY, "member-1", RsvpStatus.ATTENDING, guest_count=1)

    saved = await AttendanceRepository().upsert(record, max_attendees=5)

    assert conn.executed == [(ADVISORY_LOCK_QUERY, ("event_rsvp:evt-1:2025-03-12",))]
    assert saved.guest_count == 1
    assert all(connection is conn for _, _, connection in calls)


@pytest.mark.asyncio
async def test_upsert_rejects_when_full(conn, monkeypatch):
    calls = _patch_queries(monkeypatch, headcount=4, prior_row=None)
    record = AttendanceRecord("evt-1", DAY, "member-1", RsvpStatus.ATTENDING, guest_count=1)

    with pytest.raises(CapacityExceeded) as exc:
        await AttendanceRepository().upsert(record, max_attendees=5)

    assert exc.value.headcount == 4
    assert not any("INSERT" in query for _, query, _ in calls)


@pytest.mark.asyncio
async def test_upsert_releases_prior_headcount(conn, monkeypatch):
    _patch_queries(
        monkeypatch, headcount=5, prior_row=_row(guest_count=2), inserted_row=_row(guest_count=3)
    )
    record = AttendanceRecord("evt-1", DAY, "member-1", RsvpStatus.ATTENDING, guest_count=3)

    saved = await AttendanceRepository().upsert(record, max_attendees=6)

    assert saved.guest_count == 3


@pytest.mark.asyncio
async def test_insert_guest_rejects_duplicate_address(conn, monkeypatch):
    _patch_queries(monkeypatch, headcount=0, existing_guest="guest-1")

    with pytest.raises(GuestAlreadyRegistered):
        await AttendanceRepository().insert_guest("evt-1", DAY, "Grace", "grace@example.com", None)


@pytest.mark.asyncio
async def test_insert_guest_checks_capacity(conn, monkeypatch):
    _patch_queries(monkeypatch, headcount=3)

    with pytest.raises(CapacityExceeded):
        await AttendanceRepository().insert_guest("evt-1", DAY, "Grace", "grace@example.com", 3)


@pytest.mark.asyncio
async def test_recipients_include_members_and_guests(monkeypatch):
    member_params = []

    async def fake_fetch_all(query, params=(), *, connection=None):
        if "members" in query:
            member_params.append(params)
            return [
                {"id": "member-1", "email": "ada@example.com", "first_name": "Ada"},
                {"id": "member-2", "email": None, "first_name": "Nobody"},
                {"id": "member-3", "email": "anon@example.com", "first_name": None},
            ]
        return [{"name": "Grace Hopper", "email": "grace@example.com"}, {"name": "", "email": "g@example.com"}]

    monkeypatch.setattr(module, "fetch_all", fake_fetch_all)

    recipients = await AttendanceRepository().recipients("evt-1", DAY)

    assert [(r.address, r.first_name, r.kind) for r in recipients] == [
        ("ada@example.com", "Ada", "member"),
        ("anon@example.com", "Member", "member"),
        ("grace@example.com", "Grace", "guest"),
        ("g@example.com", "Guest", "guest"),
    ]
    assert member_params == [("evt-1", DAY, ["attending", "maybe"])]


@pytest.mark.asyncio
async def test_list_records_returns_every_status_with_member_details(monkeypatch):
    async def fake_fetch_all(query, params=(), *, connection=None):
        assert params == ("evt-1", DAY)
        if "event_rsvps" in query:
            assert "status" not in query.split("WHERE", 1)[1]
            return [
                {**_row(status="declined"), "first_name": "Ada", "email": "ada@example.com"},
                {**_row(guest_count=2), "member_id": "member-2", "first_name": None, "email": None},
            ]
        return [
            {
                "id": "guest-1",
                "event_id": "evt-1",
                "instance_date": DAY,
                "name": "Grace Hopper",
                "email": "grace@example.com",
                "status": "attending",
            }
        ]

    monkeypatch.setattr(module, "fetch_all", fake_fetch_all)

    records, guests = await AttendanceRepository().list_records("evt-1", DAY)

    assert [(r.participant_id, r.status, r.participant_name) for r in records] == [
        ("member-1", RsvpStatus.DECLINED, "Ada"),
        ("member-2", RsvpStatus.ATTENDING, None),
    ]
    assert records[0].participant_address == "ada@example.com"
    assert guests[0].name == "Grace Hopper"
    assert guests[0].status is RsvpStatus.ATTENDING
