from datetime import datetime

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from labbook.api import get_db, router
from labbook.core.clock import FixedClock, get_clock
from labbook.db import Base
from labbook.roster import register_assignment

ADMIN_HEADERS = {"X-Actor-Name": "Lab Admin", "X-Actor-Role": "admin"}
JANE_HEADERS = {"X-Actor-Name": "Jane Doe", "X-Actor-Role": "worker"}


def make_client(tmp_path, clock=None):
    db_path = tmp_path / "test_api.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)
    clock = clock or FixedClock(datetime(2025, 4, 20, 8, 0))

    app = FastAPI()
    app.include_router(router)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app), TestingSessionLocal, clock


def _create(client, service_id, start, end, headers=ADMIN_HEADERS, **extra):
    payload = {"service_id": service_id, "start_time": start, "end_time": end, **extra}
    return client.post("/api/bookings", json=payload, headers=headers)


def test_booking_flow_rejects_overlap(tmp_path):
    client, _, _ = make_client(tmp_path)

    r1 = _create(client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00", worker_name="Jane Doe")
    assert r1.status_code == 200
    first = r1.json()
    assert first["status"] == "scheduled"
    assert first["remarks_status"] == "waiting"
    assert first["created_by"] == "Lab Admin"

    check = client.get(
        "/api/bookings/check",
        params={"service_id": 1, "start": "2025-05-01T10:00:00", "end": "2025-05-01T12:00:00"},
    )
    assert check.status_code == 200
    assert check.json()["available"] is False
    assert check.json()["conflicting_booking_id"] == first["id"]

    r2 = _create(client, 1, "2025-05-01T10:00:00", "2025-05-01T12:00:00")
    assert r2.status_code == 409
    assert r2.json()["detail"]["conflicting_booking_id"] == first["id"]

    r3 = _create(client, 1, "2025-05-01T11:00:00", "2025-05-01T12:00:00")
    assert r3.status_code == 200

    listing = client.get("/api/bookings", params={"service_id": 1})
    assert [b["id"] for b in listing.json()] == [first["id"], r3.json()["id"]]


def test_timezone_aware_times_are_stored_in_utc(tmp_path):
    client, _, _ = make_client(tmp_path)

    r = _create(client, 1, "2025-05-01T11:00:00+02:00", "2025-05-01T13:00:00+02:00")
    assert r.status_code == 200
    assert r.json()["start_time"].startswith("2025-05-01T09:00:00")

    clash = _create(client, 1, "2025-05-01T10:30:00Z", "2025-05-01T11:30:00Z")
    assert clash.status_code == 409


def test_invalid_range_and_unknown_booking(tmp_path):
    client, _, _ = make_client(tmp_path)

    bad = _create(client, 1, "2025-05-01T11:00:00", "2025-05-01T09:00:00")
    assert bad.status_code == 400

    assert client.get("/api/bookings/999").status_code == 404
    assert client.put("/api/bookings/999", json={"category": "x"}, headers=ADMIN_HEADERS).status_code == 404
    assert client.delete("/api/bookings/999", headers=ADMIN_HEADERS).status_code == 404
    assert client.put("/api/bookings/1", json={}, headers=ADMIN_HEADERS).status_code == 400


def test_cancel_and_history(tmp_path):
    client, _, _ = make_client(tmp_path)
    booking = _create(client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00").json()

    moved = client.put(
        f"/api/bookings/{booking['id']}",
        json={"start_time": "2025-05-01T10:00:00", "end_time": "2025-05-01T12:00:00"},
        headers=ADMIN_HEADERS,
    )
    assert moved.status_code == 200

    cancelled = client.delete(f"/api/bookings/{booking['id']}", headers=ADMIN_HEADERS)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = _create(client, 1, "2025-05-01T10:00:00", "2025-05-01T12:00:00")
    assert again.status_code == 200

    history = client.get(f"/api/bookings/{booking['id']}/history")
    assert [e["action"] for e in history.json()] == ["created", "rescheduled", "cancelled"]
    assert history.json()[-1]["to_status"] == "cancelled"


def test_remarks_and_notifications(tmp_path):
    client, _, _ = make_client(tmp_path)
    booking = _create(client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00", worker_name="jane doe").json()

    written = client.put(
        f"/api/bookings/{booking['id']}/remarks",
        json={"remarks": "Run finished, 12 samples"},
        headers=JANE_HEADERS,
    )
    assert written.status_code == 200
    assert written.json()["remarks_status"] == "waiting"

    notes = client.get("/api/notifications")
    assert [b["id"] for b in notes.json()] == [booking["id"]]

    denied = client.put(
        f"/api/bookings/{booking['id']}/approval", json={"status": "accepted"}, headers=JANE_HEADERS
    )
    assert denied.status_code == 403

    approved = client.put(
        f"/api/bookings/{booking['id']}/approval", json={"status": "accepted"}, headers=ADMIN_HEADERS
    )
    assert approved.json()["remarks_status"] == "accepted"
    assert client.get("/api/notifications").json() == []

    rewritten = client.put(
        f"/api/bookings/{booking['id']}/remarks",
        json={"remarks": "Run finished, 14 samples"},
        headers=JANE_HEADERS,
    )
    assert rewritten.json()["remarks_status"] == "waiting"

    invalid = client.put(
        f"/api/bookings/{booking['id']}/approval", json={"status": "maybe"}, headers=ADMIN_HEADERS
    )
    assert invalid.status_code == 400


def test_worker_sees_only_own_bookings(tmp_path):
    client, _, _ = make_client(tmp_path)
    _create(client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00", worker_name="JANE DOE")
    _create(client, 2, "2025-05-01T09:00:00", "2025-05-01T11:00:00", worker_name="Raj Patel")

    mine = client.get("/api/bookings", headers=JANE_HEADERS)
    assert [b["worker_name"] for b in mine.json()] == ["JANE DOE"]

    forbidden = _create(client, 3, "2025-05-02T09:00:00", "2025-05-02T11:00:00", headers=JANE_HEADERS)
    assert forbidden.status_code == 403


def test_leave_blocks_every_service_of_the_worker(tmp_path):
    client, Session, _ = make_client(tmp_path)
    with Session() as db:
        register_assignment(db, 3, "Jane Doe", service_name="Confocal")
        register_assignment(db, 9, "jane doe", service_name="SEM")

    on_three = _create(client, 3, "2025-05-01T10:00:00", "2025-05-01T12:00:00", worker_name="Jane Doe").json()
    on_nine = _create(client, 9, "2025-05-01T14:00:00", "2025-05-01T16:00:00", worker_name="jane doe").json()

    leave = client.put(
        "/api/manpower/leave",
        json={"name": "jane   doe", "leave_date": "2025-05-01"},
        headers=ADMIN_HEADERS,
    )
    assert leave.status_code == 200
    body = leave.json()
    assert body["normalized_name"] == "jane doe"
    assert body["affected_service_ids"] == [3, 9]
    assert body["affected_booking_ids"] == [on_three["id"], on_nine["id"]]

    for service_id, start, end in (
        (3, "2025-05-01T13:00:00", "2025-05-01T14:00:00"),
        (9, "2025-05-01T08:00:00", "2025-05-01T09:00:00"),
    ):
        check = client.get(
            "/api/bookings/check", params={"service_id": service_id, "start": start, "end": end}
        ).json()
        assert check["available"] is False
        assert check["on_leave"] is True
        assert check["reason"] == "worker on leave"

    named = client.get(
        "/api/bookings/check",
        params={
            "service_id": 3,
            "start": "2025-05-01T13:00:00",
            "end": "2025-05-01T14:00:00",
            "worker_name": "JANE DOE",
        },
    ).json()
    assert named["available"] is False

    refused = _create(client, 9, "2025-05-01T08:00:00", "2025-05-01T09:00:00", worker_name="Jane Doe")
    assert refused.status_code == 409
    assert refused.json()["detail"] == {"reason": "worker on leave", "conflicting_booking_id": None}

    flagged = client.get(f"/api/bookings/{on_three['id']}").json()
    assert flagged["needs_reconfirmation"] is True
    conflicts = client.get("/api/manpower/leave/conflicts").json()
    assert [c["booking_id"] for c in conflicts] == [on_three["id"], on_nine["id"]]

    overlap = client.get(
        "/api/bookings/check",
        params={"service_id": 3, "start": "2025-05-01T10:30:00", "end": "2025-05-01T11:00:00"},
    ).json()
    assert overlap["conflicting_booking_id"] == on_three["id"]
    assert overlap["on_leave"] is True

    next_day = client.get(
        "/api/bookings/check",
        params={"service_id": 3, "start": "2025-05-02T10:00:00", "end": "2025-05-02T11:00:00"},
    ).json()
    assert next_day["available"] is True

    cleared = client.put(
        "/api/manpower/leave", json={"name": "Jane Doe", "leave_date": None}, headers=ADMIN_HEADERS
    )
    assert cleared.status_code == 200
    assert cleared.json()["previous_leave_date"] == "2025-05-01"
    restored = client.get(
        "/api/bookings/check",
        params={"service_id": 3, "start": "2025-05-01T13:00:00", "end": "2025-05-01T14:00:00"},
    ).json()
    assert restored["available"] is True
    assert client.get("/api/manpower/leave").json() == []


def test_leave_in_the_past_is_rejected(tmp_path):
    client, _, _ = make_client(tmp_path)

    past = client.put(
        "/api/manpower/leave", json={"name": "Jane Doe", "leave_date": "2025-04-19"}, headers=ADMIN_HEADERS
    )
    assert past.status_code == 400

    today = client.put(
        "/api/manpower/leave", json={"name": "Jane Doe", "leave_date": "2025-04-20"}, headers=ADMIN_HEADERS
    )
    assert today.status_code == 200

    someone_else = client.put(
        "/api/manpower/leave", json={"name": "Raj Patel", "leave_date": "2025-05-01"}, headers=JANE_HEADERS
    )
    assert someone_else.status_code == 403

    blank = client.put("/api/manpower/leave", json={"name": "   ", "leave_date": None}, headers=ADMIN_HEADERS)
    assert blank.status_code == 422


def test_manpower_groups_name_variants(tmp_path):
    client, Session, _ = make_client(tmp_path)
    with Session() as db:
        register_assignment(db, 3, "Jane Doe")
        register_assignment(db, 9, "jane  doe")
        register_assignment(db, 9, "Raj Patel")

    workers = client.get("/api/manpower", headers=ADMIN_HEADERS).json()
    assert [w["normalized_name"] for w in workers] == ["jane doe", "raj patel"]
    assert workers[0]["service_ids"] == [3, 9]
    assert workers[0]["variants"] == ["Jane Doe", "jane doe"]

    own = client.get("/api/manpower", headers=JANE_HEADERS).json()
    assert [w["normalized_name"] for w in own] == ["jane doe"]

    service_nine = client.get("/api/services/9/manpower").json()
    assert [w["normalized_name"] for w in service_nine] == ["jane doe", "raj patel"]

    free = client.get(
        "/api/bookings/free-manpower",
        params={"service_id": 9, "start": "2025-05-01T09:00:00", "end": "2025-05-01T10:00:00"},
    )
    assert free.status_code == 200
    assert len(free.json()) == 2


def test_stats_prices_and_cost_report(tmp_path):
    from labbook.reports import upsert_service_price

    client, Session, clock = make_client(tmp_path)
    with Session() as db:
        upsert_service_price(db, 1, "internal", 500, service_name="NMR 600", category="Spectroscopy")
        upsert_service_price(db, 2, "external", 120, service_name="SEM", category="Imaging")

    _create(
        client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00",
        price_type="internal", department="Chemistry", category="Spectroscopy",
    )
    _create(
        client, 2, "2025-05-01T09:00:00", "2025-05-01T09:30:00",
        price_type="external", department="Physics", category="Imaging",
    )

    prices = client.get("/api/service-prices", params={"search": "nmr"}).json()
    assert [p["service_id"] for p in prices] == [1]
    assert prices[0]["rate"] == 500.0
    assert len(client.get("/api/service-prices", params={"category": "imaging"}).json()) == 1

    report = client.get("/api/report/cost").json()
    assert report["total_amount"] == 1060.0
    assert report["total_hours"] == 2.5
    assert [row["amount"] for row in report["by_service"]] == [1000.0, 60.0]

    chemistry = client.get("/api/report/cost", params={"department": "Chemistry"}).json()
    assert chemistry["total_amount"] == 1000.0

    clock.set(datetime(2025, 5, 1, 10, 0))
    stats = client.get("/api/bookings/stats").json()
    assert stats == {"total": 2, "scheduled": 0, "in_progress": 1, "completed": 1, "cancelled": 0}

    ongoing = client.get("/api/bookings", params={"status": "ongoing"}).json()
    assert [b["service_id"] for b in ongoing] == [1]
    assert client.get("/api/bookings", params={"status": "paused"}).status_code == 400


def test_store_outage_maps_to_503(tmp_path):
    from sqlalchemy.exc import OperationalError

    client, Session, _ = make_client(tmp_path)

    def broken_db():
        db = Session()

        def execute(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

        db.execute = execute
        try:
            yield db
        finally:
            db.close()

    client.app.dependency_overrides[get_db] = broken_db
    response = client.get(
        "/api/bookings/check",
        params={"service_id": 1, "start": "2025-05-01T09:00:00", "end": "2025-05-01T10:00:00"},
    )
    assert response.status_code == 503
    assert response.json()["detail"] == "Booking store is unavailable"


def test_blank_worker_filter_for_admin_lists_everything(tmp_path):
    client, _, _ = make_client(tmp_path)
    _create(client, 1, "2025-05-01T09:00:00", "2025-05-01T11:00:00", worker_name="Jane Doe")
    _create(client, 2, "2025-05-01T09:00:00", "2025-05-01T11:00:00")

    everything = client.get("/api/bookings", params={"worker": ""}, headers=ADMIN_HEADERS)
    assert len(everything.json()) == 2

    mine = client.get("/api/bookings", params={"worker": ""}, headers=JANE_HEADERS)
    assert [b["worker_name"] for b in mine.json()] == ["Jane Doe"]
