from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from labbook.config import settings
from labbook.db import Base
from labbook.main import app
from labbook.roster import list_assignments
from labbook.reports import list_service_prices
from scripts.seed_reference import load_reference


def test_health_ready_checks_db():
    client = TestClient(app)
    response = client.get("/health/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["checks"]["db"] == "ok"
    assert client.get("/ping").json() == {"ok": True}


def test_security_headers_and_request_id():
    previous_security_headers = bool(settings.SECURITY_HEADERS_ENABLED)
    try:
        settings.SECURITY_HEADERS_ENABLED = True
        client = TestClient(app)
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.status_code == 200
        assert response.headers.get("X-Content-Type-Options") == "nosniff"
        assert response.headers.get("X-Frame-Options") == "DENY"
        assert response.headers.get("Referrer-Policy") == "no-referrer"
        assert response.headers.get("X-Request-ID") == "req-42"
    finally:
        settings.SECURITY_HEADERS_ENABLED = previous_security_headers


def test_read_only_mode_blocks_mutations_but_allows_reads():
    previous_read_only = bool(settings.MAINTENANCE_READ_ONLY)
    previous_retry_after = int(settings.MAINTENANCE_RETRY_AFTER_SECONDS)
    try:
        settings.MAINTENANCE_READ_ONLY = True
        settings.MAINTENANCE_RETRY_AFTER_SECONDS = 30
        client = TestClient(app)
        blocked = client.post(
            "/api/bookings",
            json={
                "service_id": 1,
                "start_time": "2030-01-01T10:00:00",
                "end_time": "2030-01-01T11:00:00",
            },
        )
        assert blocked.status_code == 503
        assert blocked.headers.get("Retry-After") == "30"

        health = client.get("/health")
        assert health.status_code == 200
    finally:
        settings.MAINTENANCE_READ_ONLY = previous_read_only
        settings.MAINTENANCE_RETRY_AFTER_SECONDS = previous_retry_after


def test_seed_reference_loads_roster_and_prices(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'seed.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    data = {
        "manpower": [
            {"service_id": 3, "service_name": "XRD", "name": "Jane Doe"},
            {"service_id": 3, "service_name": "XRD", "name": "Jane Doe"},
            {"service_id": 9, "name": "Raj Patel"},
        ],
        "prices": [
            {"service_id": 3, "price_type": "internal", "rate": 500, "service_name": "XRD", "category": "Testing"},
        ],
    }
    with Session() as db:
        counts = load_reference(db, data)
        assert counts == {"manpower": 3, "prices": 1}
        assert len(list_assignments(db)) == 2
        assert [p.price_type for p in list_service_prices(db, category="testing")] == ["internal"]


def test_request_log_context_names_the_caller():
    from labbook.core.middleware import actor_context

    worker = actor_context({"X-Actor-Name": "  Jane   Doe ", "X-Actor-Role": "Worker"})
    assert worker == {"actor": "Jane Doe", "actor_role": "worker", "actor_worker_key": "jane doe"}

    admin = actor_context({"X-Actor-Name": "Lab Admin", "X-Actor-Role": "admin"})
    assert admin == {"actor": "Lab Admin", "actor_role": "admin"}
