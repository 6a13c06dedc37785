from sqlalchemy import select
from sqlalchemy.orm import Session

from .core.identity import display_name, normalize_name
from .db import guard_store
from .models import Booking, ServiceAssignment


@guard_store
def register_assignment(
    db: Session, service_id: int, name: str, service_name: str | None = None
) -> ServiceAssignment:
    cleaned = display_name(name)
    key = normalize_name(name)
    if not cleaned or not key:
        raise ValueError("Worker name is required")

    row = db.execute(
        select(ServiceAssignment).where(
            ServiceAssignment.service_id == int(service_id),
            ServiceAssignment.name == cleaned,
        )
    ).scalar_one_or_none()
    if row:
        if service_name and row.service_name != service_name.strip():
            row.service_name = service_name.strip()
            db.commit()
            db.refresh(row)
        return row

    row = ServiceAssignment(
        service_id=int(service_id),
        service_name=(service_name or "").strip() or None,
        name=cleaned,
        normalized_name=key,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@guard_store
def list_assignments(db: Session, service_id: int | None = None) -> list[ServiceAssignment]:
    stmt = select(ServiceAssignment)
    if service_id is not None:
        stmt = stmt.where(ServiceAssignment.service_id == int(service_id))
    stmt = stmt.order_by(
        ServiceAssignment.normalized_name.asc(),
        ServiceAssignment.service_id.asc(),
        ServiceAssignment.id.asc(),
    )
    return db.execute(stmt).scalars().all()


def group_by_worker(rows: list[ServiceAssignment]) -> list[dict]:
    """Merge name-variant rows into one entry per normalized worker key."""
    grouped: dict[str, dict] = {}
    for row in rows:
        entry = grouped.get(row.normalized_name)
        if entry is None:
            entry = {
                "normalized_name": row.normalized_name,
                "name": row.name,
                "variants": [],
                "service_ids": [],
            }
            grouped[row.normalized_name] = entry
        if row.name not in entry["variants"]:
            entry["variants"].append(row.name)
        if row.service_id not in entry["service_ids"]:
            entry["service_ids"].append(row.service_id)
    for entry in grouped.values():
        entry["service_ids"].sort()
    return [grouped[k] for k in sorted(grouped)]


def service_workers(db: Session, service_id: int) -> list[dict]:
    return group_by_worker(list_assignments(db, service_id))


def service_worker_keys(db: Session, service_id: int) -> set[str]:
    """Every worker key serving a service, from the roster and from bookings."""
    roster_keys = db.execute(
        select(ServiceAssignment.normalized_name).where(
            ServiceAssignment.service_id == int(service_id)
        )
    ).scalars().all()
    booking_keys = db.execute(
        select(Booking.worker_key)
        .where(
            Booking.service_id == int(service_id),
            Booking.cancelled_at.is_(None),
            Booking.worker_key.is_not(None),
        )
        .distinct()
    ).scalars().all()
    return {k for k in [*roster_keys, *booking_keys] if k}


def worker_service_ids(db: Session, key: str) -> list[int]:
    """Every service id held under any display-name variant of a worker."""
    if not key:
        return []
    roster_ids = db.execute(
        select(ServiceAssignment.service_id).where(
            ServiceAssignment.normalized_name == key
        )
    ).scalars().all()
    booking_ids = db.execute(
        select(Booking.service_id)
        .where(Booking.worker_key == key, Booking.cancelled_at.is_(None))
        .distinct()
    ).scalars().all()
    return sorted({int(x) for x in [*roster_ids, *booking_ids]})
