from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .core.clock import to_utc_naive
from .core.identity import normalize_name
from .db import guard_store
from .errors import InvalidRange
from .models import Booking, ServiceAssignment, WorkerLeave
from .roster import group_by_worker, service_worker_keys

logger = structlog.get_logger("labbook.availability")

REASON_ON_LEAVE = "worker on leave"


@dataclass
class AvailabilityResult:
    available: bool
    conflicting_booking_id: int | None = None
    reason: str | None = None
    on_leave: bool = False
    worker_key: str | None = None
    leave_date: date | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    return a_start < b_end and b_start < a_end


def leave_window(leave_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(leave_date, time.min)
    return start, start + timedelta(days=1)


def leave_blocks_window(leave_date: date | None, start: datetime, end: datetime) -> bool:
    if leave_date is None:
        return False
    leave_start, leave_end = leave_window(leave_date)
    return overlaps(start, end, leave_start, leave_end)


def validate_window(start_time: datetime, end_time: datetime) -> tuple[datetime, datetime]:
    start = to_utc_naive(start_time)
    end = to_utc_naive(end_time)
    if start >= end:
        raise InvalidRange()
    return start, end


def find_booking_conflict(
    db: Session,
    service_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: int | None = None,
) -> Booking | None:
    stmt = select(Booking).where(
        Booking.service_id == int(service_id),
        Booking.cancelled_at.is_(None),
        Booking.start_time < end,
        Booking.end_time > start,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != int(exclude_booking_id))
    stmt = stmt.order_by(Booking.start_time.asc(), Booking.id.asc()).limit(1)
    return db.execute(stmt).scalar_one_or_none()


def load_leaves(db: Session, keys) -> dict[str, WorkerLeave]:
    keys = [k for k in set(keys) if k]
    if not keys:
        return {}
    rows = db.execute(
        select(WorkerLeave).where(WorkerLeave.normalized_name.in_(keys))
    ).scalars().all()
    return {row.normalized_name: row for row in rows}


def _leave_block(
    db: Session,
    service_id: int,
    start: datetime,
    end: datetime,
    worker_name: str | None,
) -> WorkerLeave | None:
    key = normalize_name(worker_name)
    if key:
        leave = load_leaves(db, [key]).get(key)
        if leave and leave_blocks_window(leave.leave_date, start, end):
            return leave
        return None

    # No named worker: a leave of anyone serving the service marks the
    # service unavailable for that day.
    keys = service_worker_keys(db, service_id)
    leaves = load_leaves(db, keys)
    for k in sorted(leaves):
        if leave_blocks_window(leaves[k].leave_date, start, end):
            return leaves[k]
    return None


@guard_store
def check_availability(
    db: Session,
    service_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_booking_id: int | None = None,
    worker_name: str | None = None,
) -> AvailabilityResult:
    start, end = validate_window(start_time, end_time)

    conflict = find_booking_conflict(db, service_id, start, end, exclude_booking_id)
    leave = _leave_block(db, service_id, start, end, worker_name)

    if conflict is not None:
        return AvailabilityResult(
            available=False,
            conflicting_booking_id=conflict.id,
            reason=f"slot overlaps booking #{conflict.id}",
            on_leave=leave is not None,
            worker_key=leave.normalized_name if leave else None,
            leave_date=leave.leave_date if leave else None,
        )
    if leave is not None:
        return AvailabilityResult(
            available=False,
            reason=REASON_ON_LEAVE,
            on_leave=True,
            worker_key=leave.normalized_name,
            leave_date=leave.leave_date,
        )
    return AvailabilityResult(available=True)


@guard_store
def free_workers(
    db: Session, service_id: int, start_time: datetime, end_time: datetime
) -> list[dict]:
    """Workers on the service's roster who can take the window.

    A worker is busy when on leave during the window or already booked, on
    any service, for an overlapping window.
    """
    start, end = validate_window(start_time, end_time)
    rows = db.execute(
        select(ServiceAssignment).where(ServiceAssignment.service_id == int(service_id))
    ).scalars().all()
    workers = group_by_worker(rows)
    if not workers:
        return []

    keys = [w["normalized_name"] for w in workers]
    leaves = load_leaves(db, keys)
    busy_keys = set(
        db.execute(
            select(Booking.worker_key).where(
                Booking.worker_key.in_(keys),
                Booking.cancelled_at.is_(None),
                Booking.start_time < end,
                Booking.end_time > start,
            )
        ).scalars().all()
    )

    free = []
    for worker in workers:
        key = worker["normalized_name"]
        if key in busy_keys:
            continue
        leave = leaves.get(key)
        if leave and leave_blocks_window(leave.leave_date, start, end):
            continue
        free.append(worker)
    logger.debug("free_workers", service_id=service_id, free=len(free), assigned=len(workers))
    return free


def reconfirmation_flags(db: Session, bookings) -> dict[int, bool]:
    """Per booking: is its worker on leave during the booking's window."""
    leaves = load_leaves(db, [b.worker_key for b in bookings])
    flags = {}
    for booking in bookings:
        leave = leaves.get(booking.worker_key or "")
        flags[booking.id] = bool(
            leave
            and not booking.is_cancelled
            and leave_blocks_window(leave.leave_date, booking.start_time, booking.end_time)
        )
    return flags
