from dataclasses import dataclass, field
from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .availability import leave_blocks_window, leave_window
from .bookings import end_read_snapshot
from .core.actor import SYSTEM_ACTOR, Actor
from .core.clock import system_clock
from .core.identity import display_name, normalize_name
from .core.locks import resource_locks, worker_key
from .db import guard_store
from .errors import Forbidden, InvalidDate
from .models import Booking, WorkerLeave
from .roster import worker_service_ids

logger = structlog.get_logger("labbook.leave")


@dataclass
class LeaveResult:
    normalized_name: str
    display_name: str
    leave_date: date | None
    previous_leave_date: date | None = None
    affected_service_ids: list[int] = field(default_factory=list)
    affected_booking_ids: list[int] = field(default_factory=list)


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


def bookings_on_leave_day(db: Session, key: str, leave_date: date) -> list[Booking]:
    day_start, day_end = leave_window(leave_date)
    stmt = (
        select(Booking)
        .where(
            Booking.worker_key == key,
            Booking.cancelled_at.is_(None),
            Booking.start_time < day_end,
            Booking.end_time > day_start,
        )
        .order_by(Booking.start_time.asc(), Booking.id.asc())
    )
    return db.execute(stmt).scalars().all()


@guard_store
def set_leave(
    db: Session,
    name: str,
    leave_date: date | datetime | None,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
) -> LeaveResult:
    """Set or clear the single active leave date of a worker.

    Existing bookings are never cancelled here. The ones that fall on the
    leave date are returned so a person can reassign them; availability
    checks report them as blocked from now on.
    """
    key = normalize_name(name)
    if not key:
        raise ValueError("Worker name is required")
    if not actor.is_admin and actor.key != key:
        raise Forbidden("Workers can only set their own leave")

    target = _as_date(leave_date)
    if target is not None and target < clock.today():
        raise InvalidDate(f"Leave date {target.isoformat()} is in the past")

    with resource_locks.hold(worker_key(key)):
        end_read_snapshot(db)
        row = db.get(WorkerLeave, key)
        previous = row.leave_date if row else None

        if target is None:
            if row is not None:
                db.delete(row)
        elif row is None:
            row = WorkerLeave(
                normalized_name=key,
                display_name=display_name(name) or key,
                leave_date=target,
                updated_at=clock.now(),
                updated_by=actor.label,
            )
            db.add(row)
        else:
            row.display_name = display_name(name) or row.display_name
            row.leave_date = target
            row.updated_at = clock.now()
            row.updated_by = actor.label
        db.commit()

        affected = bookings_on_leave_day(db, key, target) if target else []
        result = LeaveResult(
            normalized_name=key,
            display_name=display_name(name) or key,
            leave_date=target,
            previous_leave_date=previous,
            affected_service_ids=worker_service_ids(db, key),
            affected_booking_ids=[b.id for b in affected],
        )

    if target is None:
        logger.info("leave_cleared", worker_key=key, previous_leave_date=str(previous) if previous else None)
    else:
        logger.info(
            "leave_set",
            worker_key=key,
            leave_date=target.isoformat(),
            affected_bookings=len(result.affected_booking_ids),
            affected_services=result.affected_service_ids,
        )
    return result


@guard_store
def get_leave(db: Session, name: str) -> WorkerLeave | None:
    key = normalize_name(name)
    if not key:
        return None
    return db.get(WorkerLeave, key)


@guard_store
def list_leaves(db: Session) -> list[WorkerLeave]:
    stmt = select(WorkerLeave).order_by(
        WorkerLeave.leave_date.asc(), WorkerLeave.normalized_name.asc()
    )
    return db.execute(stmt).scalars().all()


@guard_store
def leave_conflicts(db: Session, clock=system_clock) -> list[tuple[Booking, WorkerLeave]]:
    """Unfinished bookings whose worker is on leave during the booking."""
    now = clock.now()
    rows = db.execute(
        select(Booking, WorkerLeave)
        .join(WorkerLeave, WorkerLeave.normalized_name == Booking.worker_key)
        .where(Booking.cancelled_at.is_(None), Booking.end_time > now)
        .order_by(Booking.start_time.asc(), Booking.id.asc())
    ).all()
    return [
        (booking, leave)
        for booking, leave in rows
        if leave_blocks_window(leave.leave_date, booking.start_time, booking.end_time)
    ]
