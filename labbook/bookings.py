from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .availability import check_availability, validate_window
from .core.actor import SYSTEM_ACTOR, Actor
from .core.approval import WAITING, clean_remarks, next_remarks_status
from .core.clock import system_clock, to_utc_naive
from .core.identity import display_name, normalize_name
from .core.lifecycle import (
    BOOKING_STATUSES,
    CANCELLED,
    derive_status,
    parse_status_filter,
)
from .core.locks import resource_locks, service_key, worker_key
from .db import guard_store
from .errors import Conflict, Forbidden, NotFound
from .models import Booking, BookingEvent

logger = structlog.get_logger("labbook.bookings")

PATCHABLE_FIELDS = {
    "start_time",
    "end_time",
    "worker_name",
    "service_name",
    "category",
    "department",
    "price_type",
    "rate",
    "remarks",
    "remarks_status",
}


def _clean(value: str | None, limit: int = 160) -> str | None:
    return (value or "").strip()[:limit] or None


def end_read_snapshot(db: Session) -> None:
    # End any open read transaction so checks made under a lock see every
    # commit that happened before the lock was taken.
    if db.in_transaction():
        db.rollback()


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise Forbidden(f"Only admins can {action}")


def booking_status(booking: Booking, now: datetime) -> str:
    return derive_status(
        booking.start_time, booking.end_time, now, cancelled=booking.is_cancelled
    )


def add_booking_event(
    db: Session,
    booking_id: int,
    action: str,
    from_status: str | None,
    to_status: str | None,
    actor: str | None = None,
    note: str | None = None,
) -> BookingEvent:
    event = BookingEvent(
        booking_id=booking_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor=(actor or "").strip() or None,
        note=(note or "").strip()[:300] or None,
    )
    db.add(event)
    db.flush()
    return event


def remarks_action(remarks_status: str) -> str:
    if remarks_status == WAITING:
        return "remarks_submitted"
    return f"remarks_{remarks_status}"


def load_for_update(db: Session, booking_id: int) -> Booking:
    booking = db.execute(
        select(Booking)
        .where(Booking.id == int(booking_id))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if booking is None:
        raise NotFound(f"Booking #{booking_id} not found")
    return booking


@guard_store
def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, int(booking_id))
    if booking is None:
        raise NotFound(f"Booking #{booking_id} not found")
    return booking


def _raise_unavailable(result, service_id: int, **log_fields) -> None:
    logger.info(
        "booking_conflict",
        service_id=service_id,
        conflicting_booking_id=result.conflicting_booking_id,
        reason=result.reason,
        **log_fields,
    )
    raise Conflict(result.reason or "Slot unavailable", booking_id=result.conflicting_booking_id)


@guard_store
def create_booking(
    db: Session,
    *,
    service_id: int,
    start_time: datetime,
    end_time: datetime,
    service_name: str | None = None,
    worker_name: str | None = None,
    category: str | None = None,
    department: str | None = None,
    price_type: str | None = None,
    rate: float | None = None,
    remarks: str | None = None,
    assigned_by: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
) -> Booking:
    _require_admin(actor, "create bookings")
    start, end = validate_window(start_time, end_time)
    worker = display_name(worker_name)
    key = normalize_name(worker) or None

    with resource_locks.hold(service_key(service_id), worker_key(key)):
        end_read_snapshot(db)
        result = check_availability(
            db, service_id, start, end, worker_name=worker
        )
        if not result.available:
            _raise_unavailable(result, service_id, worker_key=key)

        now = clock.now()
        booking = Booking(
            service_id=int(service_id),
            service_name=_clean(service_name),
            worker_name=worker,
            worker_key=key,
            start_time=start,
            end_time=end,
            category=_clean(category, 80),
            department=_clean(department, 120),
            price_type=_clean(price_type, 80),
            rate=rate,
            remarks=clean_remarks(remarks),
            remarks_status=WAITING,
            created_by=actor.label,
            assigned_by=display_name(assigned_by) or actor.label,
            created_at=now,
            updated_at=now,
        )
        db.add(booking)
        db.flush()
        add_booking_event(
            db,
            booking.id,
            action="created",
            from_status=None,
            to_status=booking_status(booking, now),
            actor=actor.label,
        )
        db.commit()
        db.refresh(booking)

    logger.info(
        "booking_created",
        booking_id=booking.id,
        service_id=booking.service_id,
        worker_key=key,
        start_time=start.isoformat(),
        end_time=end.isoformat(),
    )
    return booking


@guard_store
def update_booking(
    db: Session,
    booking_id: int,
    patch: dict,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
) -> Booking:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    current = get_booking(db, booking_id)
    old_key = current.worker_key
    new_key = old_key
    if "worker_name" in patch:
        new_key = normalize_name(patch["worker_name"]) or None

    only_remarks = set(patch) <= {"remarks"}
    if not only_remarks:
        _require_admin(actor, "edit bookings")
    elif not actor.is_admin and actor.key != (old_key or ""):
        raise Forbidden("Workers can only write remarks on their own bookings")

    with resource_locks.hold(
        service_key(current.service_id), worker_key(old_key), worker_key(new_key)
    ):
        end_read_snapshot(db)
        booking = load_for_update(db, booking_id)
        if booking.is_cancelled:
            raise Conflict("booking is cancelled")

        start = to_utc_naive(patch["start_time"]) if patch.get("start_time") else booking.start_time
        end = to_utc_naive(patch["end_time"]) if patch.get("end_time") else booking.end_time
        worker = display_name(patch["worker_name"]) if "worker_name" in patch else booking.worker_name
        start, end = validate_window(start, end)

        schedule_changed = (
            start != booking.start_time
            or end != booking.end_time
            or normalize_name(worker) != (booking.worker_key or "")
        )
        if schedule_changed:
            result = check_availability(
                db,
                booking.service_id,
                start,
                end,
                exclude_booking_id=booking.id,
                worker_name=worker,
            )
            if not result.available:
                _raise_unavailable(result, booking.service_id, booking_id=booking.id)

        now = clock.now()
        from_status = booking_status(booking, now)
        old_remarks_status = booking.remarks_status

        booking.start_time = start
        booking.end_time = end
        booking.worker_name = worker
        booking.worker_key = normalize_name(worker) or None
        for field, limit in (("service_name", 160), ("category", 80), ("department", 120), ("price_type", 80)):
            if field in patch:
                setattr(booking, field, _clean(patch[field], limit))
        if "rate" in patch:
            booking.rate = patch["rate"]

        explicit = patch.get("remarks_status")
        if explicit is not None:
            _require_admin(actor, "set remarks approval")
        remarks_changed = False
        if "remarks" in patch or explicit is not None:
            new_remarks = clean_remarks(patch["remarks"]) if "remarks" in patch else booking.remarks
            remarks_changed = new_remarks != booking.remarks
            booking.remarks_status = next_remarks_status(
                booking.remarks_status, booking.remarks, new_remarks, explicit
            )
            booking.remarks = new_remarks
        booking.updated_at = now

        to_status = booking_status(booking, now)
        add_booking_event(
            db,
            booking.id,
            action="rescheduled" if schedule_changed else "updated",
            from_status=from_status,
            to_status=to_status,
            actor=actor.label,
            note=", ".join(sorted(patch)),
        )
        if remarks_changed or booking.remarks_status != old_remarks_status:
            add_booking_event(
                db,
                booking.id,
                action=remarks_action(booking.remarks_status),
                from_status=old_remarks_status,
                to_status=booking.remarks_status,
                actor=actor.label,
            )
        db.commit()
        db.refresh(booking)

    if booking.remarks_status == WAITING and old_remarks_status != WAITING:
        logger.info("remarks_reset", booking_id=booking.id, from_status=old_remarks_status)
    logger.info(
        "booking_updated",
        booking_id=booking.id,
        fields=sorted(patch),
        rescheduled=schedule_changed,
    )
    return booking


@guard_store
def cancel_booking(
    db: Session,
    booking_id: int,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
    note: str | None = None,
) -> Booking:
    _require_admin(actor, "cancel bookings")
    current = get_booking(db, booking_id)

    with resource_locks.hold(service_key(current.service_id), worker_key(current.worker_key)):
        end_read_snapshot(db)
        booking = load_for_update(db, booking_id)
        if booking.is_cancelled:
            return booking

        now = clock.now()
        from_status = booking_status(booking, now)
        booking.cancelled_at = now
        booking.cancelled_by = actor.label
        booking.updated_at = now
        add_booking_event(
            db,
            booking.id,
            action="cancelled",
            from_status=from_status,
            to_status=CANCELLED,
            actor=actor.label,
            note=note,
        )
        db.commit()
        db.refresh(booking)

    logger.info("booking_cancelled", booking_id=booking.id, service_id=booking.service_id)
    return booking


@guard_store
def list_bookings(
    db: Session,
    *,
    status: str | None = None,
    department: str | None = None,
    category: str | None = None,
    worker: str | None = None,
    service_id: int | None = None,
    start_from: datetime | None = None,
    end_to: datetime | None = None,
    include_cancelled: bool = False,
    limit: int | None = None,
    clock=system_clock,
) -> list[Booking]:
    status_filter = parse_status_filter(status)

    stmt = select(Booking)
    if status_filter != CANCELLED and not include_cancelled:
        stmt = stmt.where(Booking.cancelled_at.is_(None))
    if department:
        stmt = stmt.where(Booking.department == department.strip())
    if category:
        stmt = stmt.where(Booking.category == category.strip())
    if worker:
        stmt = stmt.where(Booking.worker_key == normalize_name(worker))
    if service_id is not None:
        stmt = stmt.where(Booking.service_id == int(service_id))
    if start_from is not None:
        stmt = stmt.where(Booking.end_time > to_utc_naive(start_from))
    if end_to is not None:
        stmt = stmt.where(Booking.start_time < to_utc_naive(end_to))
    stmt = stmt.order_by(Booking.start_time.asc(), Booking.id.asc())

    rows = db.execute(stmt).scalars().all()
    if status_filter is not None:
        now = clock.now()
        rows = [b for b in rows if booking_status(b, now) == status_filter]
    if limit is not None:
        rows = rows[: max(0, int(limit))]
    return rows


@guard_store
def booking_stats(db: Session, clock=system_clock) -> dict:
    now = clock.now()
    counts = {name: 0 for name in BOOKING_STATUSES}
    for booking in db.execute(select(Booking)).scalars():
        counts[booking_status(booking, now)] += 1
    counts["total"] = sum(counts[name] for name in BOOKING_STATUSES if name != CANCELLED)
    return counts


@guard_store
def list_booking_events(db: Session, booking_id: int) -> list[BookingEvent]:
    get_booking(db, booking_id)
    stmt = (
        select(BookingEvent)
        .where(BookingEvent.booking_id == int(booking_id))
        .order_by(BookingEvent.created_at.asc(), BookingEvent.id.asc())
    )
    return db.execute(stmt).scalars().all()
