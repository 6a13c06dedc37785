import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .bookings import (
    add_booking_event,
    end_read_snapshot,
    get_booking,
    load_for_update,
    remarks_action,
    update_booking,
)
from .core.actor import SYSTEM_ACTOR, Actor
from .core.approval import WAITING, parse_decision
from .core.clock import system_clock
from .core.locks import resource_locks, service_key
from .db import guard_store
from .errors import Forbidden
from .models import Booking

logger = structlog.get_logger("labbook.remarks")


def submit_remarks(
    db: Session,
    booking_id: int,
    text: str | None,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
) -> Booking:
    """Worker writes (or rewrites) the remarks; a new text waits for review."""
    return update_booking(db, booking_id, {"remarks": text}, actor=actor, clock=clock)


@guard_store
def set_approval(
    db: Session,
    booking_id: int,
    status: str,
    actor: Actor = SYSTEM_ACTOR,
    clock=system_clock,
) -> Booking:
    if not actor.is_admin:
        raise Forbidden("Only admins can approve remarks")
    decision = parse_decision(status)
    current = get_booking(db, booking_id)

    with resource_locks.hold(service_key(current.service_id)):
        end_read_snapshot(db)
        booking = load_for_update(db, booking_id)
        previous = booking.remarks_status
        if previous == decision:
            return booking

        booking.remarks_status = decision
        booking.updated_at = clock.now()
        add_booking_event(
            db,
            booking.id,
            action=remarks_action(decision),
            from_status=previous,
            to_status=decision,
            actor=actor.label,
        )
        db.commit()
        db.refresh(booking)

    logger.info(
        "remarks_decided",
        booking_id=booking.id,
        from_status=previous,
        to_status=decision,
    )
    return booking


@guard_store
def pending_approvals(db: Session) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.cancelled_at.is_(None),
            Booking.remarks_status == WAITING,
            Booking.remarks.is_not(None),
        )
        .order_by(Booking.id.asc())
    )
    return [b for b in db.execute(stmt).scalars() if (b.remarks or "").strip()]
