from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from .core.clock import to_utc_naive
from .core.pricing import cost_totals
from .db import guard_store
from .models import Booking, ServicePrice


@guard_store
def upsert_service_price(
    db: Session,
    service_id: int,
    price_type: str,
    rate: float,
    service_name: str | None = None,
    category: str | None = None,
) -> ServicePrice:
    normalized_type = (price_type or "").strip()
    if not normalized_type:
        raise ValueError("price_type is required")
    if float(rate) < 0:
        raise ValueError("rate must be >= 0")

    row = db.execute(
        select(ServicePrice).where(
            ServicePrice.service_id == int(service_id),
            ServicePrice.price_type == normalized_type,
        )
    ).scalar_one_or_none()
    if row is None:
        row = ServicePrice(service_id=int(service_id), price_type=normalized_type)
        db.add(row)
    row.rate = rate
    row.service_name = (service_name or "").strip() or row.service_name
    row.category = (category or "").strip() or row.category
    db.commit()
    db.refresh(row)
    return row


@guard_store
def list_service_prices(
    db: Session,
    category: str | None = None,
    price_type: str | None = None,
    search: str | None = None,
) -> list[ServicePrice]:
    stmt = select(ServicePrice)
    if category:
        stmt = stmt.where(ServicePrice.category.ilike(f"%{category.strip()}%"))
    if price_type:
        stmt = stmt.where(ServicePrice.price_type.ilike(f"%{price_type.strip()}%"))
    if search:
        stmt = stmt.where(ServicePrice.service_name.ilike(f"%{search.strip()}%"))
    stmt = stmt.order_by(ServicePrice.service_id.asc(), ServicePrice.price_type.asc())
    return db.execute(stmt).scalars().all()


@guard_store
def load_rate_table(db: Session) -> dict:
    rows = db.execute(select(ServicePrice)).scalars().all()
    return {(int(r.service_id), r.price_type): r.rate for r in rows}


@guard_store
def cost_report(
    db: Session,
    *,
    category: str | None = None,
    department: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Cost lines and totals for non-cancelled bookings matching the filters."""
    stmt = select(Booking).where(Booking.cancelled_at.is_(None))
    if category:
        stmt = stmt.where(Booking.category == category.strip())
    if department:
        stmt = stmt.where(Booking.department == department.strip())
    if start is not None:
        stmt = stmt.where(Booking.end_time > to_utc_naive(start))
    if end is not None:
        stmt = stmt.where(Booking.start_time < to_utc_naive(end))
    stmt = stmt.order_by(Booking.start_time.asc(), Booking.id.asc())

    bookings = db.execute(stmt).scalars().all()
    return cost_totals(bookings, load_rate_table(db))
