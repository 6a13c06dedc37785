from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .core.clock import utc_now_naive
from .db import Base


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_service_window", "service_id", "start_time", "end_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_id: Mapped[int] = mapped_column(Integer, index=True)
    service_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    worker_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    worker_key: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime)
    end_time: Mapped[datetime] = mapped_column(DateTime)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    department: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    price_type: Mapped[str | None] = mapped_column(String(80), nullable=True)
    rate: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    remarks: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    remarks_status: Mapped[str] = mapped_column(String(16), default="waiting", index=True)
    created_by: Mapped[str | None] = mapped_column(String(120), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(120), nullable=True)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None


class BookingEvent(Base):
    __tablename__ = "booking_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    action: Mapped[str] = mapped_column(String(40))
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actor: Mapped[str | None] = mapped_column(String(120), nullable=True)
    note: Mapped[str | None] = mapped_column(String(300), nullable=True)


class WorkerLeave(Base):
    __tablename__ = "worker_leaves"

    normalized_name: Mapped[str] = mapped_column(String(120), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(120))
    leave_date: Mapped[date] = mapped_column(Date, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_by: Mapped[str | None] = mapped_column(String(120), nullable=True)


class ServiceAssignment(Base):
    __tablename__ = "service_assignments"
    __table_args__ = (
        UniqueConstraint("service_id", "name", name="uq_service_assignments_service_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_id: Mapped[int] = mapped_column(Integer, index=True)
    service_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    name: Mapped[str] = mapped_column(String(120))
    normalized_name: Mapped[str] = mapped_column(String(120), index=True)


class ServicePrice(Base):
    __tablename__ = "service_prices"
    __table_args__ = (
        UniqueConstraint("service_id", "price_type", name="uq_service_prices_service_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_id: Mapped[int] = mapped_column(Integer, index=True)
    service_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)
    price_type: Mapped[str] = mapped_column(String(80))
    rate: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
