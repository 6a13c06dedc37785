from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .availability import check_availability, free_workers, reconfirmation_flags
from .bookings import (
    booking_stats,
    booking_status,
    cancel_booking,
    create_booking,
    get_booking,
    list_booking_events,
    list_bookings,
    update_booking,
)
from .config import settings
from .core.actor import Actor, build_actor
from .core.clock import get_clock
from .db import get_db
from .errors import Conflict, Forbidden, NotFound, StoreUnavailable
from .leave import leave_conflicts, list_leaves, set_leave
from .models import Booking
from .remarks import pending_approvals, set_approval, submit_remarks
from .reports import cost_report, list_service_prices
from .roster import group_by_worker, list_assignments, service_workers
from .schemas import (
    ApprovalSet,
    AvailabilityOut,
    BookingCreate,
    BookingEventOut,
    BookingOut,
    BookingStatsOut,
    BookingUpdate,
    CostReportOut,
    LeaveConflictOut,
    LeaveOut,
    LeaveResultOut,
    LeaveSet,
    RemarksSet,
    ServicePriceOut,
    WorkerOut,
)

router = APIRouter(prefix="/api")


def get_actor(
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    return build_actor(x_actor_name, x_actor_role)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, Conflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail())
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, StoreUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _to_booking_out(b: Booking, now: datetime, needs_reconfirmation: bool = False) -> BookingOut:
    return BookingOut(
        id=b.id,
        service_id=b.service_id,
        service_name=b.service_name,
        worker_name=b.worker_name,
        start_time=b.start_time,
        end_time=b.end_time,
        status=booking_status(b, now),
        category=b.category,
        department=b.department,
        price_type=b.price_type,
        rate=float(b.rate) if b.rate is not None else None,
        remarks=b.remarks,
        remarks_status=b.remarks_status,
        created_by=b.created_by,
        assigned_by=b.assigned_by,
        created_at=b.created_at,
        updated_at=b.updated_at,
        cancelled_at=b.cancelled_at,
        needs_reconfirmation=needs_reconfirmation,
    )


def _to_booking_outs(db: Session, bookings: list[Booking], clock) -> list[BookingOut]:
    now = clock.now()
    flags = reconfirmation_flags(db, bookings)
    return [_to_booking_out(b, now, flags.get(b.id, False)) for b in bookings]


def _one_booking_out(db: Session, booking: Booking, clock) -> BookingOut:
    return _to_booking_outs(db, [booking], clock)[0]


@router.post("/bookings", response_model=BookingOut)
def add_booking(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    try:
        booking = create_booking(
            db,
            service_id=payload.service_id,
            service_name=payload.service_name,
            worker_name=payload.worker_name,
            start_time=payload.start_time,
            end_time=payload.end_time,
            category=payload.category,
            department=payload.department,
            price_type=payload.price_type,
            rate=payload.rate,
            remarks=payload.remarks,
            assigned_by=payload.assigned_by,
            actor=actor,
            clock=clock,
        )
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.get("/bookings", response_model=List[BookingOut])
def get_bookings(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    department: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    worker: Optional[str] = Query(default=None),
    service_id: Optional[int] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    include_cancelled: bool = Query(default=False),
    limit: int = Query(default=500, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    # Workers only ever see their own bookings.
    if not actor.is_admin:
        if not actor.key:
            return []
        worker = actor.name
    try:
        rows = list_bookings(
            db,
            status=status_filter,
            department=department,
            category=category,
            worker=worker,
            service_id=service_id,
            start_from=start,
            end_to=end,
            include_cancelled=include_cancelled,
            limit=min(limit, settings.LIST_LIMIT_MAX),
            clock=clock,
        )
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _to_booking_outs(db, rows, clock)


@router.get("/bookings/check", response_model=AvailabilityOut)
def check_booking_slot(
    service_id: int = Query(..., ge=1),
    start: datetime = Query(...),
    end: datetime = Query(...),
    worker_name: Optional[str] = Query(default=None),
    exclude_booking_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        result = check_availability(
            db,
            service_id,
            start,
            end,
            exclude_booking_id=exclude_booking_id,
            worker_name=worker_name,
        )
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return AvailabilityOut(**result.to_dict())


@router.get("/bookings/stats", response_model=BookingStatsOut)
def get_booking_stats(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    try:
        return BookingStatsOut(**booking_stats(db, clock=clock))
    except StoreUnavailable as exc:
        raise _http_error(exc)


@router.get("/bookings/free-manpower", response_model=List[WorkerOut])
def get_free_manpower(
    service_id: int = Query(..., ge=1),
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
):
    try:
        return [WorkerOut(**w) for w in free_workers(db, service_id, start, end)]
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_one_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    try:
        booking = get_booking(db, booking_id)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.put("/bookings/{booking_id}", response_model=BookingOut)
def put_booking(
    booking_id: int,
    payload: BookingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        booking = update_booking(db, booking_id, patch, actor=actor, clock=clock)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.delete("/bookings/{booking_id}", response_model=BookingOut)
def remove_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    try:
        booking = cancel_booking(db, booking_id, actor=actor, clock=clock)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.get("/bookings/{booking_id}/history", response_model=List[BookingEventOut])
def booking_history(
    booking_id: int,
    db: Session = Depends(get_db),
):
    try:
        rows = list_booking_events(db, booking_id)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return [
        BookingEventOut(
            id=row.id,
            booking_id=row.booking_id,
            action=row.action,
            from_status=row.from_status,
            to_status=row.to_status,
            actor=row.actor,
            note=row.note,
            created_at=row.created_at,
        )
        for row in rows
    ]


@router.put("/bookings/{booking_id}/remarks", response_model=BookingOut)
def put_booking_remarks(
    booking_id: int,
    payload: RemarksSet,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    try:
        booking = submit_remarks(db, booking_id, payload.remarks, actor=actor, clock=clock)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.put("/bookings/{booking_id}/approval", response_model=BookingOut)
def put_booking_approval(
    booking_id: int,
    payload: ApprovalSet,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    try:
        booking = set_approval(db, booking_id, payload.status, actor=actor, clock=clock)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return _one_booking_out(db, booking, clock)


@router.get("/notifications", response_model=List[BookingOut])
def get_notifications(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    try:
        rows = pending_approvals(db)
    except StoreUnavailable as exc:
        raise _http_error(exc)
    return _to_booking_outs(db, rows, clock)


@router.put("/manpower/leave", response_model=LeaveResultOut)
def put_manpower_leave(
    payload: LeaveSet,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    clock=Depends(get_clock),
):
    try:
        result = set_leave(db, payload.name, payload.leave_date, actor=actor, clock=clock)
    except (ValueError, StoreUnavailable) as exc:
        raise _http_error(exc)
    return LeaveResultOut(
        normalized_name=result.normalized_name,
        display_name=result.display_name,
        leave_date=result.leave_date,
        previous_leave_date=result.previous_leave_date,
        affected_service_ids=result.affected_service_ids,
        affected_booking_ids=result.affected_booking_ids,
    )


@router.get("/manpower/leave", response_model=List[LeaveOut])
def get_manpower_leaves(db: Session = Depends(get_db)):
    try:
        rows = list_leaves(db)
    except StoreUnavailable as exc:
        raise _http_error(exc)
    return [
        LeaveOut(
            normalized_name=row.normalized_name,
            display_name=row.display_name,
            leave_date=row.leave_date,
            updated_at=row.updated_at,
            updated_by=row.updated_by,
        )
        for row in rows
    ]


@router.get("/manpower/leave/conflicts", response_model=List[LeaveConflictOut])
def get_manpower_leave_conflicts(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    try:
        rows = leave_conflicts(db, clock=clock)
    except StoreUnavailable as exc:
        raise _http_error(exc)
    return [
        LeaveConflictOut(
            booking_id=booking.id,
            service_id=booking.service_id,
            worker_name=booking.worker_name,
            start_time=booking.start_time,
            end_time=booking.end_time,
            leave_date=leave.leave_date,
        )
        for booking, leave in rows
    ]


@router.get("/manpower", response_model=List[WorkerOut])
def get_manpower(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        workers = group_by_worker(list_assignments(db))
    except StoreUnavailable as exc:
        raise _http_error(exc)
    if not actor.is_admin:
        workers = [w for w in workers if w["normalized_name"] == actor.key]
    return [WorkerOut(**w) for w in workers]


@router.get("/services/{service_id}/manpower", response_model=List[WorkerOut])
def get_service_manpower(service_id: int, db: Session = Depends(get_db)):
    try:
        return [WorkerOut(**w) for w in service_workers(db, service_id)]
    except StoreUnavailable as exc:
        raise _http_error(exc)


@router.get("/service-prices", response_model=List[ServicePriceOut])
def get_service_prices(
    category: Optional[str] = Query(default=None),
    price_type: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        rows = list_service_prices(db, category=category, price_type=price_type, search=search)
    except StoreUnavailable as exc:
        raise _http_error(exc)
    return [
        ServicePriceOut(
            id=row.id,
            service_id=row.service_id,
            service_name=row.service_name,
            category=row.category,
            price_type=row.price_type,
            rate=float(row.rate),
        )
        for row in rows
    ]


@router.get("/report/cost", response_model=CostReportOut)
def get_cost_report(
    category: Optional[str] = Query(default=None),
    department: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        report = cost_report(db, category=category, department=department, start=start, end=end)
    except StoreUnavailable as exc:
        raise _http_error(exc)
    return CostReportOut(
        total_hours=round(float(report["total_hours"]), 4),
        total_amount=float(report["total_amount"]),
        lines=[
            {
                "booking_id": b.id,
                "service_id": b.service_id,
                "service_name": b.service_name,
                "worker_name": b.worker_name,
                "category": b.category,
                "department": b.department,
                "price_type": b.price_type,
                "start_time": b.start_time,
                "end_time": b.end_time,
                "hours": round(float(hours), 4),
                "amount": float(amount),
            }
            for (b, hours, amount) in report["lines"]
        ],
        by_service=[
            {
                "service_id": row["service_id"],
                "service_name": row["service_name"],
                "bookings": row["bookings"],
                "hours": round(float(row["hours"]), 4),
                "amount": float(row["amount"]),
            }
            for row in report["by_service"]
        ],
    )
