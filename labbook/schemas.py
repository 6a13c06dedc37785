from datetime import date, datetime

from pydantic import BaseModel, Field, validator


class BookingCreate(BaseModel):
    service_id: int = Field(ge=1)
    service_name: str | None = Field(default=None, max_length=160)
    worker_name: str | None = Field(default=None, max_length=120)
    start_time: datetime
    end_time: datetime
    category: str | None = Field(default=None, max_length=80)
    department: str | None = Field(default=None, max_length=120)
    price_type: str | None = Field(default=None, max_length=80)
    rate: float | None = Field(default=None, ge=0)
    remarks: str | None = Field(default=None, max_length=2000)
    assigned_by: str | None = Field(default=None, max_length=120)


class BookingUpdate(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    worker_name: str | None = Field(default=None, max_length=120)
    service_name: str | None = Field(default=None, max_length=160)
    category: str | None = Field(default=None, max_length=80)
    department: str | None = Field(default=None, max_length=120)
    price_type: str | None = Field(default=None, max_length=80)
    rate: float | None = Field(default=None, ge=0)
    remarks: str | None = Field(default=None, max_length=2000)
    remarks_status: str | None = Field(default=None, max_length=16)


class BookingOut(BaseModel):
    id: int
    service_id: int
    service_name: str | None = None
    worker_name: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    category: str | None = None
    department: str | None = None
    price_type: str | None = None
    rate: float | None = None
    remarks: str | None = None
    remarks_status: str
    created_by: str | None = None
    assigned_by: str | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None
    needs_reconfirmation: bool = False


class AvailabilityOut(BaseModel):
    available: bool
    conflicting_booking_id: int | None = None
    reason: str | None = None
    on_leave: bool = False
    worker_key: str | None = None
    leave_date: date | None = None


class BookingStatsOut(BaseModel):
    total: int
    scheduled: int
    in_progress: int
    completed: int
    cancelled: int


class BookingEventOut(BaseModel):
    id: int
    booking_id: int
    action: str
    from_status: str | None = None
    to_status: str | None = None
    actor: str | None = None
    note: str | None = None
    created_at: datetime


class RemarksSet(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)


class ApprovalSet(BaseModel):
    status: str = Field(min_length=2, max_length=16)


class LeaveSet(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    leave_date: date | None = None

    @validator("name")
    @classmethod
    def validate_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value


class LeaveResultOut(BaseModel):
    normalized_name: str
    display_name: str
    leave_date: date | None = None
    previous_leave_date: date | None = None
    affected_service_ids: list[int]
    affected_booking_ids: list[int]


class LeaveOut(BaseModel):
    normalized_name: str
    display_name: str
    leave_date: date
    updated_at: datetime
    updated_by: str | None = None


class LeaveConflictOut(BaseModel):
    booking_id: int
    service_id: int
    worker_name: str | None = None
    start_time: datetime
    end_time: datetime
    leave_date: date


class WorkerOut(BaseModel):
    normalized_name: str
    name: str
    variants: list[str]
    service_ids: list[int]


class ServicePriceOut(BaseModel):
    id: int
    service_id: int
    service_name: str | None = None
    category: str | None = None
    price_type: str
    rate: float


class CostLineOut(BaseModel):
    booking_id: int
    service_id: int
    service_name: str | None = None
    worker_name: str | None = None
    category: str | None = None
    department: str | None = None
    price_type: str | None = None
    start_time: datetime
    end_time: datetime
    hours: float
    amount: float


class CostByServiceOut(BaseModel):
    service_id: int
    service_name: str | None = None
    bookings: int
    hours: float
    amount: float


class CostReportOut(BaseModel):
    total_hours: float
    total_amount: float
    lines: list[CostLineOut]
    by_service: list[CostByServiceOut]
