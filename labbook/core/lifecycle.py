from datetime import datetime

SCHEDULED = "scheduled"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED)

# Names used by the dashboard's filters.
STATUS_ALIASES = {
    "upcoming": SCHEDULED,
    "ongoing": IN_PROGRESS,
    "in-progress": IN_PROGRESS,
    "inprogress": IN_PROGRESS,
    "canceled": CANCELLED,
}


def derive_status(
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    cancelled: bool = False,
) -> str:
    if cancelled:
        return CANCELLED
    if now < start_time:
        return SCHEDULED
    if now <= end_time:
        return IN_PROGRESS
    return COMPLETED


def parse_status_filter(raw: str | None) -> str | None:
    value = (raw or "").strip().lower()
    if not value or value == "all":
        return None
    value = STATUS_ALIASES.get(value, value)
    if value not in BOOKING_STATUSES:
        raise ValueError(f"Invalid status filter: {raw}")
    return value
