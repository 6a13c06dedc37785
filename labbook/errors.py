class LabBookError(Exception):
    """Base class for every error the booking engine raises on purpose."""


class InvalidRange(LabBookError, ValueError):
    def __init__(self, message: str = "start_time must be before end_time"):
        super().__init__(message)


class InvalidDate(LabBookError, ValueError):
    pass


class NotFound(LabBookError, ValueError):
    pass


class Forbidden(LabBookError, ValueError):
    pass


class Conflict(LabBookError, ValueError):
    """Availability check failed.

    Carries the blocking booking id when another booking holds the slot, or
    only a reason (e.g. ``"worker on leave"``) when the block is not a booking.
    """

    def __init__(self, reason: str, booking_id: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.booking_id = booking_id

    def to_detail(self) -> dict:
        return {"reason": self.reason, "conflicting_booking_id": self.booking_id}


class StoreUnavailable(LabBookError, RuntimeError):
    pass
