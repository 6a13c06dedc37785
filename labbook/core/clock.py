from datetime import date, datetime, timedelta, timezone


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SystemClock:
    def now(self) -> datetime:
        return utc_now_naive()

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock frozen at a given instant; tests move it with ``advance``."""

    def __init__(self, at: datetime):
        self._at = to_utc_naive(at)

    def now(self) -> datetime:
        return self._at

    def today(self) -> date:
        return self._at.date()

    def set(self, at: datetime) -> None:
        self._at = to_utc_naive(at)

    def advance(self, **delta) -> None:
        self._at = self._at + timedelta(**delta)


system_clock = SystemClock()


def get_clock():
    return system_clock
