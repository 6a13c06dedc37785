from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")
_SECONDS_PER_HOUR = Decimal(3600)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def duration_hours(start_time: datetime, end_time: datetime) -> Decimal:
    seconds = Decimal(str((end_time - start_time).total_seconds()))
    return seconds / _SECONDS_PER_HOUR


def lookup_rate(rate_table: dict, service_id: int, price_type: str | None) -> Decimal:
    rate = rate_table.get((int(service_id), (price_type or "").strip()))
    if rate is None:
        return Decimal(0)
    return Decimal(str(rate))


def booking_cost(booking, rate_table: dict) -> Decimal:
    """Line cost of one booking: hours times the (service, price type) rate.

    A missing rate prices the booking at zero instead of failing.
    """
    hours = duration_hours(booking.start_time, booking.end_time)
    rate = lookup_rate(rate_table, booking.service_id, booking.price_type)
    return to_money(hours * rate)


def cost_totals(bookings, rate_table: dict) -> dict:
    total_hours = Decimal(0)
    total_amount = Decimal(0)
    by_service: dict[int, dict] = {}
    lines = []
    for booking in bookings:
        hours = duration_hours(booking.start_time, booking.end_time)
        amount = booking_cost(booking, rate_table)
        total_hours += hours
        total_amount += amount
        lines.append((booking, hours, amount))

        row = by_service.setdefault(
            int(booking.service_id),
            {
                "service_id": int(booking.service_id),
                "service_name": booking.service_name,
                "bookings": 0,
                "hours": Decimal(0),
                "amount": Decimal(0),
            },
        )
        row["bookings"] += 1
        row["hours"] += hours
        row["amount"] += amount

    return {
        "lines": lines,
        "total_hours": total_hours,
        "total_amount": to_money(total_amount),
        "by_service": [by_service[k] for k in sorted(by_service)],
    }
