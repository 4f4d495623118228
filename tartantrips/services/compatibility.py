"""
Compatibility Filter

Pure functions deciding whether two trips can share a ride:
same direction and date, overlapping windows, and mutual partner consent.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from tartantrips.exceptions import ValidationError
from tartantrips.models.profile import Sex
from tartantrips.models.trip import Direction, PartnerFilter, Trip
from tartantrips.utils.timezone_utils import ensure_utc, parse_local_to_utc


# Category each restrictive filter admits
FILTER_CATEGORY = {
    PartnerFilter.MALE_ONLY.value: Sex.MALE.value,
    PartnerFilter.FEMALE_ONLY.value: Sex.FEMALE.value,
    PartnerFilter.NON_BINARY_ONLY.value: Sex.NON_BINARY.value,
}


def compute_window(
    direction: str,
    flight_date: str,
    flight_time: str,
    wait_until: Optional[str] = None,
    min_hours: Optional[float] = None,
    max_hours: Optional[float] = None,
    tz_offset_minutes: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    """
    Compute a trip's rendezvous window in UTC.

    Arrival: [arrival, wait-until], wait-until rolled to the next day when it
    is earlier than the arrival. No wait-until gives a point window.

    Departure: [flight - max_hours, flight - min_hours]. A missing minimum is
    0 and a missing maximum equals the minimum.

    Raises:
        ValidationError: Malformed date/time or inconsistent lead hours
    """
    try:
        flight_at = parse_local_to_utc(flight_date, flight_time, tz_offset_minutes)
    except (TypeError, ValueError):
        raise ValidationError("Flight date and time are required.")

    if direction == Direction.ARRIVAL:
        if not wait_until:
            return flight_at, flight_at
        try:
            wait_at = parse_local_to_utc(flight_date, wait_until, tz_offset_minutes)
        except ValueError:
            raise ValidationError("Willing-to-wait-until time is invalid.")
        if wait_at < flight_at:
            wait_at += timedelta(days=1)
        return flight_at, wait_at

    if direction == Direction.DEPARTURE:
        low = float(min_hours) if min_hours is not None else 0.0
        high = float(max_hours) if max_hours is not None else low
        if low < 0 or high < 0:
            raise ValidationError("Hours before flight must be positive.")
        if high < low:
            raise ValidationError(
                "Maximum hours before flight must be greater than minimum hours."
            )
        return flight_at - timedelta(hours=high), flight_at - timedelta(hours=low)

    raise ValidationError("Direction must be arriving to or departing from Pittsburgh.")


def window_for(trip: Trip) -> Optional[Tuple[datetime, datetime]]:
    if trip.window_start is None or trip.window_end is None:
        return None
    return ensure_utc(trip.window_start), ensure_utc(trip.window_end)


def windows_overlap(
    a: Optional[Tuple[datetime, datetime]], b: Optional[Tuple[datetime, datetime]]
) -> bool:
    """Closed-interval overlap; touching endpoints overlap, a missing window never does."""
    if a is None or b is None:
        return False
    return a[0] <= b[1] and a[1] >= b[0]


def allows_category(partner_filter: Optional[str], category: Optional[str]) -> bool:
    """Whether a partner filter admits an owner category."""
    if not partner_filter or partner_filter == PartnerFilter.ANY:
        return True
    wanted = FILTER_CATEGORY.get(partner_filter)
    return wanted is not None and category == wanted


def same_slot_day(trip_a: Trip, trip_b: Trip) -> bool:
    return trip_a.direction == trip_b.direction and trip_a.flight_date == trip_b.flight_date


def is_compatible(
    trip_a: Trip, category_a: Optional[str], trip_b: Trip, category_b: Optional[str]
) -> bool:
    """
    Decide whether two trips can share a ride.

    Symmetric: is_compatible(a, ca, b, cb) == is_compatible(b, cb, a, ca).
    """
    if not same_slot_day(trip_a, trip_b):
        return False

    if not windows_overlap(window_for(trip_a), window_for(trip_b)):
        return False

    return allows_category(trip_a.allowed_partner_sex, category_b) and allows_category(
        trip_b.allowed_partner_sex, category_a
    )
