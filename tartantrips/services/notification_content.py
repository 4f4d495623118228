"""
TartanTrips Notification Content

Email templates for new-match alerts and the "contact your match" draft.
"""

from datetime import datetime
from typing import Optional

from tartantrips.models.trip import Direction
from tartantrips.utils.timezone_utils import normalize_time, parse_date, parse_time


# =============================================================================
# NEW MATCH - sent by the new-match notifier
# =============================================================================
NEW_MATCH_SUBJECT = "✈️ New TartanTrips match available"

NEW_MATCH_BODY = (
    "Hi {name},\n\n"
    "A new CMU student with a compatible trip just matched with you on TartanTrips.\n\n"
    "Log in to view your updated matches and coordinate if this one works for you.\n\n"
    "— TartanTrips\n"
)

# =============================================================================
# CONTACT DRAFT - prefilled email from a rider to a confirmed match
# =============================================================================
CONTACT_SUBJECT = "Airport ride share – CMU trip on {date}"

CONTACT_BODY = (
    "Hi {match_name},\n\n"
    "I saw that we matched on TartanTrips and that we’re both {movement} Pittsburgh\n"
    "around {time} on {date}.\n\n"
    "Would you be interested in sharing a ride {leg} the airport?\n"
    "If so, I’m happy to coordinate details.\n\n"
    "Best,\n"
    "{name}\n"
)


def format_time_12h(time_str: Optional[str]) -> str:
    """'14:05' -> '2:05 PM'."""
    normalized = normalize_time(time_str)
    if not normalized:
        return "TBD"
    parsed = parse_time(normalized)
    hour = parsed.hour % 12 or 12
    suffix = "PM" if parsed.hour >= 12 else "AM"
    return f"{hour}:{parsed.minute:02d} {suffix}"


def format_long_date(date_str: str) -> str:
    """'2024-05-10' -> 'May 10, 2024'."""
    day = parse_date(date_str)
    return f"{datetime(day.year, day.month, day.day):%B} {day.day}, {day.year}"


def new_match_email(name: Optional[str]) -> tuple[str, str]:
    """Subject and body for a new-match alert."""
    return NEW_MATCH_SUBJECT, NEW_MATCH_BODY.format(name=name or "there")


def contact_draft(
    direction: str,
    flight_date: str,
    flight_time: str,
    match_name: Optional[str],
    sender_name: Optional[str],
) -> dict:
    """Prefilled subject and body for emailing a confirmed match."""
    arriving = direction == Direction.ARRIVAL
    date_label = format_long_date(flight_date)
    return {
        "subject": CONTACT_SUBJECT.format(date=flight_date),
        "body": CONTACT_BODY.format(
            match_name=match_name or "there",
            movement="arriving in" if arriving else "departing from",
            time=format_time_12h(flight_time),
            date=date_label,
            leg="from" if arriving else "to",
            name=sender_name or "",
        ),
    }
