"""
Trip Model

Defines the trip schema for MongoDB persistence. Flight dates and times are
entered on the local clock; the derived rendezvous window is stored in UTC.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Direction(str, Enum):
    """Which way the trip crosses the airport."""

    ARRIVAL = "Arriving to Pittsburgh"
    DEPARTURE = "Departing from Pittsburgh"


class PartnerFilter(str, Enum):
    """Who the owner is willing to share a ride with."""

    ANY = "Any"
    MALE_ONLY = "Male only"
    FEMALE_ONLY = "Female only"
    NON_BINARY_ONLY = "Non-binary only"


class TripStatus(str, Enum):
    """Rider-facing status of a trip."""

    UNMATCHED = "Unmatched (looking for matches)"
    MATCHED_LOOKING = "Matched and still looking"
    MATCHED_SATISFIED = "Matched and satisfied"


class LandedStatus(str, Enum):
    NOT_LANDED = "Not landed yet"
    LANDED = "Landed"


class MeetupStatus(str, Enum):
    LOOKING = "Looking for match"
    MET_UP = "Met up"


class Trip(BaseModel):
    """
    Trip model for MongoDB.

    Fields:
    - trip_id: Unique UUID for the trip
    - user_email: Owner identity
    - direction: Arrival or departure
    - flight_date / flight_time: Local clock, YYYY-MM-DD and HH:MM
    - willing_to_wait_until_time: Arrivals, local HH:MM (may roll past midnight)
    - min_hours_before / max_hours_before: Departures, lead time before the flight
    - window_start / window_end: Derived rendezvous window (UTC)
    - allowed_partner_sex: Partner filter
    - trip_status: Rider-facing status
    - landed_status / meetup_status: Arrivals only
    - matches: Ordered mapping of peer email -> match slot status
    - baseline_match_check_at: First new-match check, set once
    """

    trip_id: str = Field(..., description="Unique trip ID")
    user_email: str = Field(..., description="Owner email")
    direction: Direction
    flight_date: str = Field(..., description="Flight date (YYYY-MM-DD)")
    flight_time: str = Field(..., description="Flight time (HH:MM)")
    willing_to_wait_until_time: Optional[str] = None
    min_hours_before: Optional[float] = None
    max_hours_before: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    allowed_partner_sex: Optional[PartnerFilter] = Field(default=PartnerFilter.ANY)
    trip_status: TripStatus = Field(default=TripStatus.UNMATCHED)
    landed_status: Optional[LandedStatus] = None
    meetup_status: Optional[MeetupStatus] = None
    matches: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    baseline_match_check_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    @property
    def is_arrival(self) -> bool:
        return self.direction == Direction.ARRIVAL


class TripCreate(BaseModel):
    """Data required to create or replace a trip."""

    direction: Direction
    flight_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    flight_time: str = Field(..., pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    willing_to_wait_until_time: Optional[str] = Field(
        None, pattern=r"^\d{2}:\d{2}(:\d{2})?$"
    )
    min_hours_before: Optional[float] = None
    max_hours_before: Optional[float] = None
    allowed_partner_sex: PartnerFilter = PartnerFilter.ANY

    class Config:
        use_enum_values = True


class TripProgressUpdate(BaseModel):
    """Arrival progress toggles."""

    landed_status: Optional[LandedStatus] = None
    meetup_status: Optional[MeetupStatus] = None

    class Config:
        use_enum_values = True


class LandedTripCreate(BaseModel):
    """Quick arrival trip for riders already at the airport."""

    wait_minutes: int = Field(..., description="Minutes willing to wait")


class TripResponse(BaseModel):
    """Response model for a trip owned by the caller."""

    trip_id: str
    user_email: str
    direction: str
    flight_date: str
    flight_time: str
    willing_to_wait_until_time: Optional[str]
    min_hours_before: Optional[float]
    max_hours_before: Optional[float]
    window_start: Optional[datetime]
    window_end: Optional[datetime]
    allowed_partner_sex: Optional[str]
    trip_status: str
    landed_status: Optional[str]
    meetup_status: Optional[str]
    matches: list[dict]
    created_at: datetime
    complete: bool
