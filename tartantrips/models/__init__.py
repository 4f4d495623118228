"""TartanTrips Models Package"""

from tartantrips.models.trip import (
    Trip, TripCreate, TripProgressUpdate, LandedTripCreate, TripResponse,
    Direction, PartnerFilter, TripStatus, LandedStatus, MeetupStatus,
)
from tartantrips.models.match import (
    MatchStatus, MatchAction, PoolJoin, PoolJoinStatus,
    MatchActionRequest, StatusSyncRequest, NotificationCheckRequest,
)
from tartantrips.models.notification import MatchNotification
from tartantrips.models.profile import Profile, Sex

__all__ = [
    "Trip", "TripCreate", "TripProgressUpdate", "LandedTripCreate", "TripResponse",
    "Direction", "PartnerFilter", "TripStatus", "LandedStatus", "MeetupStatus",
    "MatchStatus", "MatchAction", "PoolJoin", "PoolJoinStatus",
    "MatchActionRequest", "StatusSyncRequest", "NotificationCheckRequest",
    "MatchNotification",
    "Profile", "Sex",
]
