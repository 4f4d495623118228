"""TartanTrips Routers Package"""

from tartantrips.routers import (
    trips,
    match_requests,
    trip_status,
    match_notifications,
)

__all__ = [
    "trips",
    "match_requests",
    "trip_status",
    "match_notifications",
]
