"""
Shared fixtures for the TartanTrips test suite.

Provides in-memory stand-ins for the record store, profiles, email and the
Redis claim tracker so services run without MongoDB, Redis or Resend.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import pytest

from tartantrips.exceptions import StoreFailure, ValidationError
from tartantrips.models.match import PoolJoin, PoolJoinStatus
from tartantrips.models.notification import MatchNotification
from tartantrips.models.profile import Profile
from tartantrips.models.trip import Direction, Trip, TripStatus
from tartantrips.services.compatibility import compute_window
from tartantrips.services.trip_store import DUPLICATE_TRIP_MESSAGE


# =============================================================================
# Factories
# =============================================================================

def make_trip(
    email: str,
    direction: str = Direction.DEPARTURE.value,
    flight_date: str = "2024-05-10",
    flight_time: str = "14:00",
    wait_until: Optional[str] = None,
    min_hours: Optional[float] = None,
    max_hours: Optional[float] = None,
    allowed: str = "Any",
    status: str = TripStatus.UNMATCHED.value,
    matches: Optional[dict] = None,
    created_at: Optional[datetime] = None,
    baseline: Optional[datetime] = None,
    trip_id: Optional[str] = None,
) -> Trip:
    """Build a trip with its window computed the way a save would."""
    start, end = compute_window(
        direction, flight_date, flight_time,
        wait_until=wait_until, min_hours=min_hours, max_hours=max_hours,
    )
    return Trip(
        trip_id=trip_id or str(uuid.uuid4()),
        user_email=email,
        direction=direction,
        flight_date=flight_date,
        flight_time=flight_time,
        willing_to_wait_until_time=wait_until,
        min_hours_before=min_hours,
        max_hours_before=max_hours,
        window_start=start,
        window_end=end,
        allowed_partner_sex=allowed,
        trip_status=status,
        matches=dict(matches or {}),
        created_at=created_at or datetime.now(timezone.utc),
        baseline_match_check_at=baseline,
    )


def make_profile(email: str, sex: Optional[str] = "Female", name: Optional[str] = None) -> Profile:
    return Profile(
        email=email,
        name=name or email.split("@")[0].title(),
        sex=sex,
        major="Computer Science",
        graduation_year="2026",
        phone="412-555-0100",
    )


# =============================================================================
# Fakes
# =============================================================================

class FakeTripStore:
    """
    Dict-backed TripStore. Every read returns a fresh copy so services only
    see what they actually persisted.
    """

    def __init__(self):
        self.trips: Dict[str, Trip] = {}
        self.notifications: List[MatchNotification] = []
        self.joins: Dict[str, PoolJoin] = {}
        self.fail_updates_for = set()
        self.fail_methods = set()
        self.writes: List[str] = []

    def _check(self, name: str):
        if name in self.fail_methods:
            raise StoreFailure(f"Database error during {name}")

    # helpers used by tests
    def add(self, *trips: Trip) -> None:
        for trip in trips:
            self.trips[trip.trip_id] = trip.model_copy(deep=True)

    def load(self, trip_id: str) -> Trip:
        return self.trips[trip_id].model_copy(deep=True)

    def slots(self, trip_id: str) -> dict:
        return dict(self.trips[trip_id].matches)

    # Trips
    async def find_candidates(self, direction, flight_date, exclude_owner) -> List[Trip]:
        self._check("find_candidates")
        return [
            trip.model_copy(deep=True) for trip in self.trips.values()
            if trip.direction == direction
            and trip.flight_date == flight_date
            and trip.user_email != exclude_owner
        ]

    async def get_trip(self, trip_id):
        self._check("get_trip")
        trip = self.trips.get(trip_id)
        return trip.model_copy(deep=True) if trip else None

    async def get_trips(self, trip_ids: Iterable[str]):
        self._check("get_trips")
        return {
            trip_id: self.trips[trip_id].model_copy(deep=True)
            for trip_id in trip_ids if trip_id in self.trips
        }

    async def find_trip_for_owner(self, user_email, direction, flight_date):
        for trip in self.trips.values():
            if (trip.user_email, trip.direction, trip.flight_date) == (
                user_email, direction, flight_date
            ):
                return trip.model_copy(deep=True)
        return None

    async def find_trips_for_owners(self, emails, direction, flight_date):
        wanted = set(emails)
        return {
            trip.user_email: trip.model_copy(deep=True)
            for trip in self.trips.values()
            if trip.user_email in wanted
            and trip.direction == direction
            and trip.flight_date == flight_date
        }

    async def list_owner_trips(self, user_email):
        owned = [t for t in self.trips.values() if t.user_email == user_email]
        owned.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in owned]

    async def insert_trip(self, trip: Trip) -> Trip:
        self._check("insert_trip")
        for existing in self.trips.values():
            if (existing.user_email, existing.direction, existing.flight_date) == (
                trip.user_email, trip.direction, trip.flight_date
            ):
                raise ValidationError(DUPLICATE_TRIP_MESSAGE)
        self.trips[trip.trip_id] = trip.model_copy(deep=True)
        return trip

    async def update_trip(self, trip_id, fields):
        self._check("update_trip")
        if trip_id in self.fail_updates_for:
            raise StoreFailure("Database error during update_trip")
        trip = self.trips.get(trip_id)
        if trip is None:
            return None
        update = dict(fields)
        if "matches" in update:
            update["matches"] = dict(update["matches"])
        self.trips[trip_id] = trip.model_copy(update=update, deep=True)
        self.writes.append(trip_id)
        return self.trips[trip_id].model_copy(deep=True)

    async def save_slots(self, trip: Trip) -> None:
        await self.update_trip(trip.trip_id, {
            "matches": dict(trip.matches),
            "trip_status": trip.trip_status,
            "updated_at": trip.updated_at,
        })

    async def delete_trip(self, trip_id):
        return self.trips.pop(trip_id, None) is not None

    async def set_baseline_if_missing(self, trip_id, when):
        self._check("set_baseline_if_missing")
        trip = self.trips.get(trip_id)
        if trip is None or trip.baseline_match_check_at is not None:
            return False
        self.trips[trip_id] = trip.model_copy(update={"baseline_match_check_at": when})
        return True

    # Notification ledger
    async def notification_exists(self, trip_id, matched_trip_id):
        self._check("notification_exists")
        return any(
            n.trip_id == trip_id and n.matched_trip_id == matched_trip_id
            for n in self.notifications
        )

    async def record_notification(self, record: MatchNotification):
        self._check("record_notification")
        if await self.notification_exists(record.trip_id, record.matched_trip_id):
            return False
        self.notifications.append(record)
        return True

    # Pool joins
    async def insert_pool_join(self, join: PoolJoin):
        self._check("insert_pool_join")
        self.joins[join.join_id] = join.model_copy(deep=True)
        return join

    async def update_pool_join(self, join: PoolJoin):
        self.joins[join.join_id] = join.model_copy(deep=True)

    async def find_pending_joins(self, trip_id):
        return [
            join.model_copy(deep=True) for join in self.joins.values()
            if join.status == PoolJoinStatus.PENDING
            and (trip_id in join.joiner_side or trip_id in join.host_side)
        ]


class FakeProfileService:
    def __init__(self, profiles: Optional[Iterable[Profile]] = None):
        self.profiles = {p.email: p for p in profiles or []}

    def add(self, *profiles: Profile) -> None:
        for profile in profiles:
            self.profiles[profile.email] = profile

    async def get_profile(self, email):
        return self.profiles.get(email)

    async def get_profiles(self, emails):
        return {e: self.profiles[e] for e in emails if e in self.profiles}


class FakeEmailService:
    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send(self, recipient, subject, body):
        if recipient in self.fail_for:
            return False
        self.sent.append((recipient, subject, body))
        return True


class FakeTracker:
    def __init__(self):
        self.claims = set()
        self.released = []

    async def claim(self, trip_id, matched_trip_id, ttl_hours=None):
        key = (trip_id, matched_trip_id)
        if key in self.claims:
            return False
        self.claims.add(key)
        return True

    async def release(self, trip_id, matched_trip_id):
        self.claims.discard((trip_id, matched_trip_id))
        self.released.append((trip_id, matched_trip_id))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    return FakeTripStore()


@pytest.fixture
def profiles():
    return FakeProfileService()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def an_hour_ago():
    return datetime.now(timezone.utc) - timedelta(hours=1)
