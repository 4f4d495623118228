"""
Trip Service

Trip creation, editing and removal. Every save recomputes the window and
runs the new-match notifier; a notifier failure never fails the save.
"""

import logging
import uuid
from datetime import timedelta
from typing import List, Optional

from tartantrips.config import settings
from tartantrips.exceptions import (
    AuthorizationError,
    NotFoundError,
    TartanTripsError,
    ValidationError,
)
from tartantrips.models.trip import (
    Direction,
    LandedStatus,
    LandedTripCreate,
    MeetupStatus,
    PartnerFilter,
    Trip,
    TripCreate,
    TripProgressUpdate,
    TripStatus,
)
from tartantrips.services.compatibility import compute_window
from tartantrips.services.match_service import MatchService
from tartantrips.services.notification_service import MatchNotifier
from tartantrips.services.profile_service import ProfileService
from tartantrips.services.status_service import StatusService
from tartantrips.services.trip_store import DUPLICATE_TRIP_MESSAGE, TripStore
from tartantrips.utils.timezone_utils import (
    ensure_utc,
    parse_local_to_utc,
    to_local,
    utc_now,
)


logger = logging.getLogger(__name__)


def is_complete(trip: Trip) -> bool:
    """A trip is complete once its window has fully elapsed."""
    if trip.window_end is None:
        return False
    return ensure_utc(trip.window_end) < utc_now()


class TripService:
    """
    Trip lifecycle management service.
    """

    def __init__(
        self,
        store: Optional[TripStore] = None,
        profiles: Optional[ProfileService] = None,
        notifier: Optional[MatchNotifier] = None,
        match_service: Optional[MatchService] = None,
        status_service: Optional[StatusService] = None,
    ):
        self.store = store or TripStore()
        self.profiles = profiles or ProfileService()
        self.notifier = notifier or MatchNotifier(self.store)
        self.match_service = match_service or MatchService(self.store)
        self.status_service = status_service or StatusService(self.store)

    # =========================================================================
    # Create / update / delete
    # =========================================================================

    async def create_trip(self, identity: str, data: TripCreate) -> Trip:
        """
        Create a trip for the caller.

        SECURITY: The owner is always the authenticated caller.

        Raises:
            ValidationError: Incomplete profile, bad window, or duplicate trip
        """
        await self._require_complete_profile(
            identity, "Please complete your profile before saving a trip."
        )

        window_start, window_end = self._window(data)

        if await self.store.find_trip_for_owner(identity, data.direction, data.flight_date):
            raise ValidationError(DUPLICATE_TRIP_MESSAGE)

        arriving = data.direction == Direction.ARRIVAL
        trip = Trip(
            trip_id=str(uuid.uuid4()),
            user_email=identity,
            direction=data.direction,
            flight_date=data.flight_date,
            flight_time=data.flight_time,
            willing_to_wait_until_time=data.willing_to_wait_until_time if arriving else None,
            min_hours_before=None if arriving else data.min_hours_before,
            max_hours_before=None if arriving else data.max_hours_before,
            window_start=window_start,
            window_end=window_end,
            allowed_partner_sex=data.allowed_partner_sex,
            trip_status=TripStatus.UNMATCHED,
            landed_status=LandedStatus.NOT_LANDED if arriving else None,
            meetup_status=MeetupStatus.LOOKING if arriving else None,
        )
        await self.store.insert_trip(trip)
        logger.info(f"Trip {trip.trip_id} created by {identity}")

        await self._run_notifier(trip.trip_id)
        return trip

    async def update_trip(self, identity: str, trip_id: str, data: TripCreate) -> Trip:
        """
        Replace the editable fields of a trip.

        Raises:
            NotFoundError / AuthorizationError: Not the caller's trip
            ValidationError: Completed trip, bad window, or duplicate trip
        """
        trip = await self._owned_trip(identity, trip_id)
        if is_complete(trip):
            raise ValidationError("Completed trips can no longer be edited.")

        window_start, window_end = self._window(data)

        moved = data.direction != trip.direction or data.flight_date != trip.flight_date
        if moved:
            if trip.matches:
                raise ValidationError(
                    "Remove your matches and requests before changing the direction or date."
                )
            existing = await self.store.find_trip_for_owner(
                identity, data.direction, data.flight_date
            )
            if existing and existing.trip_id != trip_id:
                raise ValidationError(DUPLICATE_TRIP_MESSAGE)

        arriving = data.direction == Direction.ARRIVAL
        fields = {
            "direction": data.direction,
            "flight_date": data.flight_date,
            "flight_time": data.flight_time,
            "willing_to_wait_until_time": data.willing_to_wait_until_time if arriving else None,
            "min_hours_before": None if arriving else data.min_hours_before,
            "max_hours_before": None if arriving else data.max_hours_before,
            "window_start": window_start,
            "window_end": window_end,
            "allowed_partner_sex": data.allowed_partner_sex,
            "updated_at": utc_now(),
        }
        if arriving:
            fields["landed_status"] = trip.landed_status or LandedStatus.NOT_LANDED.value
            fields["meetup_status"] = trip.meetup_status or MeetupStatus.LOOKING.value
        else:
            fields["landed_status"] = None
            fields["meetup_status"] = None

        updated = await self.store.update_trip(trip_id, fields)
        if updated is None:
            raise NotFoundError("Trip not found")
        logger.info(f"Trip {trip_id} updated by {identity}")

        await self._run_notifier(trip_id)
        return updated

    async def delete_trip(self, identity: str, trip_id: str) -> None:
        """
        Delete a trip, releasing its partners first.

        Raises:
            ValidationError: The trip is complete
        """
        trip = await self._owned_trip(identity, trip_id)
        if is_complete(trip):
            raise ValidationError("Completed trips cannot be deleted.")

        await self.match_service.detach_trip(trip)
        await self.store.delete_trip(trip_id)
        logger.info(f"Trip {trip_id} deleted by {identity}")

    async def list_trips(self, identity: str) -> List[dict]:
        """Caller's trips, newest first."""
        trips = await self.store.list_owner_trips(identity)
        return [self.to_response(trip) for trip in trips]

    async def update_progress(
        self, identity: str, trip_id: str, data: TripProgressUpdate
    ) -> Trip:
        """Landed / met-up toggles for arrival trips."""
        trip = await self._owned_trip(identity, trip_id)
        if not trip.is_arrival:
            raise ValidationError("Only arrival trips track landing and meetup progress.")

        fields = {
            key: value for key, value in data.model_dump().items() if value is not None
        }
        if not fields:
            raise ValidationError("Nothing to update.")
        fields["updated_at"] = utc_now()

        updated = await self.store.update_trip(trip_id, fields)
        if updated is None:
            raise NotFoundError("Trip not found")
        return updated

    # =========================================================================
    # Landed at PIT
    # =========================================================================

    async def create_landed_trip(self, identity: str, data: LandedTripCreate) -> dict:
        """
        Quick arrival trip for a rider already at the airport.

        Window is [now, now + wait]. Returns same-day arrivals that land at
        least the cutoff before the window ends, split into those already on
        the ground and those landing soon.
        """
        if data.wait_minutes is None or data.wait_minutes <= 0:
            raise ValidationError("Please enter how long you're willing to wait (in minutes).")

        await self._require_complete_profile(
            identity, "Please complete your profile before continuing."
        )

        now = utc_now().replace(second=0, microsecond=0)
        window_end = now + timedelta(minutes=data.wait_minutes)
        local_now = to_local(now)
        flight_date = local_now.strftime("%Y-%m-%d")

        if await self.store.find_trip_for_owner(identity, Direction.ARRIVAL.value, flight_date):
            raise ValidationError(DUPLICATE_TRIP_MESSAGE)

        trip = Trip(
            trip_id=str(uuid.uuid4()),
            user_email=identity,
            direction=Direction.ARRIVAL,
            flight_date=flight_date,
            flight_time=local_now.strftime("%H:%M"),
            willing_to_wait_until_time=to_local(window_end).strftime("%H:%M"),
            window_start=now,
            window_end=window_end,
            allowed_partner_sex=PartnerFilter.ANY,
            trip_status=TripStatus.UNMATCHED,
            landed_status=LandedStatus.LANDED,
            meetup_status=MeetupStatus.LOOKING,
        )
        await self.store.insert_trip(trip)
        logger.info(f"Landed trip {trip.trip_id} created by {identity}")

        await self._run_notifier(trip.trip_id)

        cutoff = window_end - timedelta(minutes=settings.landed_candidate_cutoff_minutes)
        others = await self.store.find_candidates(Direction.ARRIVAL.value, flight_date, identity)
        profiles = await self.profiles.get_profiles([other.user_email for other in others])

        landed, landing_soon = [], []
        for other in others:
            try:
                arrives_at = parse_local_to_utc(other.flight_date, other.flight_time)
            except (TypeError, ValueError):
                continue
            if arrives_at > cutoff:
                continue
            profile = profiles.get(other.user_email)
            entry = {
                "trip_id": other.trip_id,
                "flight_time": other.flight_time,
                "arrives_at": arrives_at,
                "name": profile.name if profile else None,
                "sex": profile.sex if profile else None,
                "major": profile.major if profile else None,
                "graduation_year": profile.graduation_year if profile else None,
            }
            (landed if arrives_at <= now else landing_soon).append(entry)

        return {
            "trip": self.to_response(trip),
            "landed": landed,
            "landing_soon": landing_soon,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def to_response(self, trip: Trip) -> dict:
        data = trip.model_dump(exclude={"updated_at", "baseline_match_check_at"})
        data["trip_status"] = self.status_service.derive_status(trip)
        data["matches"] = [
            {"email": email, "status": status} for email, status in trip.matches.items()
        ]
        data["complete"] = is_complete(trip)
        return data

    @staticmethod
    def _window(data: TripCreate):
        return compute_window(
            data.direction,
            data.flight_date,
            data.flight_time,
            wait_until=data.willing_to_wait_until_time,
            min_hours=data.min_hours_before,
            max_hours=data.max_hours_before,
        )

    async def _owned_trip(self, identity: str, trip_id: str) -> Trip:
        trip = await self.store.get_trip(trip_id)
        if not trip:
            raise NotFoundError("Trip not found")
        if trip.user_email != identity:
            raise AuthorizationError("Not authorized")
        return trip

    async def _require_complete_profile(self, identity: str, message: str) -> None:
        profile = await self.profiles.get_profile(identity)
        if not profile or not profile.is_complete:
            raise ValidationError(message)

    async def _run_notifier(self, trip_id: str) -> None:
        try:
            await self.notifier.check_new_matches(trip_id)
        except TartanTripsError as e:
            logger.warning(f"New-match check failed for trip {trip_id}: {e.message}")
