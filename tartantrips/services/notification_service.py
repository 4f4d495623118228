"""
Notification Service

New-match notifier: emails riders when a compatible trip appears after
they started looking. Runs synchronously after a trip is saved.
"""

import logging
from typing import Dict, Optional

from redis.exceptions import RedisError

from tartantrips.exceptions import AuthorizationError, NotFoundError, StoreFailure
from tartantrips.models.notification import MatchNotification
from tartantrips.models.profile import Profile
from tartantrips.models.trip import Trip
from tartantrips.services.candidate_service import CandidateService
from tartantrips.services.email_service import EmailService
from tartantrips.services.notification_content import new_match_email
from tartantrips.services.notification_tracker import (
    NotificationTracker,
    get_notification_tracker,
)
from tartantrips.services.trip_store import TripStore
from tartantrips.utils.timezone_utils import ensure_utc, utc_now


logger = logging.getLogger(__name__)


class MatchNotifier:
    """
    At most one email per directed trip pair.

    For trip X with baseline B and each compatible candidate C:
    - X's owner hears about C when C was created after B;
    - C's owner hears about X when X was created after C's baseline
      (or C's creation time if C never ran a check).
    A record in the notification ledger suppresses that direction for good.
    """

    def __init__(
        self,
        store: Optional[TripStore] = None,
        candidates: Optional[CandidateService] = None,
        email_service: Optional[EmailService] = None,
        tracker: Optional[NotificationTracker] = None,
    ):
        self.store = store or TripStore()
        self.candidates = candidates or CandidateService(self.store)
        self.email_service = email_service or EmailService()
        self.tracker = tracker or get_notification_tracker()

    async def check_new_matches(self, trip_id: str, identity: Optional[str] = None) -> dict:
        """
        Run the new-match check for a trip.

        Args:
            trip_id: Trip to check
            identity: When given, the caller must own the trip

        Raises:
            NotFoundError: Trip does not exist
            AuthorizationError: Caller does not own the trip
            StoreFailure: The trip or its candidates could not be read
        """
        trip = await self.store.get_trip(trip_id)
        if not trip:
            raise NotFoundError("Trip not found")
        if identity is not None and trip.user_email != identity:
            raise AuthorizationError("Not authorized")

        baseline = await self._establish_baseline(trip)

        compatible, profiles = await self.candidates.compatible_trips(trip)

        notifications = []
        for candidate in compatible:
            candidate_created = ensure_utc(candidate.created_at)

            if baseline and candidate_created > baseline:
                if await self._notify(trip, candidate, profiles):
                    notifications.append(
                        {"tripId": trip.trip_id, "matchedTripId": candidate.trip_id}
                    )

            other_baseline = candidate.baseline_match_check_at or candidate_created
            if ensure_utc(trip.created_at) > ensure_utc(other_baseline):
                if await self._notify(candidate, trip, profiles):
                    notifications.append(
                        {"tripId": candidate.trip_id, "matchedTripId": trip.trip_id}
                    )

        logger.info(
            f"New-match check for trip {trip_id}: {len(compatible)} compatible, "
            f"{len(notifications)} notified"
        )
        return {
            "notified": len(notifications),
            "notifications": notifications,
            "summary": {
                "tripId": trip.trip_id,
                "baselineMatchCheckAt": baseline.isoformat() if baseline else None,
                "compatibleTrips": len(compatible),
            },
        }

    async def _establish_baseline(self, trip: Trip):
        """Existing baseline, or now if this call managed to set it, else None."""
        if trip.baseline_match_check_at:
            return ensure_utc(trip.baseline_match_check_at)

        now = utc_now()
        try:
            if await self.store.set_baseline_if_missing(trip.trip_id, now):
                trip.baseline_match_check_at = now
                return now
            # Another check got there first
            current = await self.store.get_trip(trip.trip_id)
        except StoreFailure as e:
            logger.warning(f"Could not set baseline for trip {trip.trip_id}: {e.message}")
            return None

        if current and current.baseline_match_check_at:
            return ensure_utc(current.baseline_match_check_at)
        return None

    async def _notify(
        self, recipient: Trip, about: Trip, profiles: Dict[str, Profile]
    ) -> bool:
        """Email recipient's owner about `about`. Returns True when sent."""
        try:
            if await self.store.notification_exists(recipient.trip_id, about.trip_id):
                return False
        except StoreFailure as e:
            logger.error(
                f"Ledger lookup failed for {recipient.trip_id} -> {about.trip_id}: {e.message}"
            )
            return False

        claimed = await self._claim(recipient.trip_id, about.trip_id)
        if not claimed:
            return False

        profile = profiles.get(recipient.user_email)
        subject, body = new_match_email(profile.name if profile else None)
        sent = await self.email_service.send(recipient.user_email, subject, body)

        if not sent:
            await self._release(recipient.trip_id, about.trip_id)
            return False

        try:
            await self.store.record_notification(
                MatchNotification(trip_id=recipient.trip_id, matched_trip_id=about.trip_id)
            )
        except StoreFailure as e:
            # The claim stays until it expires, holding off an immediate resend
            logger.error(
                f"Sent but could not record notification "
                f"{recipient.trip_id} -> {about.trip_id}: {e.message}"
            )
        return True

    async def _claim(self, trip_id: str, matched_trip_id: str) -> bool:
        try:
            return await self.tracker.claim(trip_id, matched_trip_id)
        except RedisError as e:
            # The ledger check above still guards sequential sends
            logger.warning(f"Notification claim unavailable: {e}")
            return True

    async def _release(self, trip_id: str, matched_trip_id: str) -> None:
        try:
            await self.tracker.release(trip_id, matched_trip_id)
        except RedisError as e:
            logger.warning(f"Could not release notification claim: {e}")
