"""
Status Synchronizer

Keeps the rider-facing trip status consistent across a confirmed group.
"""

import logging
from typing import Iterable, List, Optional

from tartantrips.exceptions import AuthorizationError, NotFoundError, ValidationError
from tartantrips.models.match import MatchStatus
from tartantrips.models.trip import Trip, TripStatus
from tartantrips.services.match_ledger import MatchLedger
from tartantrips.services.trip_store import TripStore
from tartantrips.utils.timezone_utils import utc_now


logger = logging.getLogger(__name__)


class StatusService:
    """
    Trip status propagation.

    Status is partly derived: any matched slot means the trip is at least
    "Matched and still looking", and a trip without matched slots is
    "Unmatched". Owners choose between the two matched values, and that
    choice is copied one hop to every confirmed partner.
    """

    def __init__(self, store: Optional[TripStore] = None, ledger: Optional[MatchLedger] = None):
        self.store = store or TripStore()
        self.ledger = ledger or MatchLedger()

    def derive_status(self, trip: Trip) -> str:
        has_match = bool(self.ledger.matched_peers(trip))
        current = trip.trip_status or TripStatus.UNMATCHED

        if has_match and current == TripStatus.UNMATCHED:
            return TripStatus.MATCHED_LOOKING.value
        if not has_match and current != TripStatus.UNMATCHED:
            return TripStatus.UNMATCHED.value
        return TripStatus(current).value

    def apply_derived_status(self, trip: Trip) -> bool:
        """Update trip.trip_status in place. Returns True when it changed."""
        derived = self.derive_status(trip)
        if derived == trip.trip_status:
            return False
        trip.trip_status = derived
        return True

    def refresh_derived_status(self, trips: Iterable[Trip]) -> List[Trip]:
        """Derive status for trips touched by a protocol transition."""
        return [trip for trip in trips if self.apply_derived_status(trip)]

    async def sync_status(self, identity: str, trip_id: Optional[str], status: Optional[str]) -> int:
        """
        Set a trip's status and copy it to every confirmed partner.

        Returns:
            Number of trips updated, the caller's own trip included

        Raises:
            ValidationError: Missing fields or a status that contradicts the slots
            NotFoundError: Trip does not exist
            AuthorizationError: Caller does not own the trip
        """
        if not trip_id or not status:
            raise ValidationError("tripId and trip_status are required")

        try:
            status = TripStatus(status).value
        except ValueError:
            raise ValidationError("Unsupported trip status")

        trip = await self.store.get_trip(trip_id)
        if not trip:
            raise NotFoundError("Trip not found")
        if trip.user_email != identity:
            raise AuthorizationError("Not authorized")

        matched_emails = self.ledger.matched_peers(trip)
        if status == TripStatus.UNMATCHED and matched_emails:
            raise ValidationError(
                "This trip has a confirmed match. Remove the match before marking it unmatched."
            )
        if status != TripStatus.UNMATCHED and not matched_emails:
            raise ValidationError("You need a confirmed match before choosing a matched status.")

        peers = await self.store.find_trips_for_owners(
            matched_emails, trip.direction, trip.flight_date
        )
        # Only peers that confirm the match from their side are in the group
        targets = [trip] + [
            peer for peer in peers.values()
            if peer.matches.get(trip.user_email) == MatchStatus.MATCHED
        ]

        now = utc_now()
        for target in targets:
            await self.store.update_trip(
                target.trip_id, {"trip_status": status, "updated_at": now}
            )

        logger.info(f"Synced status '{status}' from trip {trip_id} to {len(targets) - 1} partner(s)")
        return len(targets)
