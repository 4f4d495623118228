"""
Match Slot Ledger

A trip's relationships to other trips live in ``Trip.matches``, an ordered
mapping of peer email -> MatchStatus. This is the only place slots are added
or removed, so the rideshare capacity cap is enforced here and nowhere else.
"""

import logging
from typing import Iterable, List, Optional

from tartantrips.config import settings
from tartantrips.exceptions import CapacityExceeded
from tartantrips.models.match import MatchStatus
from tartantrips.models.trip import Trip


logger = logging.getLogger(__name__)


class MatchLedger:
    """Slot bookkeeping for a single trip record."""

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity or settings.match_slot_capacity

    def find_slot(self, trip: Trip, peer: str) -> Optional[int]:
        """Index of the slot referencing peer, or None."""
        for index, email in enumerate(trip.matches):
            if email == peer:
                return index
        return None

    def find_empty_slot(self, trip: Trip) -> Optional[int]:
        """Index the next assignment would occupy, or None when full."""
        count = self.occupied_count(trip)
        return count if count < self.capacity else None

    def occupied_count(self, trip: Trip) -> int:
        return len(trip.matches)

    def status_of(self, trip: Trip, peer: str) -> Optional[str]:
        return trip.matches.get(peer)

    def peers_with_status(self, trip: Trip, status: MatchStatus) -> List[str]:
        return [email for email, value in trip.matches.items() if value == status]

    def matched_peers(self, trip: Trip) -> List[str]:
        return self.peers_with_status(trip, MatchStatus.MATCHED)

    def has_open_capacity(self, trip: Trip) -> bool:
        return self.find_empty_slot(trip) is not None

    def ensure_capacity(self, trip: Trip, new_peers: Iterable[str]) -> None:
        """
        Verify every peer in new_peers can be given a slot on trip.

        Peers that already hold a slot reuse it and cost nothing.

        Raises:
            CapacityExceeded: The assignments would exceed the cap
        """
        needed = {peer for peer in new_peers if peer not in trip.matches}
        if self.occupied_count(trip) + len(needed) > self.capacity:
            logger.info(
                f"Capacity check failed for trip {trip.trip_id}: "
                f"{self.occupied_count(trip)} occupied, {len(needed)} requested"
            )
            raise CapacityExceeded(
                f"Rideshare services only allow up to {self.capacity} riders. "
                "That’s the maximum."
            )

    def assign(self, trip: Trip, peer: str, status: MatchStatus) -> bool:
        """
        Set trip's slot toward peer, allocating one if needed.

        Returns True when the trip changed.

        Raises:
            CapacityExceeded: No empty slot remains (trip is left untouched)
        """
        value = MatchStatus(status).value
        if trip.matches.get(peer) == value:
            return False
        self.ensure_capacity(trip, [peer])
        trip.matches[peer] = value
        return True

    def release(self, trip: Trip, peer: str) -> bool:
        """Clear trip's slot toward peer. Returns True when a slot was cleared."""
        if peer not in trip.matches:
            return False
        del trip.matches[peer]
        return True

    def reconcile(self, trip_a: Trip, trip_b: Trip) -> List[Trip]:
        """
        Repair the slots between two trips from both sides.

        A slot without a mirror is treated as no relationship and cleared.
        A matched slot whose mirror holds another status is the remains of an
        interrupted confirmation, so the mirror is promoted to matched.

        Returns the trips that changed (in memory only).
        """
        a_status = trip_a.matches.get(trip_b.user_email)
        b_status = trip_b.matches.get(trip_a.user_email)
        changed: List[Trip] = []

        if a_status and not b_status:
            self.release(trip_a, trip_b.user_email)
            changed.append(trip_a)
        elif b_status and not a_status:
            self.release(trip_b, trip_a.user_email)
            changed.append(trip_b)
        elif a_status == MatchStatus.MATCHED and b_status != MatchStatus.MATCHED:
            trip_b.matches[trip_a.user_email] = MatchStatus.MATCHED.value
            changed.append(trip_b)
        elif b_status == MatchStatus.MATCHED and a_status != MatchStatus.MATCHED:
            trip_a.matches[trip_b.user_email] = MatchStatus.MATCHED.value
            changed.append(trip_a)

        if changed:
            logger.warning(
                f"Reconciled slots between trips {trip_a.trip_id} and {trip_b.trip_id}: "
                f"{a_status!r}/{b_status!r}"
            )
        return changed
