"""
Candidate Service

Surfaces the trips a rider could share a ride with, closest flight time first.
"""

import logging
from typing import Dict, List, Optional, Tuple

from tartantrips.exceptions import AuthorizationError, NotFoundError
from tartantrips.models.match import MatchStatus
from tartantrips.models.profile import Profile
from tartantrips.models.trip import Trip, TripStatus
from tartantrips.services.compatibility import is_compatible
from tartantrips.services.match_ledger import MatchLedger
from tartantrips.services.notification_content import contact_draft
from tartantrips.services.profile_service import ProfileService
from tartantrips.services.status_service import StatusService
from tartantrips.services.trip_store import TripStore
from tartantrips.utils.timezone_utils import minutes_of_day, normalize_time


logger = logging.getLogger(__name__)


def category_of(profiles: Dict[str, Profile], email: str) -> Optional[str]:
    profile = profiles.get(email)
    return profile.sex if profile else None


def minutes_apart(anchor: Trip, other: Trip) -> int:
    return abs(minutes_of_day(anchor.flight_time) - minutes_of_day(other.flight_time))


def sort_by_proximity(anchor: Trip, trips: List[Trip]) -> List[Trip]:
    """Closest scheduled time first; ties keep input order."""
    return sorted(trips, key=lambda other: minutes_apart(anchor, other))


def build_pools(trips: List[Trip]) -> List[dict]:
    """
    Group trips into pools connected by mutual matched slots.

    Each pool keeps the order of ``trips``; pools are ordered by their
    first member.
    """
    by_email = {trip.user_email: trip for trip in trips}
    parent = {trip.trip_id: trip.trip_id for trip in trips}

    def find(trip_id: str) -> str:
        while parent[trip_id] != trip_id:
            parent[trip_id] = parent[parent[trip_id]]
            trip_id = parent[trip_id]
        return trip_id

    for trip in trips:
        for email, status in trip.matches.items():
            peer = by_email.get(email)
            if (
                peer is not None
                and status == MatchStatus.MATCHED
                and peer.matches.get(trip.user_email) == MatchStatus.MATCHED
            ):
                parent[find(trip.trip_id)] = find(peer.trip_id)

    groups: Dict[str, List[str]] = {}
    for trip in trips:
        groups.setdefault(find(trip.trip_id), []).append(trip.trip_id)

    pools = []
    for members in groups.values():
        kind = "single" if len(members) == 1 else "pair" if len(members) == 2 else "pool"
        pools.append({"kind": kind, "trip_ids": members})
    return pools


class CandidateService:
    """
    Candidate discovery for a trip.

    The anchor's own confirmed matches are listed separately from open
    candidates. Riders already engaged with others stay visible as long as
    they have room; capacity is enforced when someone acts, not here.
    """

    def __init__(
        self,
        store: Optional[TripStore] = None,
        profiles: Optional[ProfileService] = None,
        ledger: Optional[MatchLedger] = None,
        status_service: Optional[StatusService] = None,
    ):
        self.store = store or TripStore()
        self.profiles = profiles or ProfileService()
        self.ledger = ledger or MatchLedger()
        self.status_service = status_service or StatusService(self.store, self.ledger)

    async def compatible_trips(
        self, anchor: Trip
    ) -> Tuple[List[Trip], Dict[str, Profile]]:
        """
        Compatible trips for anchor, ignoring slot state, closest time first.

        Returns the trips and the profile map used to judge them.
        """
        others = await self.store.find_candidates(
            anchor.direction, anchor.flight_date, anchor.user_email
        )
        profiles = await self.profiles.get_profiles(
            [anchor.user_email] + [other.user_email for other in others]
        )
        anchor_category = category_of(profiles, anchor.user_email)
        compatible = [
            other for other in others
            if is_compatible(
                anchor, anchor_category, other, category_of(profiles, other.user_email)
            )
        ]
        return sort_by_proximity(anchor, compatible), profiles

    async def find_candidates(self, identity: str, trip_id: str) -> dict:
        """
        Candidates for one of the caller's trips.

        Raises:
            NotFoundError: Trip does not exist
            AuthorizationError: Caller does not own the trip
        """
        anchor = await self.store.get_trip(trip_id)
        if not anchor:
            raise NotFoundError("Trip not found")
        if anchor.user_email != identity:
            raise AuthorizationError("Not authorized")

        others = await self.store.find_candidates(
            anchor.direction, anchor.flight_date, anchor.user_email
        )
        await self._repair(anchor, others)

        profiles = await self.profiles.get_profiles(
            [anchor.user_email] + [other.user_email for other in others]
        )
        anchor_category = category_of(profiles, anchor.user_email)
        sender = profiles.get(anchor.user_email)

        matched: List[Trip] = []
        open_trips: List[Trip] = []
        for other in sort_by_proximity(anchor, others):
            status = anchor.matches.get(other.user_email)
            if status == MatchStatus.MATCHED:
                matched.append(other)
                continue

            category = category_of(profiles, other.user_email)
            if not category:
                continue
            if other.trip_status == TripStatus.MATCHED_SATISFIED:
                continue
            if not is_compatible(anchor, anchor_category, other, category):
                continue
            related = status is not None or anchor.user_email in other.matches
            if not related and not self.ledger.has_open_capacity(other):
                continue
            open_trips.append(other)

        return {
            "trip_id": anchor.trip_id,
            "matched": [
                self._entry(anchor, other, profiles, sender, confirmed=True)
                for other in matched
            ],
            "open": [
                self._entry(anchor, other, profiles, sender, confirmed=False)
                for other in open_trips
            ],
            "pools": build_pools(open_trips),
            "open_slots": self.ledger.capacity - self.ledger.occupied_count(anchor),
        }

    async def _repair(self, anchor: Trip, others: List[Trip]) -> None:
        """Reconcile the anchor's slots against every related peer."""
        changed: Dict[str, Trip] = {}
        for other in others:
            if other.user_email in anchor.matches or anchor.user_email in other.matches:
                for trip in self.ledger.reconcile(anchor, other):
                    changed[trip.trip_id] = trip

        for trip in self.status_service.refresh_derived_status(changed.values()):
            changed[trip.trip_id] = trip
        for trip in changed.values():
            await self.store.save_slots(trip)

    def _entry(
        self,
        anchor: Trip,
        other: Trip,
        profiles: Dict[str, Profile],
        sender: Optional[Profile],
        confirmed: bool,
    ) -> dict:
        profile = profiles.get(other.user_email)
        entry = {
            "trip_id": other.trip_id,
            "user_email": other.user_email,
            "direction": other.direction,
            "flight_date": other.flight_date,
            "flight_time": normalize_time(other.flight_time),
            "willing_to_wait_until_time": normalize_time(other.willing_to_wait_until_time) or None,
            "window_start": other.window_start,
            "window_end": other.window_end,
            "allowed_partner_sex": other.allowed_partner_sex,
            "trip_status": other.trip_status,
            "match_status": anchor.matches.get(other.user_email),
            "minutes_apart": minutes_apart(anchor, other),
            "profile": {
                "name": profile.name if profile else None,
                "sex": profile.sex if profile else None,
                "major": profile.major if profile else None,
                "graduation_year": profile.graduation_year if profile else None,
                "avatar_path": profile.avatar_path if profile else None,
            },
        }
        if confirmed:
            # Contact details are shared only inside a confirmed match
            entry["profile"]["phone"] = profile.phone if profile else None
            entry["contact"] = contact_draft(
                anchor.direction,
                anchor.flight_date,
                anchor.flight_time,
                profile.display_name if profile else other.user_email,
                sender.display_name if sender else anchor.user_email,
            )
        return entry
