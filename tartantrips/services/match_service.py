"""
Match Service

The request / accept / deny / withdraw / remove protocol between trips.

Pairwise flow:
    request  -> requester holds request_sent, target holds request_received
    accept   -> both matched
    deny / withdraw -> both cleared
    remove   -> matched pair cleared

Pool joins: when either side of an accepted request already has confirmed
partners, every rider pair across the two groups is put into
partner_approval_needed and a PoolJoin record tracks whose approval is still
outstanding. The join finalizes (all those slots become matched) once every
confirmed partner has approved, and is rolled back as soon as anyone denies
or the joiner withdraws. Riders confirmed into either group while a join is
pending are pulled into it on the next approval and must approve as well.

Writes are applied one trip at a time. A failed write surfaces StoreFailure
with earlier writes committed; reconcile_pair repairs what is left on the
next action touching the pair.
"""

import logging
import uuid
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from tartantrips.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from tartantrips.models.match import MatchAction, MatchStatus, PoolJoin, PoolJoinStatus
from tartantrips.models.trip import Trip
from tartantrips.services.compatibility import same_slot_day
from tartantrips.services.match_ledger import MatchLedger
from tartantrips.services.status_service import StatusService
from tartantrips.services.trip_store import TripStore
from tartantrips.utils.timezone_utils import utc_now


logger = logging.getLogger(__name__)

SENT = MatchStatus.REQUEST_SENT
RECEIVED = MatchStatus.REQUEST_RECEIVED
APPROVAL = MatchStatus.PARTNER_APPROVAL_NEEDED
MATCHED = MatchStatus.MATCHED


class MatchService:
    """
    Match protocol between trips sharing a direction and date.
    """

    def __init__(
        self,
        store: Optional[TripStore] = None,
        ledger: Optional[MatchLedger] = None,
        status_service: Optional[StatusService] = None,
    ):
        self.store = store or TripStore()
        self.ledger = ledger or MatchLedger()
        self.status_service = status_service or StatusService(self.store, self.ledger)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def handle_action(
        self,
        identity: str,
        action: Optional[str],
        trip_id: Optional[str],
        matched_trip_id: Optional[str],
    ) -> dict:
        """
        Apply one protocol action.

        trip_id is always the caller's own trip, except for remove where the
        caller may own either trip.

        Raises:
            ValidationError: Missing fields, unknown action, or invalid transition
            NotFoundError: Trip or expected relationship missing
            AuthorizationError: Caller does not own the trip it acts for
            CapacityExceeded: A trip would exceed the slot cap
            StoreFailure: A write failed part way through
        """
        if not action or not trip_id or not matched_trip_id:
            raise ValidationError("action, tripId, matchedTripId are required")

        try:
            action = MatchAction(action)
        except ValueError:
            raise ValidationError("Unsupported action")

        if trip_id == matched_trip_id:
            raise ValidationError("A trip cannot match with itself.")

        trips = await self.store.get_trips([trip_id, matched_trip_id])
        trip = trips.get(trip_id)
        other = trips.get(matched_trip_id)
        if not trip or not other:
            raise NotFoundError("Trips not found")

        if action == MatchAction.REMOVE:
            if identity not in (trip.user_email, other.user_email):
                raise AuthorizationError("Not authorized")
        elif trip.user_email != identity:
            raise AuthorizationError("Not authorized")

        if trip.user_email == other.user_email:
            raise ValidationError("You cannot match with your own trip.")
        if not same_slot_day(trip, other):
            raise ValidationError("Trips must be for the same direction and date.")

        await self.reconcile_pair(trip, other)

        logger.info(f"{identity} -> {action.value} trip={trip_id} matched={matched_trip_id}")

        if action == MatchAction.REQUEST:
            await self.request(trip, other)
        elif action == MatchAction.WITHDRAW:
            await self.withdraw(trip, other)
        elif action == MatchAction.ACCEPT:
            await self.accept(trip, other)
        elif action == MatchAction.DENY:
            await self.deny(trip, other)
        else:
            await self.remove(trip, other, identity)

        return {"ok": True}

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile_pair(self, trip_a: Trip, trip_b: Trip) -> List[Trip]:
        """Repair and persist the mirror slots between two trips."""
        changed = self.ledger.reconcile(trip_a, trip_b)
        if changed:
            await self._persist(changed)
        return changed

    # =========================================================================
    # Transitions
    # =========================================================================

    async def request(self, requester: Trip, target: Trip) -> None:
        sent = requester.matches.get(target.user_email)
        received = target.matches.get(requester.user_email)

        if sent == SENT and received == RECEIVED:
            return
        if sent == RECEIVED:
            raise ValidationError("This rider already sent you a request. Accept it instead.")
        if sent or received:
            raise ValidationError("You are already connected with this trip.")

        # Both sides are checked before either is touched
        self.ledger.ensure_capacity(requester, [target.user_email])
        self.ledger.ensure_capacity(target, [requester.user_email])

        self.ledger.assign(requester, target.user_email, SENT)
        self.ledger.assign(target, requester.user_email, RECEIVED)
        await self._persist([requester, target])

    async def withdraw(self, requester: Trip, target: Trip) -> None:
        status = requester.matches.get(target.user_email)
        if status not in (SENT, APPROVAL):
            raise NotFoundError("Match not found")

        join = await self._find_join(requester, target)
        if status == APPROVAL:
            if join is None:
                raise NotFoundError("Match not found")
            if join.joiner_trip_id != requester.trip_id:
                raise ValidationError(
                    "Only the rider who asked to join can withdraw. Deny the request instead."
                )

        self.ledger.release(requester, target.user_email)
        self.ledger.release(target, requester.user_email)
        await self._persist([requester, target])

        if join is not None:
            await self._abandon_join(join, requester, target)

        await self._clear_partner_approvals(requester, target)

    async def accept(self, target: Trip, requester: Trip) -> None:
        status = target.matches.get(requester.user_email)

        if status == MATCHED:
            return

        if status == RECEIVED:
            existing = await self._find_join(target, requester)
            if existing is not None:
                # An earlier accept stopped part way; finish laying its slots
                trips = await self._join_trips(existing, target, requester)
                await self._lay_join_slots(existing, trips)
                return

            host_partners = await self._confirmed_partners(target)
            joiner_partners = await self._confirmed_partners(requester)

            if not host_partners and not joiner_partners:
                self.ledger.assign(target, requester.user_email, MATCHED)
                self.ledger.assign(requester, target.user_email, MATCHED)
                await self._persist([target, requester])
                logger.info(f"Trips {target.trip_id} and {requester.trip_id} matched")
                return

            await self._open_join(requester, joiner_partners, target, host_partners)
            return

        if status == APPROVAL:
            join = await self._find_join(target, requester)
            if join is None:
                raise NotFoundError("Match not found")
            await self._approve(join, target)
            return

        raise NotFoundError("Match not found")

    async def deny(self, target: Trip, requester: Trip) -> None:
        status = target.matches.get(requester.user_email)

        if status == RECEIVED:
            join = await self._find_join(target, requester)
            self.ledger.release(target, requester.user_email)
            self.ledger.release(requester, target.user_email)
            await self._persist([target, requester])
            if join is not None:
                await self._abandon_join(join, target, requester)
            return

        if status == APPROVAL:
            join = await self._find_join(target, requester)
            if join is None:
                raise NotFoundError("Match not found")
            if join.joiner_trip_id == target.trip_id:
                raise ValidationError("Use withdraw to cancel your own request.")
            await self._abandon_join(join, target, requester)
            return

        raise NotFoundError("Match not found")

    async def remove(self, trip: Trip, other: Trip, identity: str) -> None:
        if (
            trip.matches.get(other.user_email) != MATCHED
            and other.matches.get(trip.user_email) != MATCHED
        ):
            raise NotFoundError("Match not found")

        # Caller's side is cleared first
        first, second = (trip, other)
        if identity == other.user_email:
            first, second = (other, trip)

        self.ledger.release(first, second.user_email)
        self.ledger.release(second, first.user_email)
        await self._persist([first, second])
        logger.info(f"Trips {trip.trip_id} and {other.trip_id} unmatched")

        # A pending join counted on this pair being confirmed
        for join in await self.store.find_pending_joins(trip.trip_id):
            if other.trip_id in join.trip_ids:
                await self._abandon_join(join, first, second)

    async def detach_trip(self, trip: Trip) -> None:
        """Clear every relationship a trip holds before it is deleted."""
        for join in await self.store.find_pending_joins(trip.trip_id):
            await self._abandon_join(join, trip)

        peers = await self.store.find_trips_for_owners(
            list(trip.matches), trip.direction, trip.flight_date
        )
        changed: List[Trip] = []
        for email in list(trip.matches):
            self.ledger.release(trip, email)
            peer = peers.get(email)
            if peer is not None and self.ledger.release(peer, trip.user_email):
                changed.append(peer)
        if changed:
            await self._persist(changed)

    # =========================================================================
    # Pool joins
    # =========================================================================

    async def _open_join(
        self,
        joiner: Trip,
        joiner_partners: List[Trip],
        host: Trip,
        host_partners: List[Trip],
    ) -> PoolJoin:
        trips: Dict[str, Trip] = {}
        for trip in [host, joiner] + host_partners + joiner_partners:
            trips.setdefault(trip.trip_id, trip)

        joiner_side = list(dict.fromkeys([joiner.trip_id] + [t.trip_id for t in joiner_partners]))
        host_side = list(dict.fromkeys([host.trip_id] + [t.trip_id for t in host_partners]))

        pairs = [
            (u, v) for u, v in self._pairs(joiner_side, host_side, trips)
            if not (u.matches.get(v.user_email) == MATCHED
                    and v.matches.get(u.user_email) == MATCHED)
        ]

        # Every new slot must fit before any trip is written
        self._ensure_pair_capacity(pairs, trips)

        join = PoolJoin(
            join_id=str(uuid.uuid4()),
            joiner_trip_id=joiner.trip_id,
            host_trip_id=host.trip_id,
            joiner_side=joiner_side,
            host_side=host_side,
            pending_approvals=[
                trip_id for trip_id in trips
                if trip_id not in (joiner.trip_id, host.trip_id)
            ],
        )
        await self.store.insert_pool_join(join)
        logger.info(
            f"Pool join {join.join_id}: trip {joiner.trip_id} joining {host.trip_id}, "
            f"awaiting {len(join.pending_approvals)} approval(s)"
        )

        await self._lay_join_slots(join, trips)

        if not join.pending_approvals:
            await self._finalize_join(join, trips)
        return join

    async def _lay_join_slots(self, join: PoolJoin, trips: Dict[str, Trip]) -> None:
        changed: List[Trip] = []
        for u, v in self._pairs(join.joiner_side, join.host_side, trips):
            if u.matches.get(v.user_email) == MATCHED and v.matches.get(u.user_email) == MATCHED:
                continue
            if self.ledger.assign(u, v.user_email, APPROVAL):
                changed.append(u)
            if self.ledger.assign(v, u.user_email, APPROVAL):
                changed.append(v)
        await self._persist(self._host_first(join, changed))

    async def _approve(self, join: PoolJoin, voter: Trip) -> None:
        if voter.trip_id == join.host_trip_id:
            return
        if voter.trip_id == join.joiner_trip_id:
            raise ValidationError("Waiting for the riders already in this group to approve.")

        trips = await self._join_trips(join, voter)
        absorbed = await self._absorb_new_members(join, trips)

        voted = voter.trip_id in join.pending_approvals
        if voted:
            join.pending_approvals.remove(voter.trip_id)
            join.approvals.append(voter.trip_id)
        if absorbed or voted:
            await self.store.update_pool_join(join)
            logger.info(
                f"Pool join {join.join_id}: approved by {voter.trip_id}, "
                f"{len(join.pending_approvals)} remaining"
            )

        if not join.pending_approvals:
            await self._finalize_join(join, trips)

    async def _absorb_new_members(self, join: PoolJoin, trips: Dict[str, Trip]) -> bool:
        """
        Pull riders who were confirmed into either group after the join
        opened into it. Each newcomer gets partner_approval_needed slots with
        the other side and must approve before the join can finalize.

        Raises:
            CapacityExceeded: A newcomer's slots would not fit (no slots laid)
        """
        newcomers: List[str] = []
        for side, anchor_id in (
            (join.joiner_side, join.joiner_trip_id),
            (join.host_side, join.host_trip_id),
        ):
            anchor = trips.get(anchor_id)
            if anchor is None:
                continue
            for partner in await self._confirmed_partners(anchor):
                if partner.trip_id in trips:
                    continue
                trips[partner.trip_id] = partner
                side.append(partner.trip_id)
                newcomers.append(partner.trip_id)

        if not newcomers:
            return False

        pairs = [
            (u, v) for u, v in self._pairs(join.joiner_side, join.host_side, trips)
            if (u.trip_id in newcomers or v.trip_id in newcomers)
            and not (u.matches.get(v.user_email) == MATCHED
                     and v.matches.get(u.user_email) == MATCHED)
        ]
        self._ensure_pair_capacity(pairs, trips)

        join.pending_approvals.extend(newcomers)
        logger.info(
            f"Pool join {join.join_id}: {len(newcomers)} rider(s) joined a side "
            f"while pending, awaiting their approval"
        )
        await self._lay_join_slots(join, trips)
        return True

    async def _finalize_join(self, join: PoolJoin, trips: Dict[str, Trip]) -> None:
        changed: List[Trip] = []
        for u, v in self._pairs(join.joiner_side, join.host_side, trips):
            u_status = u.matches.get(v.user_email)
            v_status = v.matches.get(u.user_email)
            # A cleared slot means someone left; never resurrect it
            if u_status not in (APPROVAL, MATCHED) or v_status not in (APPROVAL, MATCHED):
                continue
            if self.ledger.assign(u, v.user_email, MATCHED):
                changed.append(u)
            if self.ledger.assign(v, u.user_email, MATCHED):
                changed.append(v)

        await self._persist(self._host_first(join, changed))

        join.status = PoolJoinStatus.FINALIZED.value
        join.resolved_at = utc_now()
        await self.store.update_pool_join(join)
        logger.info(f"Pool join {join.join_id} finalized")

    async def _abandon_join(self, join: PoolJoin, *known: Trip) -> None:
        """Roll back every partner_approval_needed slot the join created."""
        trips = await self._join_trips(join, *known)
        changed: List[Trip] = []
        for u, v in self._pairs(join.joiner_side, join.host_side, trips):
            if u.matches.get(v.user_email) == APPROVAL:
                self.ledger.release(u, v.user_email)
                changed.append(u)
            if v.matches.get(u.user_email) == APPROVAL:
                self.ledger.release(v, u.user_email)
                changed.append(v)

        await self._persist(list(known) + changed)

        join.status = PoolJoinStatus.ABANDONED.value
        join.resolved_at = utc_now()
        await self.store.update_pool_join(join)
        logger.info(f"Pool join {join.join_id} abandoned")

    async def _clear_partner_approvals(self, requester: Trip, target: Trip) -> None:
        """
        Clear partner_approval_needed slots toward target held by the
        requester's confirmed partners, and their mirrors on target.
        """
        partners = await self._confirmed_partners(requester)
        changed: List[Trip] = []
        for partner in partners:
            if partner.matches.get(target.user_email) == APPROVAL:
                self.ledger.release(partner, target.user_email)
                changed.append(partner)
                if target.matches.get(partner.user_email) == APPROVAL:
                    self.ledger.release(target, partner.user_email)
                    changed.append(target)
        if changed:
            await self._persist(changed)

    async def _find_join(self, trip: Trip, other: Trip) -> Optional[PoolJoin]:
        """Pending join with the two trips on opposite sides."""
        for join in await self.store.find_pending_joins(trip.trip_id):
            if (trip.trip_id in join.joiner_side and other.trip_id in join.host_side) or (
                trip.trip_id in join.host_side and other.trip_id in join.joiner_side
            ):
                return join
        return None

    async def _join_trips(self, join: PoolJoin, *known: Trip) -> Dict[str, Trip]:
        """Load every trip in a join, preferring the in-memory copies given."""
        held = {trip.trip_id: trip for trip in known}
        missing = [trip_id for trip_id in join.trip_ids if trip_id not in held]
        trips = await self.store.get_trips(missing) if missing else {}
        trips.update(held)
        return trips

    @staticmethod
    def _pairs(
        joiner_side: Iterable[str], host_side: Iterable[str], trips: Dict[str, Trip]
    ) -> List[Tuple[Trip, Trip]]:
        host_side = list(host_side)
        pairs = []
        for u_id in joiner_side:
            for v_id in host_side:
                if u_id == v_id or u_id not in trips or v_id not in trips:
                    continue
                pairs.append((trips[u_id], trips[v_id]))
        return pairs

    def _ensure_pair_capacity(
        self, pairs: List[Tuple[Trip, Trip]], trips: Dict[str, Trip]
    ) -> None:
        new_peers: Dict[str, List[str]] = defaultdict(list)
        for u, v in pairs:
            new_peers[u.trip_id].append(v.user_email)
            new_peers[v.trip_id].append(u.user_email)
        for trip_id, emails in new_peers.items():
            self.ledger.ensure_capacity(trips[trip_id], emails)

    @staticmethod
    def _host_first(join: PoolJoin, trips: List[Trip]) -> List[Trip]:
        rank = {join.host_trip_id: 0, join.joiner_trip_id: 1}
        return sorted(trips, key=lambda trip: rank.get(trip.trip_id, 2))

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _confirmed_partners(self, trip: Trip) -> List[Trip]:
        """Peer trips holding a matched slot with this trip, repaired on read."""
        emails = self.ledger.matched_peers(trip)
        if not emails:
            return []

        found = await self.store.find_trips_for_owners(emails, trip.direction, trip.flight_date)
        partners = []
        for email in emails:
            partner = found.get(email)
            if partner is None:
                continue
            await self.reconcile_pair(trip, partner)
            if trip.matches.get(email) == MATCHED:
                partners.append(partner)
        return partners

    async def _persist(self, trips: Iterable[Trip]) -> None:
        """Write slot ledgers one trip at a time, in the order given."""
        ordered: List[Trip] = []
        seen = set()
        for trip in trips:
            if trip.trip_id not in seen:
                seen.add(trip.trip_id)
                ordered.append(trip)

        self.status_service.refresh_derived_status(ordered)
        now = utc_now()
        for trip in ordered:
            trip.updated_at = now
            await self.store.save_slots(trip)
