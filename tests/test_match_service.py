"""
Tests for the Match Service

Pairwise protocol, pool joins, failure repair and authorization.
"""

import pytest

from tartantrips.exceptions import (
    AuthorizationError,
    CapacityExceeded,
    NotFoundError,
    StoreFailure,
    ValidationError,
)
from tartantrips.models.match import PoolJoinStatus
from tartantrips.models.trip import TripStatus
from tartantrips.services.match_service import MatchService

from tests.conftest import make_trip


SENT = "request_sent"
RECEIVED = "request_received"
APPROVAL = "partner_approval_needed"
MATCHED = "matched"


async def act(service, trip, action, other, identity=None):
    return await service.handle_action(
        identity or trip.user_email, action, trip.trip_id, other.trip_id
    )


class TestPairwiseProtocol:
    """Tests for request / accept / deny / withdraw / remove between two trips."""

    @pytest.fixture
    def service(self, store):
        return MatchService(store)

    @pytest.fixture
    def pair(self, store):
        r = make_trip("r@andrew.cmu.edu")
        t = make_trip("t@andrew.cmu.edu")
        store.add(r, t)
        return r, t

    @pytest.mark.asyncio
    async def test_request_sets_mirrored_slots(self, service, store, pair):
        r, t = pair

        result = await act(service, r, "request", t)

        assert result == {"ok": True}
        assert store.slots(r.trip_id) == {t.user_email: SENT}
        assert store.slots(t.trip_id) == {r.user_email: RECEIVED}

    @pytest.mark.asyncio
    async def test_repeat_request_is_noop(self, service, store, pair):
        r, t = pair

        await act(service, r, "request", t)
        await act(service, r, "request", t)

        assert store.slots(r.trip_id) == {t.user_email: SENT}
        assert store.slots(t.trip_id) == {r.user_email: RECEIVED}

    @pytest.mark.asyncio
    async def test_counter_request_rejected(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)

        with pytest.raises(ValidationError) as exc:
            await act(service, t, "request", r)

        assert "Accept it instead" in exc.value.message

    @pytest.mark.asyncio
    async def test_accept_without_partners_matches_directly(self, service, store, pair):
        """R requests T, T has no matches: accept goes straight to matched."""
        r, t = pair
        await act(service, r, "request", t)

        await act(service, t, "accept", r)

        assert store.slots(r.trip_id) == {t.user_email: MATCHED}
        assert store.slots(t.trip_id) == {r.user_email: MATCHED}
        assert store.joins == {}

    @pytest.mark.asyncio
    async def test_match_derives_status(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)
        await act(service, t, "accept", r)

        assert store.load(r.trip_id).trip_status == TripStatus.MATCHED_LOOKING.value
        assert store.load(t.trip_id).trip_status == TripStatus.MATCHED_LOOKING.value

    @pytest.mark.asyncio
    async def test_repeat_accept_is_noop(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)
        await act(service, t, "accept", r)
        store.writes.clear()

        await act(service, t, "accept", r)

        assert store.writes == []

    @pytest.mark.asyncio
    async def test_accept_without_request_not_found(self, service, pair):
        r, t = pair

        with pytest.raises(NotFoundError):
            await act(service, t, "accept", r)

    @pytest.mark.asyncio
    async def test_deny_clears_both_slots(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)

        await act(service, t, "deny", r)

        assert store.slots(r.trip_id) == {}
        assert store.slots(t.trip_id) == {}

    @pytest.mark.asyncio
    async def test_withdraw_clears_both_slots(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)

        await act(service, r, "withdraw", t)

        assert store.slots(r.trip_id) == {}
        assert store.slots(t.trip_id) == {}

    @pytest.mark.asyncio
    async def test_withdraw_by_receiver_not_found(self, service, pair):
        r, t = pair
        await act(service, r, "request", t)

        with pytest.raises(NotFoundError):
            await act(service, t, "withdraw", r)

    @pytest.mark.asyncio
    async def test_remove_by_either_owner(self, service, store, pair):
        r, t = pair
        await act(service, r, "request", t)
        await act(service, t, "accept", r)
        store.writes.clear()

        # Owner of the matched trip acts on the pair as given
        await act(service, r, "remove", t, identity=t.user_email)

        assert store.slots(r.trip_id) == {}
        assert store.slots(t.trip_id) == {}
        assert store.writes == [t.trip_id, r.trip_id]
        assert store.load(t.trip_id).trip_status == TripStatus.UNMATCHED.value

    @pytest.mark.asyncio
    async def test_remove_without_match_not_found(self, service, pair):
        r, t = pair
        await act(service, r, "request", t)

        with pytest.raises(NotFoundError):
            await act(service, r, "remove", t)


class TestValidation:
    """Tests for request validation and ownership."""

    @pytest.fixture
    def service(self, store):
        return MatchService(store)

    @pytest.mark.asyncio
    async def test_missing_fields(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.handle_action("r@cmu.edu", "request", None, "x")

        assert exc.value.message == "action, tripId, matchedTripId are required"

    @pytest.mark.asyncio
    async def test_unknown_action(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.handle_action("r@cmu.edu", "poke", "a", "b")

        assert exc.value.message == "Unsupported action"

    @pytest.mark.asyncio
    async def test_self_match_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.handle_action("r@cmu.edu", "request", "a", "a")

    @pytest.mark.asyncio
    async def test_unknown_trip(self, service, store):
        r = make_trip("r@cmu.edu")
        store.add(r)

        with pytest.raises(NotFoundError):
            await service.handle_action(r.user_email, "request", r.trip_id, "missing")

    @pytest.mark.asyncio
    async def test_caller_must_own_trip(self, service, store):
        r = make_trip("r@cmu.edu")
        t = make_trip("t@cmu.edu")
        store.add(r, t)

        with pytest.raises(AuthorizationError):
            await act(service, r, "request", t, identity="intruder@cmu.edu")

        assert store.slots(r.trip_id) == {}

    @pytest.mark.asyncio
    async def test_remove_requires_owning_either_trip(self, service, store):
        r = make_trip("r@cmu.edu", matches={"t@cmu.edu": MATCHED})
        t = make_trip("t@cmu.edu", matches={"r@cmu.edu": MATCHED})
        store.add(r, t)

        with pytest.raises(AuthorizationError):
            await act(service, r, "remove", t, identity="intruder@cmu.edu")

    @pytest.mark.asyncio
    async def test_own_trips_cannot_match(self, service, store):
        a = make_trip("r@cmu.edu")
        b = make_trip("r@cmu.edu", flight_date="2024-05-11")
        store.add(a, b)

        with pytest.raises(ValidationError):
            await act(service, a, "request", b)

    @pytest.mark.asyncio
    async def test_different_date_rejected(self, service, store):
        r = make_trip("r@cmu.edu")
        t = make_trip("t@cmu.edu", flight_date="2024-05-11")
        store.add(r, t)

        with pytest.raises(ValidationError) as exc:
            await act(service, r, "request", t)

        assert exc.value.message == "Trips must be for the same direction and date."


class TestCapacity:
    """Tests for the six-rider cap."""

    @pytest.fixture
    def service(self, store):
        return MatchService(store)

    @pytest.mark.asyncio
    async def test_request_to_full_trip_rejected_without_writes(self, service, store):
        t = make_trip("t@cmu.edu", matches={f"p{i}@cmu.edu": RECEIVED for i in range(6)})
        r = make_trip("r@cmu.edu")
        store.add(r, t)

        with pytest.raises(CapacityExceeded):
            await act(service, r, "request", t)

        assert store.slots(r.trip_id) == {}
        assert len(store.slots(t.trip_id)) == 6
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_slots_fill_to_six_through_requests(self, service, store):
        """Six riders reach T one request at a time; the seventh is turned away."""
        t = make_trip("t@cmu.edu")
        riders = [make_trip(f"r{i}@cmu.edu") for i in range(7)]
        store.add(t, *riders)

        for rider in riders[:6]:
            await act(service, rider, "request", t)
            assert len(store.slots(t.trip_id)) <= 6
        await act(service, store.load(t.trip_id), "accept", riders[0])

        assert len(store.slots(t.trip_id)) == 6
        assert store.slots(t.trip_id)[riders[0].user_email] == MATCHED
        store.writes.clear()

        with pytest.raises(CapacityExceeded):
            await act(service, riders[6], "request", t)

        assert store.writes == []
        assert len(store.slots(t.trip_id)) == 6
        assert store.slots(riders[6].trip_id) == {}

    @pytest.mark.asyncio
    async def test_full_requester_rejected(self, service, store):
        r = make_trip("r@cmu.edu", matches={f"p{i}@cmu.edu": SENT for i in range(6)})
        t = make_trip("t@cmu.edu")
        store.add(r, t)

        with pytest.raises(CapacityExceeded):
            await act(service, r, "request", t)

        assert store.slots(t.trip_id) == {}


class TestPoolJoin:
    """Tests for joining an existing confirmed group."""

    @pytest.fixture
    def service(self, store):
        return MatchService(store)

    @pytest.fixture
    def group(self, store):
        """T and P are matched; R has requested T."""
        t = make_trip("t@cmu.edu", matches={"p@cmu.edu": MATCHED, "r@cmu.edu": RECEIVED},
                      status=TripStatus.MATCHED_LOOKING.value)
        p = make_trip("p@cmu.edu", matches={"t@cmu.edu": MATCHED},
                      status=TripStatus.MATCHED_LOOKING.value)
        r = make_trip("r@cmu.edu", matches={"t@cmu.edu": SENT})
        store.add(t, p, r)
        return t, p, r

    @pytest.mark.asyncio
    async def test_accept_into_group_needs_partner_approval(self, service, store, group):
        """T accepts R while matched with P: every new pair awaits approval."""
        t, p, r = group

        await act(service, t, "accept", r)

        assert store.slots(r.trip_id) == {t.user_email: APPROVAL, p.user_email: APPROVAL}
        assert store.slots(t.trip_id) == {p.user_email: MATCHED, r.user_email: APPROVAL}
        assert store.slots(p.trip_id) == {t.user_email: MATCHED, r.user_email: APPROVAL}

        (join,) = store.joins.values()
        assert join.pending_approvals == [p.trip_id]
        assert join.joiner_trip_id == r.trip_id

    @pytest.mark.asyncio
    async def test_partner_approval_finalizes(self, service, store, group):
        """Only after P approves do all three trips become matched."""
        t, p, r = group
        await act(service, t, "accept", r)

        await act(service, store.load(p.trip_id), "accept", r)

        assert store.slots(r.trip_id) == {t.user_email: MATCHED, p.user_email: MATCHED}
        assert store.slots(t.trip_id) == {p.user_email: MATCHED, r.user_email: MATCHED}
        assert store.slots(p.trip_id) == {t.user_email: MATCHED, r.user_email: MATCHED}
        assert store.load(r.trip_id).trip_status == TripStatus.MATCHED_LOOKING.value
        (join,) = store.joins.values()
        assert join.status == PoolJoinStatus.FINALIZED

    @pytest.mark.asyncio
    async def test_joiner_cannot_approve_itself(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        with pytest.raises(ValidationError):
            await act(service, store.load(r.trip_id), "accept", t)

    @pytest.mark.asyncio
    async def test_host_repeat_accept_is_noop(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        await act(service, store.load(t.trip_id), "accept", r)

        (join,) = store.joins.values()
        assert join.status == PoolJoinStatus.PENDING
        assert store.slots(r.trip_id)[t.user_email] == APPROVAL

    @pytest.mark.asyncio
    async def test_partner_deny_rolls_back_join(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        await act(service, store.load(p.trip_id), "deny", r)

        assert store.slots(r.trip_id) == {}
        assert store.slots(t.trip_id) == {p.user_email: MATCHED}
        assert store.slots(p.trip_id) == {t.user_email: MATCHED}
        (join,) = store.joins.values()
        assert join.status == PoolJoinStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_joiner_withdraw_clears_partner_slots(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        await act(service, store.load(r.trip_id), "withdraw", t)

        assert store.slots(r.trip_id) == {}
        assert store.slots(t.trip_id) == {p.user_email: MATCHED}
        assert store.slots(p.trip_id) == {t.user_email: MATCHED}

    @pytest.mark.asyncio
    async def test_partner_cannot_withdraw_for_joiner(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        with pytest.raises(ValidationError):
            await act(service, store.load(p.trip_id), "withdraw", r)

    @pytest.mark.asyncio
    async def test_removing_host_pair_abandons_pending_join(self, service, store, group):
        t, p, r = group
        await act(service, t, "accept", r)

        await act(service, store.load(t.trip_id), "remove", p)

        assert store.slots(t.trip_id) == {}
        assert store.slots(p.trip_id) == {}
        assert store.slots(r.trip_id) == {}

    @pytest.mark.asyncio
    async def test_two_groups_merge_after_every_partner_approves(self, service, store):
        """R (with Q) joins T (with P): both P and Q must approve."""
        t = make_trip("t@cmu.edu", matches={"p@cmu.edu": MATCHED, "r@cmu.edu": RECEIVED})
        p = make_trip("p@cmu.edu", matches={"t@cmu.edu": MATCHED})
        r = make_trip("r@cmu.edu", matches={"q@cmu.edu": MATCHED, "t@cmu.edu": SENT})
        q = make_trip("q@cmu.edu", matches={"r@cmu.edu": MATCHED})
        store.add(t, p, r, q)

        await act(service, t, "accept", r)

        (join,) = store.joins.values()
        assert sorted(join.pending_approvals) == sorted([p.trip_id, q.trip_id])
        assert store.slots(q.trip_id)[t.user_email] == APPROVAL

        await act(service, store.load(p.trip_id), "accept", r)
        assert store.slots(r.trip_id)[t.user_email] == APPROVAL

        await act(service, store.load(q.trip_id), "accept", t)

        for trip in (t, p, r, q):
            peers = {x.user_email for x in (t, p, r, q)} - {trip.user_email}
            assert store.slots(trip.trip_id) == {email: MATCHED for email in peers}

    @pytest.fixture
    def two_joiners(self, store):
        """T and P are matched; R1 and R2 have both requested T."""
        t = make_trip("t@cmu.edu", matches={
            "p@cmu.edu": MATCHED, "r1@cmu.edu": RECEIVED, "r2@cmu.edu": RECEIVED,
        })
        p = make_trip("p@cmu.edu", matches={"t@cmu.edu": MATCHED})
        r1 = make_trip("r1@cmu.edu", matches={"t@cmu.edu": SENT})
        r2 = make_trip("r2@cmu.edu", matches={"t@cmu.edu": SENT})
        store.add(t, p, r1, r2)
        return t, p, r1, r2

    @pytest.mark.asyncio
    async def test_rider_joining_first_must_approve_second_joiner(
        self, service, store, two_joiners
    ):
        """R1 lands in the group while R2's join is pending, so R1 gets a vote."""
        t, p, r1, r2 = two_joiners
        await act(service, t, "accept", r1)
        await act(service, store.load(t.trip_id), "accept", r2)
        await act(service, store.load(p.trip_id), "accept", r1)

        await act(service, store.load(p.trip_id), "accept", r2)

        assert store.slots(r2.trip_id) == {
            t.user_email: APPROVAL, p.user_email: APPROVAL, r1.user_email: APPROVAL,
        }
        assert store.slots(r1.trip_id)[r2.user_email] == APPROVAL
        pending = [j for j in store.joins.values() if j.status == PoolJoinStatus.PENDING]
        (join,) = pending
        assert join.pending_approvals == [r1.trip_id]
        assert r1.trip_id in join.host_side

        await act(service, store.load(r1.trip_id), "accept", r2)

        for trip in (t, p, r1, r2):
            peers = {x.user_email for x in (t, p, r1, r2)} - {trip.user_email}
            assert store.slots(trip.trip_id) == {email: MATCHED for email in peers}
        assert all(j.status == PoolJoinStatus.FINALIZED for j in store.joins.values())

    @pytest.mark.asyncio
    async def test_new_member_can_reject_pending_joiner(self, service, store, two_joiners):
        t, p, r1, r2 = two_joiners
        await act(service, t, "accept", r1)
        await act(service, store.load(t.trip_id), "accept", r2)
        await act(service, store.load(p.trip_id), "accept", r1)
        await act(service, store.load(p.trip_id), "accept", r2)

        await act(service, store.load(r1.trip_id), "deny", r2)

        assert store.slots(r2.trip_id) == {}
        assert store.slots(r1.trip_id) == {t.user_email: MATCHED, p.user_email: MATCHED}
        assert store.slots(t.trip_id) == {p.user_email: MATCHED, r1.user_email: MATCHED}

    @pytest.mark.asyncio
    async def test_join_that_overflows_capacity_rejected(self, service, store):
        partners = {f"p{i}@cmu.edu": MATCHED for i in range(5)}
        t = make_trip("t@cmu.edu", matches={**partners, "r@cmu.edu": RECEIVED})
        r = make_trip("r@cmu.edu", matches={"t@cmu.edu": SENT, "q@cmu.edu": MATCHED})
        q = make_trip("q@cmu.edu", matches={"r@cmu.edu": MATCHED})
        others = [
            make_trip(email, matches={"t@cmu.edu": MATCHED}) for email in partners
        ]
        store.add(t, r, q, *others)

        with pytest.raises(CapacityExceeded):
            await act(service, t, "accept", r)

        assert store.joins == {}
        assert store.slots(r.trip_id)[t.user_email] == SENT


class TestRepair:
    """Tests for recovery from partially applied transitions."""

    @pytest.fixture
    def service(self, store):
        return MatchService(store)

    @pytest.mark.asyncio
    async def test_half_written_request_is_cleared(self, service, store):
        r = make_trip("r@cmu.edu")
        t = make_trip("t@cmu.edu")
        store.add(r, t)
        store.fail_updates_for.add(t.trip_id)

        with pytest.raises(StoreFailure):
            await act(service, r, "request", t)

        assert store.slots(r.trip_id) == {t.user_email: SENT}
        assert store.slots(t.trip_id) == {}

        store.fail_updates_for.clear()
        await act(service, r, "request", t)

        assert store.slots(r.trip_id) == {t.user_email: SENT}
        assert store.slots(t.trip_id) == {r.user_email: RECEIVED}

    @pytest.mark.asyncio
    async def test_half_written_accept_is_promoted(self, service, store):
        r = make_trip("r@cmu.edu", matches={"t@cmu.edu": SENT})
        t = make_trip("t@cmu.edu", matches={"r@cmu.edu": RECEIVED})
        store.add(r, t)
        store.fail_updates_for.add(r.trip_id)

        with pytest.raises(StoreFailure):
            await act(service, t, "accept", r)

        assert store.slots(t.trip_id) == {r.user_email: MATCHED}
        assert store.slots(r.trip_id) == {t.user_email: SENT}

        store.fail_updates_for.clear()
        await act(service, store.load(r.trip_id), "accept", t)

        assert store.slots(r.trip_id) == {t.user_email: MATCHED}


class TestDetach:
    """Tests for releasing partners when a trip goes away."""

    @pytest.mark.asyncio
    async def test_detach_clears_peer_slots(self, store):
        service = MatchService(store)
        t = make_trip("t@cmu.edu", matches={"p@cmu.edu": MATCHED, "r@cmu.edu": SENT})
        p = make_trip("p@cmu.edu", matches={"t@cmu.edu": MATCHED, "x@cmu.edu": MATCHED},
                      status=TripStatus.MATCHED_SATISFIED.value)
        r = make_trip("r@cmu.edu", matches={"t@cmu.edu": RECEIVED})
        store.add(t, p, r)

        await service.detach_trip(store.load(t.trip_id))

        assert store.slots(p.trip_id) == {"x@cmu.edu": MATCHED}
        assert store.slots(r.trip_id) == {}
        assert store.load(p.trip_id).trip_status == TripStatus.MATCHED_SATISFIED.value
