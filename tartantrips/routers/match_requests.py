"""
Match Requests Router

Single entry point for the match protocol actions.
"""

from fastapi import APIRouter, Depends

from tartantrips.dependencies import get_current_email
from tartantrips.models.match import MatchActionRequest
from tartantrips.services.match_service import MatchService


router = APIRouter()
match_service = MatchService()


@router.post("/match-requests")
async def handle_match_request(
    body: MatchActionRequest,
    email: str = Depends(get_current_email)
):
    """
    Apply a match action: request, withdraw, accept, deny or remove.

    tripId is the caller's own trip; for remove the caller may own either
    trip.
    """
    return await match_service.handle_action(
        identity=email,
        action=body.action,
        trip_id=body.trip_id,
        matched_trip_id=body.matched_trip_id,
    )
