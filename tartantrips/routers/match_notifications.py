"""Match Notifications Router - explicit trigger for the new-match check."""

from fastapi import APIRouter, Depends

from tartantrips.dependencies import get_current_email
from tartantrips.exceptions import ValidationError
from tartantrips.models.match import NotificationCheckRequest
from tartantrips.services.notification_service import MatchNotifier


router = APIRouter()
notifier = MatchNotifier()


@router.post("/match-notifications")
async def check_match_notifications(
    body: NotificationCheckRequest,
    email: str = Depends(get_current_email)
):
    """Email riders about compatible trips created since they last checked."""
    if not body.trip_id:
        raise ValidationError("tripId is required")
    return await notifier.check_new_matches(body.trip_id, identity=email)
