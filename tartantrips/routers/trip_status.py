"""Trip Status Router - status changes copied across a confirmed group."""

from fastapi import APIRouter, Depends

from tartantrips.dependencies import get_current_email
from tartantrips.models.match import StatusSyncRequest
from tartantrips.services.status_service import StatusService


router = APIRouter()
status_service = StatusService()


@router.post("/trip-status-sync")
async def sync_trip_status(
    body: StatusSyncRequest,
    email: str = Depends(get_current_email)
):
    """Set the caller's trip status and copy it to every confirmed partner."""
    updated = await status_service.sync_status(email, body.trip_id, body.trip_status)
    return {"ok": True, "updated": updated}
