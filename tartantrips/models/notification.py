"""Match Notification Model - append-only de-duplication ledger entries."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class MatchNotification(BaseModel):
    """
    One dispatched new-match email.

    The record for (trip_id, matched_trip_id) means the owner of trip_id has
    been told about matched_trip_id. The reverse direction is tracked
    separately.
    """

    trip_id: str = Field(..., description="Trip whose owner was notified")
    matched_trip_id: str = Field(..., description="Trip they were notified about")
    notified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
