"""Match Models - slot statuses, protocol actions and pool join records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tartantrips.models.trip import TripStatus


class MatchStatus(str, Enum):
    """Status of one match slot, seen from the trip that holds it."""
    REQUEST_SENT = "request_sent"
    REQUEST_RECEIVED = "request_received"
    PARTNER_APPROVAL_NEEDED = "partner_approval_needed"
    MATCHED = "matched"


class MatchAction(str, Enum):
    REQUEST = "request"
    WITHDRAW = "withdraw"
    ACCEPT = "accept"
    DENY = "deny"
    REMOVE = "remove"


class PoolJoinStatus(str, Enum):
    PENDING = "pending"
    FINALIZED = "finalized"
    ABANDONED = "abandoned"


class PoolJoin(BaseModel):
    """
    Pending merge of a joiner into a host's confirmed group.

    The joiner side is the requesting trip plus its own confirmed partners;
    the host side is the accepting trip plus its confirmed partners. Every
    confirmed partner on either side must approve before any of the join's
    slots become matched.
    """
    join_id: str = Field(..., description="Unique join ID")
    joiner_trip_id: str
    host_trip_id: str
    joiner_side: list[str] = Field(..., description="Trip IDs on the joiner side")
    host_side: list[str] = Field(..., description="Trip IDs on the host side")
    pending_approvals: list[str] = Field(default_factory=list)
    approvals: list[str] = Field(default_factory=list)
    status: PoolJoinStatus = Field(default=PoolJoinStatus.PENDING)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = Field(None)

    class Config:
        use_enum_values = True

    @property
    def trip_ids(self) -> list[str]:
        return self.joiner_side + [t for t in self.host_side if t not in self.joiner_side]


class MatchActionRequest(BaseModel):
    """Body of POST /api/match-requests."""
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    trip_id: Optional[str] = Field(None, alias="tripId")
    matched_trip_id: Optional[str] = Field(None, alias="matchedTripId")


class StatusSyncRequest(BaseModel):
    """Body of POST /api/trip-status-sync."""
    model_config = ConfigDict(populate_by_name=True)

    trip_id: Optional[str] = Field(None, alias="tripId")
    trip_status: Optional[TripStatus] = None


class NotificationCheckRequest(BaseModel):
    """Body of POST /api/match-notifications."""
    model_config = ConfigDict(populate_by_name=True)

    trip_id: Optional[str] = Field(None, alias="tripId")
