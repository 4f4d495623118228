"""
Notification Tracker Service

Short-lived Redis claims that stop two concurrent new-match checks from
emailing the same person about the same trip. The MongoDB ledger remains the
permanent record; a claim only covers the window between deciding to send
and recording the send.
"""

from datetime import timedelta
import hashlib

from tartantrips.config import settings
from tartantrips.database import get_redis
from tartantrips.utils.timezone_utils import utc_now


class NotificationTracker:
    """
    Track in-flight new-match notifications per directed trip pair.
    """

    def __init__(self):
        self._prefix = "match_notif"

    def _make_key(self, trip_id: str, matched_trip_id: str) -> str:
        """
        Create the claim key for a directed pair.

        Args:
            trip_id: Trip whose owner would be notified
            matched_trip_id: Trip they would be notified about

        Returns:
            Redis key for tracking
        """
        composite = f"{trip_id}:{matched_trip_id}"
        key_hash = hashlib.sha256(composite.encode()).hexdigest()[:16]
        return f"{self._prefix}:{key_hash}"

    async def claim(self, trip_id: str, matched_trip_id: str, ttl_hours: int = None) -> bool:
        """
        Claim the right to send for a directed pair.

        Returns:
            True if this caller holds the claim
            False if another check already claimed it
        """
        ttl_hours = ttl_hours or settings.notification_claim_ttl_hours
        redis_client = get_redis()
        was_set = await redis_client.set(
            self._make_key(trip_id, matched_trip_id),
            utc_now().isoformat(),
            ex=int(timedelta(hours=ttl_hours).total_seconds()),
            nx=True,  # Only set if not exists
        )
        return bool(was_set)

    async def release(self, trip_id: str, matched_trip_id: str) -> None:
        """Drop a claim after a failed send so a later check can retry."""
        redis_client = get_redis()
        await redis_client.delete(self._make_key(trip_id, matched_trip_id))


# Singleton instance
_tracker = None


def get_notification_tracker() -> NotificationTracker:
    """Get singleton notification tracker instance."""
    global _tracker
    if _tracker is None:
        _tracker = NotificationTracker()
    return _tracker
