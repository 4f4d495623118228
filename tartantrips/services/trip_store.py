"""
Trip Store

Record store for trips, the new-match notification ledger and pool joins.
All MongoDB access for the match engine goes through here; driver errors
surface as StoreFailure.
"""

import functools
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from tartantrips.database import get_db
from tartantrips.exceptions import StoreFailure, ValidationError
from tartantrips.models.match import PoolJoin, PoolJoinStatus
from tartantrips.models.notification import MatchNotification
from tartantrips.models.trip import Trip
from tartantrips.utils.timezone_utils import ensure_utc


logger = logging.getLogger(__name__)

DUPLICATE_TRIP_MESSAGE = (
    "You already have a trip for this direction and date. "
    "Please edit the existing trip instead."
)

_DATETIME_FIELDS = ("window_start", "window_end", "created_at", "updated_at",
                    "baseline_match_check_at")


def _store_call(func):
    """Translate driver errors into StoreFailure."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (StoreFailure, ValidationError):
            raise
        except PyMongoError as e:
            logger.error(f"Store call {func.__name__} failed: {e}")
            raise StoreFailure(f"Database error during {func.__name__}")

    return wrapper


def trip_to_document(trip: Trip) -> Dict[str, Any]:
    """Serialize a trip; slots become an ordered list since emails contain dots."""
    doc = trip.model_dump()
    doc["matches"] = [
        {"email": email, "status": status} for email, status in trip.matches.items()
    ]
    return doc


def trip_from_document(doc: Dict[str, Any]) -> Trip:
    doc = dict(doc)
    doc.pop("_id", None)
    doc["matches"] = {
        entry["email"]: entry["status"]
        for entry in doc.get("matches") or []
        if entry.get("email") and entry.get("status")
    }
    for field in _DATETIME_FIELDS:
        if isinstance(doc.get(field), datetime):
            doc[field] = ensure_utc(doc[field])
    return Trip(**doc)


def _join_from_document(doc: Dict[str, Any]) -> PoolJoin:
    doc = dict(doc)
    doc.pop("_id", None)
    for field in ("created_at", "resolved_at"):
        if isinstance(doc.get(field), datetime):
            doc[field] = ensure_utc(doc[field])
    return PoolJoin(**doc)


class TripStore:
    """MongoDB-backed record store."""

    # =========================================================================
    # Trips
    # =========================================================================

    @_store_call
    async def find_candidates(
        self, direction: str, flight_date: str, exclude_owner: str
    ) -> List[Trip]:
        """All trips sharing direction and date, not owned by exclude_owner."""
        db = get_db()
        cursor = db.trips.find({
            "direction": direction,
            "flight_date": flight_date,
            "user_email": {"$ne": exclude_owner},
        }).sort("created_at", 1)
        return [trip_from_document(doc) async for doc in cursor]

    @_store_call
    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        db = get_db()
        doc = await db.trips.find_one({"trip_id": trip_id})
        return trip_from_document(doc) if doc else None

    @_store_call
    async def get_trips(self, trip_ids: Iterable[str]) -> Dict[str, Trip]:
        db = get_db()
        ids = list(dict.fromkeys(trip_ids))
        if not ids:
            return {}
        cursor = db.trips.find({"trip_id": {"$in": ids}})
        trips = [trip_from_document(doc) async for doc in cursor]
        return {trip.trip_id: trip for trip in trips}

    @_store_call
    async def find_trip_for_owner(
        self, user_email: str, direction: str, flight_date: str
    ) -> Optional[Trip]:
        """The owner's trip for a direction/date; at most one exists."""
        db = get_db()
        doc = await db.trips.find_one({
            "user_email": user_email,
            "direction": direction,
            "flight_date": flight_date,
        })
        return trip_from_document(doc) if doc else None

    @_store_call
    async def find_trips_for_owners(
        self, emails: Iterable[str], direction: str, flight_date: str
    ) -> Dict[str, Trip]:
        """Map owner email -> trip for one direction/date."""
        db = get_db()
        owners = list(dict.fromkeys(emails))
        if not owners:
            return {}
        cursor = db.trips.find({
            "user_email": {"$in": owners},
            "direction": direction,
            "flight_date": flight_date,
        })
        trips = [trip_from_document(doc) async for doc in cursor]
        return {trip.user_email: trip for trip in trips}

    @_store_call
    async def list_owner_trips(self, user_email: str) -> List[Trip]:
        """Owner's trips, newest first."""
        db = get_db()
        cursor = db.trips.find({"user_email": user_email}).sort("created_at", DESCENDING)
        return [trip_from_document(doc) async for doc in cursor]

    @_store_call
    async def insert_trip(self, trip: Trip) -> Trip:
        db = get_db()
        try:
            await db.trips.insert_one(trip_to_document(trip))
        except DuplicateKeyError:
            raise ValidationError(DUPLICATE_TRIP_MESSAGE)
        return trip

    @_store_call
    async def update_trip(self, trip_id: str, fields: Dict[str, Any]) -> Optional[Trip]:
        """Set the given fields; other fields keep whatever was last written."""
        db = get_db()
        update = dict(fields)
        if "matches" in update and isinstance(update["matches"], dict):
            update["matches"] = [
                {"email": email, "status": status}
                for email, status in update["matches"].items()
            ]
        try:
            doc = await db.trips.find_one_and_update(
                {"trip_id": trip_id},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ValidationError(DUPLICATE_TRIP_MESSAGE)
        return trip_from_document(doc) if doc else None

    async def save_slots(self, trip: Trip) -> None:
        """Persist a trip's slot ledger and derived status."""
        await self.update_trip(trip.trip_id, {
            "matches": dict(trip.matches),
            "trip_status": trip.trip_status,
            "updated_at": trip.updated_at,
        })

    @_store_call
    async def delete_trip(self, trip_id: str) -> bool:
        db = get_db()
        result = await db.trips.delete_one({"trip_id": trip_id})
        return result.deleted_count > 0

    @_store_call
    async def set_baseline_if_missing(self, trip_id: str, when: datetime) -> bool:
        """Set the baseline once. Returns True when this call set it."""
        db = get_db()
        result = await db.trips.update_one(
            {"trip_id": trip_id, "baseline_match_check_at": None},
            {"$set": {"baseline_match_check_at": when}},
        )
        return result.modified_count > 0

    # =========================================================================
    # Notification ledger
    # =========================================================================

    @_store_call
    async def notification_exists(self, trip_id: str, matched_trip_id: str) -> bool:
        db = get_db()
        doc = await db.match_notifications.find_one(
            {"trip_id": trip_id, "matched_trip_id": matched_trip_id},
            {"_id": 1},
        )
        return doc is not None

    @_store_call
    async def record_notification(self, record: MatchNotification) -> bool:
        """Append a ledger entry. Returns False if the pair was already recorded."""
        db = get_db()
        try:
            await db.match_notifications.insert_one(record.model_dump())
        except DuplicateKeyError:
            return False
        return True

    # =========================================================================
    # Pool joins
    # =========================================================================

    @_store_call
    async def insert_pool_join(self, join: PoolJoin) -> PoolJoin:
        db = get_db()
        await db.pool_joins.insert_one(join.model_dump())
        return join

    @_store_call
    async def update_pool_join(self, join: PoolJoin) -> None:
        db = get_db()
        doc = join.model_dump()
        doc.pop("join_id")
        await db.pool_joins.update_one({"join_id": join.join_id}, {"$set": doc})

    @_store_call
    async def find_pending_joins(self, trip_id: str) -> List[PoolJoin]:
        """Pending joins that involve trip_id on either side."""
        db = get_db()
        cursor = db.pool_joins.find({
            "status": PoolJoinStatus.PENDING.value,
            "$or": [{"joiner_side": trip_id}, {"host_side": trip_id}],
        })
        return [_join_from_document(doc) async for doc in cursor]
