"""
TartanTrips Database Module

MongoDB and Redis connection management.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import OperationFailure

from tartantrips.config import settings


logger = logging.getLogger(__name__)


# =============================================================================
# MongoDB Connection
# =============================================================================

class MongoDB:
    """MongoDB connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None


mongo = MongoDB()


async def init_mongodb():
    """Initialize MongoDB connection and create indexes."""
    mongo.client = AsyncIOMotorClient(settings.mongodb_uri)
    mongo.db = mongo.client[settings.mongodb_database]

    # Trips: candidate lookups are always by direction + date
    await mongo.db.trips.create_index("trip_id", unique=True)
    await mongo.db.trips.create_index("user_email")
    await mongo.db.trips.create_index([
        ("direction", 1),
        ("flight_date", 1)
    ])

    # One trip per owner per direction/date
    try:
        await mongo.db.trips.create_index(
            [("user_email", 1), ("direction", 1), ("flight_date", 1)],
            unique=True,
            name="unique_trip_per_owner_direction_date"
        )
    except OperationFailure as e:
        logger.warning(f"Could not create unique trip index: {e}")

    # Notification ledger is append-only, one record per directed pair
    await mongo.db.match_notifications.create_index(
        [("trip_id", 1), ("matched_trip_id", 1)],
        unique=True,
        name="unique_notification_pair"
    )

    # Pool joins
    await mongo.db.pool_joins.create_index("join_id", unique=True)
    await mongo.db.pool_joins.create_index([("status", 1), ("joiner_trip_id", 1)])
    await mongo.db.pool_joins.create_index([("status", 1), ("pending_approvals", 1)])

    # Profiles are owned elsewhere, but we read them by email
    await mongo.db.profiles.create_index("email")


async def close_mongodb():
    """Close MongoDB connection."""
    if mongo.client:
        mongo.client.close()


def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    if mongo.db is None:
        raise RuntimeError("Database not initialized")
    return mongo.db


# =============================================================================
# Redis Connection
# =============================================================================

class RedisClient:
    """Redis connection manager."""

    client: Optional[redis.Redis] = None


redis_client = RedisClient()


async def init_redis():
    """Initialize Redis connection."""
    redis_client.client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        socket_keepalive=True
    )


async def close_redis():
    """Close Redis connection."""
    if redis_client.client:
        await redis_client.client.aclose()


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if redis_client.client is None:
        raise RuntimeError("Redis not initialized")
    return redis_client.client


# =============================================================================
# Combined Initialization
# =============================================================================

async def init_db():
    """Initialize all database connections."""
    await init_mongodb()
    await init_redis()


async def close_db():
    """Close all database connections."""
    await close_mongodb()
    await close_redis()
