"""Profile Service - read-only access to student profiles."""

import logging
from typing import Dict, Iterable, Optional

from pymongo.errors import PyMongoError

from tartantrips.database import get_db
from tartantrips.exceptions import StoreFailure
from tartantrips.models.profile import Profile

logger = logging.getLogger(__name__)


class ProfileService:
    """
    Profiles are owned by the profile pages; the match engine only reads the
    partner-filter category and display fields.
    """

    async def get_profile(self, email: str) -> Optional[Profile]:
        db = get_db()
        try:
            doc = await db.profiles.find_one({"email": email})
        except PyMongoError as e:
            logger.error(f"Profile lookup failed for {email}: {e}")
            raise StoreFailure("Database error during get_profile")
        if not doc:
            return None
        doc.pop("_id", None)
        return Profile(**doc)

    async def get_profiles(self, emails: Iterable[str]) -> Dict[str, Profile]:
        """Map email -> profile for every email that has one."""
        wanted = list(dict.fromkeys(e for e in emails if e))
        if not wanted:
            return {}

        db = get_db()
        profiles: Dict[str, Profile] = {}
        try:
            async for doc in db.profiles.find({"email": {"$in": wanted}}):
                doc.pop("_id", None)
                profile = Profile(**doc)
                profiles[profile.email] = profile
        except PyMongoError as e:
            logger.error(f"Profile batch lookup failed: {e}")
            raise StoreFailure("Database error during get_profiles")
        return profiles
