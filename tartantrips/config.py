import base64
import json
import logging
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # Firebase Configuration
    # ==========================================================================
    firebase_service_account_json: Optional[str] = None
    firebase_service_account_path: Optional[str] = None

    # ==========================================================================
    # Allowed Email Domains
    # ==========================================================================
    allowed_email_domains: str = "cmu.edu"

    @property
    def allowed_domains_list(self) -> List[str]:
        """Parse comma-separated domains into list."""
        domains = [
            d.strip().lower().lstrip("@")
            for d in self.allowed_email_domains.split(",")
            if d.strip()
        ]
        if not domains:
            raise RuntimeError(
                "ALLOWED_EMAIL_DOMAINS must be configured with at least one domain"
            )
        return domains

    # ==========================================================================
    # MongoDB Configuration
    # ==========================================================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "tartantrips"

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    redis_url: str = "redis://localhost:6379/0"

    # ==========================================================================
    # Email (Resend) Configuration
    # ==========================================================================
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    resend_from: str = "TartanTrips <onboarding@resend.dev>"
    email_timeout_seconds: float = 10.0

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_per_minute: int = 120
    rate_limit_match_actions_per_minute: int = 30

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    app_name: str = "TartanTrips"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: str = "*"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into list."""
        if self.cors_origins == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    # ==========================================================================
    # Matching Configuration
    # ==========================================================================
    # Flight dates and times are entered on the local clock (EST, UTC-5)
    local_utc_offset_minutes: int = -300
    match_slot_capacity: int = 6  # Rideshare services seat at most 6 riders
    notification_claim_ttl_hours: int = 24
    landed_candidate_cutoff_minutes: int = 15

    # ==========================================================================
    # Computed Properties
    # ==========================================================================

    @property
    def firebase_credentials(self) -> Optional[dict]:
        """
        Get Firebase credentials as dict.

        Supports:
        1. File path (FIREBASE_SERVICE_ACCOUNT_PATH)
        2. JSON string (FIREBASE_SERVICE_ACCOUNT_JSON)
        3. Base64 encoded JSON string (FIREBASE_SERVICE_ACCOUNT_JSON)
        """
        if self.firebase_service_account_path:
            if os.path.exists(self.firebase_service_account_path):
                try:
                    with open(self.firebase_service_account_path, "r") as f:
                        return json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    logger.error(f"Error reading Firebase credentials file: {e}")
                    return None

        if self.firebase_service_account_json:
            content = self.firebase_service_account_json.strip()

            if content.startswith("{"):
                try:
                    return json.loads(content)
                except json.JSONDecodeError:
                    pass  # Move to Base64 attempt

            try:
                decoded = base64.b64decode(content).decode("utf-8")
                return json.loads(decoded)
            except (ValueError, UnicodeDecodeError):
                logger.error(
                    "Failed to decode FIREBASE_SERVICE_ACCOUNT_JSON (Invalid JSON or Base64)"
                )
                return None

        return None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading env vars on every request.
    """
    return Settings()


# Convenience export
settings = get_settings()
