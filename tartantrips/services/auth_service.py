"""
Authentication Service

Firebase Admin SDK integration for token verification. The match engine only
needs the verified email address of the caller.
"""

import logging
from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth, credentials

from tartantrips.config import settings
from tartantrips.exceptions import AuthenticationError


logger = logging.getLogger(__name__)


# =============================================================================
# Firebase Initialization
# =============================================================================

_firebase_app = None


def _init_firebase():
    """
    Initialize Firebase Admin SDK.

    SECURITY: The service account credentials must be kept secure.
    Never log or expose the credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    creds = settings.firebase_credentials
    if creds is None:
        raise RuntimeError(
            "Firebase credentials not configured. "
            "Set FIREBASE_SERVICE_ACCOUNT_JSON or FIREBASE_SERVICE_ACCOUNT_PATH in .env"
        )

    cred = credentials.Certificate(creds)
    _firebase_app = firebase_admin.initialize_app(cred)
    return _firebase_app


class AuthService:
    """Resolves a bearer credential to an owner identity (email)."""

    def __init__(self):
        try:
            _init_firebase()
        except (RuntimeError, ValueError) as e:
            # Allow startup without credentials; every verify will then fail
            logger.warning(f"Firebase initialization failed: {e}")

    def verify_firebase_token(self, id_token: str) -> Optional[dict]:
        """
        Verify a Firebase ID token and return the decoded claims.

        Returns:
            Decoded token claims if valid, None otherwise
        """
        try:
            return firebase_auth.verify_id_token(id_token)
        except (firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError):
            return None
        except (ValueError, firebase_auth.CertificateFetchError) as e:
            logger.warning(f"Token verification unavailable: {e}")
            return None

    def is_allowed_email(self, email: str) -> bool:
        """Exact match or subdomain of an allowed domain."""
        if not email or "@" not in email:
            return False
        domain = email.lower().rsplit("@", 1)[1]
        return any(
            domain == allowed or domain.endswith("." + allowed)
            for allowed in settings.allowed_domains_list
        )

    def verify(self, token: Optional[str]) -> str:
        """
        Resolve a bearer token to the caller's email.

        Raises:
            AuthenticationError: Token missing, invalid, or from a disallowed domain
        """
        if not token:
            raise AuthenticationError("Missing auth token")

        claims = self.verify_firebase_token(token)
        if not claims or not claims.get("email"):
            raise AuthenticationError("Invalid auth token")

        email = claims["email"].lower()
        if not self.is_allowed_email(email):
            raise AuthenticationError("Please use your CMU email address.")
        return email
