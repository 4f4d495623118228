"""
Authentication Dependencies

FastAPI dependencies that resolve the caller's identity and the shared
service instances.
"""

from typing import Optional

from fastapi import Header

from tartantrips.services.auth_service import AuthService


auth_service = AuthService()


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_email(
    authorization: Optional[str] = Header(None)
) -> str:
    """
    Get the authenticated caller's email from a Firebase ID token.

    SECURITY: This is the primary authentication gate.
    All trip and match endpoints depend on this.
    """
    return auth_service.verify(bearer_token(authorization))
