"""
Email Service

Outbound email through the Resend HTTP API.
"""

import logging
from typing import Optional

import httpx

from tartantrips.config import settings
from tartantrips.exceptions import NotifyFailure


logger = logging.getLogger(__name__)


class EmailService:
    """
    Sends plain-text email. ``send`` reports failure with a False return and
    never raises; callers decide what a failed send means.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        api_url: Optional[str] = None,
    ):
        self.api_key = api_key or settings.resend_api_key
        self.sender = sender or settings.resend_from
        self.api_url = api_url or settings.resend_api_url

    async def _post(self, recipient: str, subject: str, body: str) -> None:
        if not self.api_key:
            raise NotifyFailure("RESEND_API_KEY is not configured")

        try:
            async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": self.sender,
                        "to": [recipient],
                        "subject": subject,
                        "text": body,
                    },
                )
        except httpx.HTTPError as e:
            raise NotifyFailure(f"Email request failed: {e}")

        if response.status_code >= 400:
            raise NotifyFailure(
                f"Email provider returned {response.status_code}: {response.text[:200]}"
            )

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        """
        Send one email.

        Returns:
            True on success, False on any failure (logged)
        """
        if not recipient:
            logger.warning("Skipping email with no recipient")
            return False

        try:
            await self._post(recipient, subject, body)
        except NotifyFailure as e:
            logger.error(f"Email to {recipient} failed: {e.message}")
            return False

        logger.info(f"Email sent to {recipient}: {subject}")
        return True
