from __future__ import annotations

import logging
from typing import Optional

import httpx

from .models import Delivery

logger = logging.getLogger(__name__)


class LoggingEmailSender:
    """Writes alert emails to the log instead of a mail provider."""

    def send_email(self, to: str, subject: str, body: str) -> Delivery:
        logger.info("Security alert email to %s: %s\n%s", to, subject, body)
        return Delivery(recipient=to, ok=True)


class HttpEmailSender:
    """Posts messages to a transactional email HTTP API."""

    def __init__(
        self,
        api_url: str,
        from_email: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self.api_url = api_url
        self.from_email = from_email
        self.api_key = api_key
        self.timeout = timeout
        self.client = client

    def send_email(self, to: str, subject: str, body: str) -> Delivery:
        payload = {"from": self.from_email, "to": to, "subject": subject, "text": body}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            if self.client is not None:
                response = self.client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to send email to %s: %s", to, exc)
            return Delivery(recipient=to, ok=False, error=str(exc) or exc.__class__.__name__)
        return Delivery(recipient=to, ok=True)
