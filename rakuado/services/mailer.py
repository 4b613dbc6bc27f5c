"""Outbound email through the Mailtrap send API."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from config.settings import settings
from rakuado.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str


class MailtrapMailer:
    """Sends one message per call; raises DeliveryError on any failure."""

    def __init__(self, api_key: str, base_url: str, from_email: str, from_name: str,
                 timeout: float = 15.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    async def send(self, message: EmailMessage) -> None:
        if not self.api_key:
            raise DeliveryError("Mailtrap API key is not configured (set MAILTRAP_API_KEY)")

        payload = {
            "from": {"email": self.from_email, "name": self.from_name},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
            "category": "partner-payment",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                resp = await client.post(f"{self.base_url}/api/send", json=payload)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(f"Mailtrap rejected the message ({e.response.status_code}): "
                                f"{e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Mailtrap request failed: {e}") from e
        logger.info(f"Email sent to {message.to}: {message.subject}")


def get_mailer() -> MailtrapMailer:
    """FastAPI dependency; tests override it with a fake sender."""
    return MailtrapMailer(
        api_key=settings.MAILTRAP_API_KEY,
        base_url=settings.MAILTRAP_API_BASE,
        from_email=settings.MAILTRAP_FROM_EMAIL,
        from_name=settings.MAILTRAP_FROM_NAME,
    )
