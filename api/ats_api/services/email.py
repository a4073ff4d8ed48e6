from __future__ import annotations

import logging
from functools import lru_cache
from html import escape

import httpx

from ats_api.core.config import get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or cannot take a message."""


class ResendMailer:
    def __init__(self, api_key: str | None, sender: str, timeout_seconds: float = 10.0) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout_seconds = timeout_seconds

    async def send(self, *, to: str, subject: str, html: str) -> str | None:
        if not self.api_key:
            raise EmailDeliveryError("ATS_RESEND_API_KEY is not configured")

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    RESEND_API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:  # pragma: no cover - network dependent
            raise EmailDeliveryError("email provider unavailable") from exc

        if response.status_code >= 400:
            raise EmailDeliveryError(f"email provider returned {response.status_code}: {response.text}")
        return response.json().get("id")


def application_confirmation_html(*, first_name: str, job_title: str, organization_name: str) -> str:
    return (
        f"<p>Hi {escape(first_name)},</p>"
        f"<p>Thank you for applying for <strong>{escape(job_title)}</strong> at {escape(organization_name)}. "
        "We have received your application and our team will review it shortly.</p>"
        f"<p>Best regards,<br>{escape(organization_name)}</p>"
    )


@lru_cache
def get_mailer() -> ResendMailer:
    settings = get_settings()
    return ResendMailer(api_key=settings.resend_api_key, sender=settings.email_from)
