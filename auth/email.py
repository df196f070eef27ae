"""
auth/email.py -- Transactional email delivery.

EmailSender is the collaborator interface the auth core depends on.
ResendEmailSender implements it against the Resend HTTP API with requests.

Failure policy: send() returns False and logs; it never raises. forgot_password
answers the same way whether or not delivery worked.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from auth.errors import EmailDeliveryError

logger = logging.getLogger("authkit.auth.email")

RESEND_API = "https://api.resend.com/emails"


class EmailSender(Protocol):
    def send(self, sender: str, to: str, subject: str, text: str, html: str) -> bool: ...


class ResendEmailSender:
    """Send mail through Resend (https://resend.com/docs/api-reference/emails/send-email)."""

    def __init__(self, api_key: str, timeout: float = 10.0, session: requests.Session | None = None) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        # Known API host; short redirect chain only.
        self._session.max_redirects = 3

    def send(self, sender: str, to: str, subject: str, text: str, html: str) -> bool:
        if not self.api_key:
            logger.error("Email not sent: RESEND_API_KEY is not configured")
            return False
        if not sender:
            logger.error("Email not sent: EMAIL_FROM is not configured")
            return False
        try:
            message_id = self._post({"from": sender, "to": [to], "subject": subject, "text": text, "html": html})
        except EmailDeliveryError as exc:
            logger.error("Email delivery failed: %s", exc)
            return False
        logger.info("Email sent (id=%s)", message_id)
        return True

    def _post(self, payload: dict) -> str:
        try:
            resp = self._session.post(
                RESEND_API,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise EmailDeliveryError(f"request to email API failed: {exc.__class__.__name__}") from exc
        if resp.status_code >= 400:
            raise EmailDeliveryError(f"email API returned HTTP {resp.status_code}")
        try:
            return str(resp.json().get("id", ""))
        except ValueError:
            return ""

    def close(self) -> None:
        self._session.close()


def render_reset_email(link: str, ttl_minutes: int) -> tuple[str, str]:
    """Return (text, html) bodies for a password reset email."""
    lifetime = "1 hour" if ttl_minutes == 60 else f"{ttl_minutes} minutes"
    text = f"Please use the following link to reset your password: {link}\nThis link will expire in {lifetime}."
    html = (
        "<p>Please use the following link to reset your password:</p>"
        f'<p><a href="{link}">{link}</a></p>'
        f"<p>This link will expire in {lifetime}.</p>"
    )
    return text, html
