"""Out-of-band delivery of verification codes.

Delivery is fire-and-forget: it runs after the database commit, and a
failed send is logged and reported as False, never raised. The code that
was issued stays valid; the user can ask for another one.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from credence.core.config import Settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


@dataclass(frozen=True)
class Notification:
    """Message to deliver.

    Attributes:
        subject: Email subject line.
        text: Plain-text body.
    """

    subject: str
    text: str


class Notifier(Protocol):
    """Delivers a message to a destination address."""

    async def deliver(self, destination: str, payload: Notification) -> bool: ...


class ResendNotifier:
    """Sends plain-text email through the Resend HTTP API.

    Args:
        api_key: Resend API key.
        sender: From address.
    """

    def __init__(self, api_key: str, sender: str) -> None:
        self._api_key = api_key
        self._sender = sender

    async def deliver(self, destination: str, payload: Notification) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._sender,
                        "to": destination,
                        "subject": payload.subject,
                        "text": payload.text,
                    },
                    timeout=_RESEND_TIMEOUT,
                )
                resp.raise_for_status()
        except httpx.HTTPError:
            logger.warning("Failed to send email", exc_info=True)
            return False
        return True


class LogNotifier:
    """Development notifier: records that a message would have been sent.

    The body holds the code, so only the subject is logged.
    """

    async def deliver(self, destination: str, payload: Notification) -> bool:  # noqa: ARG002
        logger.info(
            "Email delivery skipped (no RESEND_API_KEY)",
            extra={"subject": payload.subject},
        )
        return False


def build_notifier(settings: Settings) -> Notifier:
    """Pick the notifier for the current configuration."""
    api_key = settings.resend_api_key.get_secret_value()
    if api_key:
        return ResendNotifier(api_key, settings.email_from)
    return LogNotifier()


def verification_email(code: str, ttl_minutes: int) -> Notification:
    return Notification(
        subject="Verify your email address",
        text=(
            f"Your verification code is {code}\n\n"
            f"This code expires in {ttl_minutes} minutes. "
            "If you didn't create an account, you can safely ignore this email."
        ),
    )


def password_reset_email(code: str, ttl_minutes: int) -> Notification:
    return Notification(
        subject="Reset your password",
        text=(
            f"Your password reset code is {code}\n\n"
            f"This code expires in {ttl_minutes} minutes. "
            "If you didn't request a reset, you can safely ignore this email."
        ),
    )
