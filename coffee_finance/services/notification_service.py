"""
Notification service — SMS side channel.

Notifications are fire-and-forget: a failed SMS is logged and
reported as False, never raised. Money has already moved by the
time a notification goes out, and nothing here may undo that.

Without an SMS_API_KEY the service runs in mock mode and only
logs what it would have sent.
"""

import logging
import re
from dataclasses import dataclass

import httpx

from coffee_finance.config import get_settings

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Notification channel names."""
    SMS = "sms"


@dataclass
class Notification:
    """A message queued by a service, sent after the commit."""
    channel: str
    recipient: str
    message: str


def normalize_phone(phone: str) -> str:
    """
    Normalise a Ugandan phone number to international form.

    "0772 123456" -> "256772123456". Numbers already carrying
    the 256 country code are left as they are.
    """
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("256"):
        return digits
    if digits.startswith("0"):
        digits = digits[1:]
    return f"256{digits}"


class NotificationService:
    """Sends notifications through the SMS gateway."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender_id: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_url = api_url or settings.SMS_API_URL
        self.api_key = api_key if api_key is not None else settings.SMS_API_KEY
        self.sender_id = sender_id or settings.SMS_SENDER_ID
        self.timeout = timeout or settings.SMS_TIMEOUT_SECONDS
        # Tests pass an httpx.MockTransport here
        self.transport = transport

    @property
    def is_mock(self) -> bool:
        return not self.api_key

    def notify(self, channel: str, recipient: str, message: str) -> bool:
        """
        Send one notification. Returns True when the gateway accepted it.
        """
        if channel != NotificationChannel.SMS:
            logger.warning(
                "Unsupported notification channel %r for %s; dropped",
                channel, recipient,
            )
            return False

        if not recipient:
            logger.warning("Notification without recipient dropped: %s", message)
            return False

        phone = normalize_phone(recipient)

        if self.is_mock:
            logger.info("[MOCK SMS] to=%s message=%s", phone, message)
            return True

        try:
            with httpx.Client(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "to": phone,
                        "message": message,
                        "sender_id": self.sender_id,
                    },
                )
        except httpx.TimeoutException:
            logger.error("SMS gateway timed out sending to %s", phone)
            return False
        except httpx.HTTPError as e:
            logger.error("SMS gateway request failed for %s: %s", phone, e)
            return False

        if response.is_error:
            logger.error(
                "SMS gateway rejected message to %s: %s %s",
                phone, response.status_code, response.text,
            )
            return False

        logger.info("SMS sent to %s", phone)
        return True

    def dispatch(self, notifications: list[Notification]) -> int:
        """Send a batch of queued notifications. Returns how many went out."""
        sent = 0
        for notification in notifications:
            if self.notify(
                notification.channel,
                notification.recipient,
                notification.message,
            ):
                sent += 1
        return sent
