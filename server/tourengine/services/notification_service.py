"""Fire-and-forget notifications: conversation notes and transactional email."""

import logging
from typing import Any, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.observability import metrics_collector
from ..models.message import ConversationMessage

logger = logging.getLogger(__name__)

# Subject lines per email template; bodies are rendered by the email provider side
TEMPLATE_SUBJECTS = {
    "tour_offer": "You received a custom tour offer",
    "offer_declined": "Your tour offer was declined",
    "booking_confirmed": "Your booking is confirmed",
    "payment_failed": "Your payment did not go through",
    "booking_cancelled": "Your booking was cancelled",
    "tour_date_changed": "The date of your tour has changed",
}


class EmailSender(Protocol):
    """Transport for transactional email."""

    async def send(self, to: str, template: str, data: dict[str, Any]) -> bool:
        """Deliver one email; False when the transport is not configured."""
        ...


class BrevoEmailSender:
    """Sends transactional email through the Brevo HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        sender_address: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.brevo_api_key
        self.api_url = api_url or settings.brevo_api_url
        self.sender_address = sender_address or settings.email_sender_address
        self.timeout = timeout or settings.email_timeout_seconds

    def _build_payload(self, to: str, template: str, data: dict[str, Any]) -> dict[str, Any]:
        lines = "\n".join(f"{key}: {value}" for key, value in data.items())
        return {
            "sender": {"email": self.sender_address},
            "to": [{"email": to.lower().strip()}],
            "subject": TEMPLATE_SUBJECTS.get(template, template.replace("_", " ").capitalize()),
            "textContent": lines or template,
            "params": {key: str(value) for key, value in data.items()},
            "tags": [template],
        }

    async def send(self, to: str, template: str, data: dict[str, Any]) -> bool:
        """
        Send one email.

        Returns:
            False if no API key is configured and nothing was sent

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response
        """
        if not self.api_key:
            logger.warning(
                "BREVO_API_KEY not configured, skipping email",
                extra={"template": template}
            )
            return False

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                json=self._build_payload(to, template, data),
                headers={
                    "accept": "application/json",
                    "api-key": self.api_key,
                },
            )
            response.raise_for_status()
        return True


class NotificationDispatcher:
    """
    Posts conversation notes and sends emails without ever failing the caller.

    Call it only after the triggering transaction committed: a note is
    committed on its own and a failed note is rolled back on its own.
    """

    def __init__(self, db: AsyncSession, email_sender: Optional[EmailSender] = None):
        self.db = db
        self.email_sender = email_sender or BrevoEmailSender()

    async def post_system_message(self, conversation_id: Optional[str], content: str) -> bool:
        """Post an automated note into a conversation. Returns False on failure."""
        if not conversation_id:
            return False

        try:
            self.db.add(ConversationMessage(
                conversation_id=conversation_id,
                sender_type="system",
                content=content,
                is_automated=True,
            ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            metrics_collector.record_notification_failed("conversation")
            logger.error(
                "Failed to post conversation message",
                extra={"conversation_id": conversation_id, "error": str(e)},
                exc_info=True
            )
            return False

        logger.info("Conversation message posted", extra={"conversation_id": conversation_id})
        return True

    async def send_email(self, to: Optional[str], template: str, data: dict[str, Any]) -> bool:
        """Send a templated email. Returns False on failure."""
        if not to:
            return False

        try:
            sent = await self.email_sender.send(to, template, data)
        except Exception as e:
            metrics_collector.record_notification_failed("email")
            logger.error(
                "Failed to send email",
                extra={"template": template, "error": str(e)},
                exc_info=True
            )
            return False

        if not sent:
            metrics_collector.record_notification_failed("email")
            logger.warning("Email not sent", extra={"template": template})
            return False

        logger.info("Email sent", extra={"template": template})
        return True
