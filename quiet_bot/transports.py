from __future__ import annotations

import logging

import httpx
from telegram import Bot
from telegram.error import TelegramError

from .errors import DeliveryFailure
from .notification_queue import NotificationPayload

logger = logging.getLogger(__name__)

MAX_MESSAGE_LEN = 3900


class TelegramTransport:
    """Delivers a notification as a message to the subject's chat."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def deliver(self, payload: NotificationPayload) -> None:
        text = payload.message
        safe_text = text if len(text) <= MAX_MESSAGE_LEN else text[:MAX_MESSAGE_LEN] + "\n\n(Truncated due to message length)"
        try:
            await self.bot.send_message(chat_id=payload.subject_id, text=safe_text)
        except TelegramError as e:
            raise DeliveryFailure(f"Telegram send failed for {payload.subject_id}: {e}") from e


class WebhookTransport:
    """Posts notifications to an HTTP push gateway."""

    def __init__(self, url: str, timeout_seconds: float = 10, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def deliver(self, payload: NotificationPayload) -> None:
        body = {
            "subject_id": payload.subject_id,
            "message": payload.message,
            "data": payload.data,
            "occurs_at": payload.occurs_at.isoformat(),
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=body, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(self.url, json=body, timeout=self.timeout_seconds)
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"Push gateway request failed for {payload.subject_id}: {e}") from e
        except (TypeError, ValueError) as e:
            # json encoding of payload.data
            raise DeliveryFailure(f"Notification for {payload.subject_id} is not JSON serializable: {e}") from e
        if resp.status_code >= 400:
            logger.warning("Push gateway rejected notification for %s: HTTP %d", payload.subject_id, resp.status_code)
            raise DeliveryFailure(f"Push gateway returned HTTP {resp.status_code}")
