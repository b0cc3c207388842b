from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from telegram import Bot

from .config import load_settings
from .db import Database
from .notification_queue import NotificationQueue
from .scheduler import DeliveryScheduler
from .telegram_app import build_application
from .transports import TelegramTransport, WebhookTransport
from .windows import WindowSet


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    settings = load_settings()
    windows = WindowSet(Database(settings.database_path))

    if settings.delivery_backend == "webhook":
        transport = WebhookTransport(settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)
    else:
        transport = TelegramTransport(Bot(token=settings.telegram_bot_token))
    logging.getLogger(__name__).info("Delivering notifications via %s", settings.delivery_backend)

    queue = NotificationQueue(transport, max_attempts=settings.max_delivery_attempts)
    scheduler = DeliveryScheduler(windows, queue, tz=ZoneInfo(settings.reference_timezone))

    app = build_application(
        token=settings.telegram_bot_token,
        windows=windows,
        queue=queue,
        scheduler=scheduler,
        sweep_interval_seconds=settings.sweep_interval_seconds,
        admin_user_ids=settings.admin_user_ids,
    )

    app.run_polling(allowed_updates=["message"])


if __name__ == "__main__":
    main()
