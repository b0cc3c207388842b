from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DELIVERY_BACKENDS = ("telegram", "webhook")


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    admin_user_ids: set[int]
    database_path: Path
    sweep_interval_seconds: int
    reference_timezone: str
    max_delivery_attempts: int | None
    delivery_backend: str
    webhook_url: str
    webhook_timeout_seconds: float


def _parse_admin_ids(raw: str) -> set[int]:
    result: set[int] = set()
    if not raw.strip():
        return result
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        result.add(int(part))
    return result


def _parse_max_attempts(raw: str) -> int | None:
    value = int(raw)
    if value < 0:
        raise ValueError("MAX_DELIVERY_ATTEMPTS must be >= 0.")
    return value or None


def load_settings() -> Settings:
    load_dotenv()

    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    if not token:
        raise ValueError("TELEGRAM_BOT_TOKEN is required.")

    backend = os.getenv("DELIVERY_BACKEND", "telegram").strip().lower()
    if backend not in DELIVERY_BACKENDS:
        raise ValueError(f"DELIVERY_BACKEND must be one of {', '.join(DELIVERY_BACKENDS)}.")
    webhook_url = os.getenv("WEBHOOK_URL", "").strip()
    if backend == "webhook" and not webhook_url:
        raise ValueError("WEBHOOK_URL is required when DELIVERY_BACKEND=webhook.")

    sweep_interval = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
    if sweep_interval <= 0:
        raise ValueError("SWEEP_INTERVAL_SECONDS must be positive.")

    db_path = Path(os.getenv("DATABASE_PATH", "./data/quiet_bot.db")).resolve()

    return Settings(
        telegram_bot_token=token,
        admin_user_ids=_parse_admin_ids(os.getenv("ADMIN_USER_IDS", "")),
        database_path=db_path,
        sweep_interval_seconds=sweep_interval,
        reference_timezone=os.getenv("REFERENCE_TIMEZONE", "Asia/Seoul").strip(),
        max_delivery_attempts=_parse_max_attempts(os.getenv("MAX_DELIVERY_ATTEMPTS", "5")),
        delivery_backend=backend,
        webhook_url=webhook_url,
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")),
    )
