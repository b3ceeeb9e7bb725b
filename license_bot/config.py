from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

INVENTORY_POLICIES = {"fail", "retry"}


def _get_env(key: str, default: str | None = None) -> str:
    value = os.getenv(key, default)
    if value is None or value == "":
        raise RuntimeError(f"Missing environment variable: {key}")
    return value


def _get_env_number(key: str, default: str | None = None) -> int:
    raw = _get_env(key, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid numeric environment variable: {key}") from exc


def _get_env_choice(key: str, default: str, choices: set[str]) -> str:
    raw = (os.getenv(key, default) or default).strip().lower()
    if raw not in choices:
        raise RuntimeError(f"Invalid value for {key}: {raw}")
    return raw


@dataclass(frozen=True)
class PaymentSettings:
    poll_interval: int = 20
    ttl: int = 600
    inventory_policy: str = "fail"


@dataclass(frozen=True)
class Config:
    bot_token: str
    admin_telegram_id: int
    database_url: str
    sessions_dir: str
    qris_api_base: str
    qris_api_key: str
    qris_merchant_id: str
    qris_timeout: int
    payment: PaymentSettings
    language: str
    support_contact: str
    log_level: str
    polling_timeout: int


def load_config() -> Config:
    return Config(
        bot_token=_get_env("BOT_TOKEN"),
        admin_telegram_id=_get_env_number("ADMIN_TELEGRAM_ID", "0"),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///data/bot.db").strip(),
        sessions_dir=os.getenv("SESSIONS_DIR", "sessions").strip() or "sessions",
        qris_api_base=os.getenv("QRIS_API_BASE", "https://qris.example.id/api").strip(),
        qris_api_key=os.getenv("QRIS_API_KEY", "").strip(),
        qris_merchant_id=os.getenv("QRIS_MERCHANT_ID", "").strip(),
        qris_timeout=_get_env_number("QRIS_TIMEOUT", "15"),
        payment=PaymentSettings(
            poll_interval=_get_env_number("PAYMENT_POLL_INTERVAL", "20"),
            ttl=_get_env_number("PAYMENT_TTL", "600"),
            inventory_policy=_get_env_choice("INVENTORY_POLICY", "fail", INVENTORY_POLICIES),
        ),
        language=_get_env_choice("BOT_LANGUAGE", "id", {"id", "en"}),
        support_contact=os.getenv("SUPPORT_CONTACT", "@admin").strip() or "@admin",
        log_level=os.getenv("PY_LOG_LEVEL", "INFO").strip() or "INFO",
        polling_timeout=_get_env_number("PY_POLLING_TIMEOUT", "30"),
    )


CONFIG = load_config()
