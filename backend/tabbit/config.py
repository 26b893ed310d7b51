from __future__ import annotations

import os


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
    REDIS_URL = os.getenv("REDIS_URL", "").strip()
    TAB_OWNER_ID = os.getenv("TAB_OWNER_ID", "mvp-owner")

    SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "https://tabbitrabbit.com").strip()
    SHARE_TTL_SECONDS = int(_float_env("SHARE_TTL_SECONDS", 90 * 24 * 60 * 60))

    AUTO_SAVE_DELAY_SECONDS = _float_env("AUTO_SAVE_DELAY_SECONDS", 120.0)
    FLUSH_TIMEOUT_SECONDS = _float_env("FLUSH_TIMEOUT_SECONDS", 15.0)

    RECEIPT_SCANNER = os.getenv("RECEIPT_SCANNER", "vision").strip().lower()
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-haiku-4-5-20251001").strip()
    MAX_RECEIPT_BYTES = int(_float_env("MAX_RECEIPT_BYTES", 10 * 1024 * 1024))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
