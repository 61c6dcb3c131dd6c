# core/config.py
import os
from dotenv import load_dotenv
from pathlib import Path

# Load .env from project root
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    # Database
    DB_URL = os.getenv("DB_URL", f"sqlite:///{BASE_DIR}/campaigns.db")

    # Polling loop
    POLL_INTERVAL_SECONDS = max(1, _int_env("POLL_INTERVAL_SECONDS", 15))

    # Delivery failures keep next_run_at untouched unless a delay is set,
    # so the next tick retries them.
    DELIVERY_RETRY_DELAY_SECONDS = max(0, _int_env("DELIVERY_RETRY_DELAY_SECONDS", 0))

    # "after_delivery" keeps rows on delivery failure; "before_delivery" never re-sends a row.
    CONSUME_POLICY = os.getenv("CONSUME_POLICY", "after_delivery").strip().lower()
    CONSUMED_MARK_VALUE = os.getenv("CONSUMED_MARK_VALUE", "posted")

    # External APIs
    TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/")
    HTTP_TIMEOUT_SECONDS = max(1, _int_env("HTTP_TIMEOUT_SECONDS", 30))

    # Logging
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # General
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"
    BASE_DIR = BASE_DIR


if __name__ == "__main__":
    # Sanity check
    print("Config loaded from:", ENV_PATH)
    print("Database URL:", Config.DB_URL)
    print("Poll interval:", Config.POLL_INTERVAL_SECONDS, "s")
