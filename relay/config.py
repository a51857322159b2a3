import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    mobile_money_a_secret: str = ""
    mobile_money_b_secret: str = ""
    base_currency: str = "usd"
    alternate_currency: str = "ghs"
    exchange_rate: float = 15.0
    max_amount: int = 99_999_999
    jwt_secret: str = ""
    log_level: str = "INFO"
    log_json: bool = True
    port: int = 9999


def load_settings() -> Settings:
    """Build settings from the process environment (and .env if present)."""
    load_dotenv(dotenv_path=ENV_PATH)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

    return Settings(
        database_url=database_url,
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        mobile_money_a_secret=os.getenv("MOBILE_MONEY_A_SECRET", ""),
        mobile_money_b_secret=os.getenv("MOBILE_MONEY_B_SECRET", ""),
        base_currency=os.getenv("BASE_CURRENCY", "usd").lower(),
        alternate_currency=os.getenv("ALTERNATE_CURRENCY", "ghs").lower(),
        exchange_rate=float(os.getenv("EXCHANGE_RATE", "15")),
        max_amount=int(os.getenv("MAX_AMOUNT", "99999999")),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_as_bool(os.getenv("LOG_JSON"), True),
        port=int(os.getenv("PORT", "9999")),
    )
