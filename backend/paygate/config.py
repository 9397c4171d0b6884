"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from decimal import Decimal
from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Solana Subscription Payment Gate"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'paygate.db'}"

    # --- Ledger ---
    SOLANA_RPC_URL: str = ""
    TREASURY_ADDRESS: str = ""
    LEDGER_TIMEOUT_SECONDS: float = 10.0
    CONFIRMATION_TIMEOUT_SECONDS: float = 60.0

    # --- Pricing (SOL) ---
    INDIVIDUAL_PRICE: Decimal = Decimal("0.5")
    GROUP_PRICE: Decimal = Decimal("2.0")
    REFERRAL_DISCOUNT_PERCENT: Decimal = Decimal("20")

    # --- Sessions ---
    SESSION_EXPIRY_MINUTES: int = 30
    SETTLED_RETENTION_MINUTES: int = 60
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 300.0

    # --- Settlement ---
    # Held back on top of the ledger's rent-exempt minimum
    SETTLEMENT_SAFETY_MARGIN: Decimal = Decimal("0.000005")
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0

    # --- Operator alerts ---
    OPERATOR_WEBHOOK_URL: Optional[str] = None

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
