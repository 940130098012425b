"""Application configuration — environment variables and defaults.

Alpaca credentials, server bind address and every pipeline threshold live
HERE. A ``.env`` file in the working directory is loaded first if present.
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from sentiment_api.errors import ValidationError

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    APP_VERSION: str = "0.1.0"

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LOGS_DIR: Path = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_TO_FILE: bool = _env_bool("LOG_TO_FILE", "true")

    # ── Alpaca ────────────────────────────────────────────────────
    ALPACA_API_KEY: str = os.getenv("APCA_API_KEY_ID", "")
    ALPACA_SECRET_KEY: str = os.getenv("APCA_API_SECRET_KEY", "")
    ALPACA_BASE_URL: str = os.getenv("APCA_BASE_URL", "https://paper-api.alpaca.markets")
    ALPACA_DATA_URL: str = os.getenv("APCA_DATA_URL", "https://data.alpaca.markets")
    OPTIONS_FEED: str = os.getenv("ALPACA_OPTIONS_FEED", "indicative")
    HTTP_MAX_ATTEMPTS: int = int(os.getenv("HTTP_MAX_ATTEMPTS", "3"))

    # Server
    HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("SERVER_PORT", "3000"))
    MAX_CONCURRENT_REQUESTS: int = int(os.getenv("MAX_CONCURRENT_REQUESTS", "10"))
    REQUEST_TIMEOUT_SECS: float = float(os.getenv("REQUEST_TIMEOUT_SECS", "30"))

    # ── Sentiment model ───────────────────────────────────────────
    SENTIMENT_MODEL_PATH: str = os.getenv("SENTIMENT_MODEL_PATH", "ProsusAI/finbert")
    MAX_TEXT_LENGTH: int = int(os.getenv("MAX_TEXT_LENGTH", "10000"))
    SENTIMENT_BATCH_SIZE: int = int(os.getenv("SENTIMENT_BATCH_SIZE", "16"))
    # Model weights take 500MB-2GB; one worker per loaded copy is plenty on a Pi
    SENTIMENT_WORKERS: int = int(os.getenv("SENTIMENT_WORKERS", "1"))

    # ── Data volume ───────────────────────────────────────────────
    NEWS_LIMIT: int = int(os.getenv("NEWS_LIMIT", "50"))
    OPTIONS_LIMIT: int = int(os.getenv("OPTIONS_LIMIT", "100"))
    PRICE_HISTORY_DAYS: int = int(os.getenv("PRICE_HISTORY_DAYS", "60"))

    # ── Signal thresholds ─────────────────────────────────────────
    MIN_SENTIMENT_CONFIDENCE: float = float(os.getenv("MIN_SENTIMENT_CONFIDENCE", "0.6"))
    MIN_OPTION_VOLUME: int = int(os.getenv("MIN_OPTION_VOLUME", "10"))
    MIN_OPEN_INTEREST: int = int(os.getenv("MIN_OPEN_INTEREST", "50"))
    LEAP_MIN_DAYS: int = int(os.getenv("LEAP_MIN_DAYS", "365"))
    PREFER_LEAPS: bool = _env_bool("PREFER_LEAPS")
    RISK_FREE_RATE: float = float(os.getenv("RISK_FREE_RATE", "0.045"))

    # ── Portfolio exposure policy (percent of capital) ────────────
    MAX_PORTFOLIO_EXPOSURE_PCT: float = float(os.getenv("MAX_PORTFOLIO_EXPOSURE_PCT", "20.0"))
    MAX_POSITION_PCT: float = float(os.getenv("MAX_POSITION_PCT", "5.0"))

    def __init__(self, **overrides: Any) -> None:
        """Apply keyword overrides on top of the environment defaults."""
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                msg = f"Unknown setting: {key}"
                raise ValidationError(msg)
            setattr(self, key, value)

    def validate(self) -> None:
        """Fail fast on configuration the server cannot run with.

        Called once at startup — never per request.
        """
        missing = [
            name
            for name, value in (
                ("APCA_API_KEY_ID", self.ALPACA_API_KEY),
                ("APCA_API_SECRET_KEY", self.ALPACA_SECRET_KEY),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required configuration: {', '.join(missing)}")

        positive = {
            "MAX_CONCURRENT_REQUESTS": self.MAX_CONCURRENT_REQUESTS,
            "REQUEST_TIMEOUT_SECS": self.REQUEST_TIMEOUT_SECS,
            "MAX_TEXT_LENGTH": self.MAX_TEXT_LENGTH,
            "SENTIMENT_BATCH_SIZE": self.SENTIMENT_BATCH_SIZE,
            "SENTIMENT_WORKERS": self.SENTIMENT_WORKERS,
            "NEWS_LIMIT": self.NEWS_LIMIT,
            "HTTP_MAX_ATTEMPTS": self.HTTP_MAX_ATTEMPTS,
        }
        bad = [name for name, value in positive.items() if value <= 0]
        if bad:
            raise ValidationError(f"Settings must be positive: {', '.join(bad)}")

        if not 0.0 <= self.MIN_SENTIMENT_CONFIDENCE <= 1.0:
            raise ValidationError("MIN_SENTIMENT_CONFIDENCE must be within [0, 1]")
        if self.MAX_POSITION_PCT > self.MAX_PORTFOLIO_EXPOSURE_PCT:
            raise ValidationError("MAX_POSITION_PCT cannot exceed MAX_PORTFOLIO_EXPOSURE_PCT")

    def public_config(self) -> dict[str, Any]:
        """Configuration subset that is safe to expose over /metrics."""
        return {
            "max_concurrent_requests": self.MAX_CONCURRENT_REQUESTS,
            "alpaca_base_url": self.ALPACA_BASE_URL,
        }


settings = Settings()
