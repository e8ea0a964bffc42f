"""
core/config.py
Environment-based configuration using pydantic-settings.
Loads from .env file automatically; every option has a documented default.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # --- Timers (milliseconds) ---
    POLL_INTERVAL_MS: int = 60_000
    RESOLUTION_CHECK_INTERVAL_MS: int = 300_000
    CLEANUP_INTERVAL_MS: int = 300_000

    # --- Capital & sizing ---
    STARTING_CAPITAL: float = 10_000.0
    KELLY_FRACTION: float = 0.25          # quarter-Kelly
    MAX_RISK_PER_TRADE: float = 0.02      # fraction of total capital
    MAX_POSITION_SIZE: float = 500.0      # absolute currency cap
    MIN_TRADE_SIZE: float = 1.0           # sizes at or below this are rejected

    # --- Admission limits ---
    DAILY_LOSS_LIMIT: float = 500.0
    MAX_OPEN_POSITIONS: int = 10
    CORRELATION_THRESHOLD: float = 0.7    # max same-category share of open positions
    MIN_CONFIDENCE: float = 65.0
    MAX_BELIEF_WIDTH: float = 25.0
    MIN_LIQUIDITY: float = 1_000.0

    # --- Belief store ---
    MAX_BELIEF_STEP: float = 20.0         # max move of either bound per observation
    MAX_SIGNAL_HISTORY: int = 50

    # --- Supervisor ---
    MAX_DRAWDOWN_PERCENT: float = 10.0
    CALIBRATION_COVERAGE_DEVIATION_HALT: float = 15.0
    MAX_CONSECUTIVE_INVALIDATIONS: int = 5
    MIN_CALIBRATION_SAMPLES: int = 20

    # --- Market source ---
    POLYMARKET_GAMMA_URL: str = "https://gamma-api.polymarket.com"
    MARKET_FETCH_LIMIT: int = 100
    EXTERNAL_TIMEOUT_SECONDS: float = 15.0

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./belief_engine.db"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Singleton access to application settings."""
    return Settings()
