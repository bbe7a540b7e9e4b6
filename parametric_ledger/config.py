"""Parametric Ledger — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from parametric_ledger.schema import (
    DROUGHT_THRESHOLD,
    MAX_DURATION_DAYS,
    MIN_DURATION_DAYS,
    MIN_PREMIUM_PERCENT,
)


class LedgerSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "LEDGER_",
        "extra": "ignore",
    }

    # ── Authority ──────────────────────────────────────────────
    authority_principal: str = ""

    # ── Product terms ──────────────────────────────────────────
    drought_threshold: int = DROUGHT_THRESHOLD
    min_duration_days: int = MIN_DURATION_DAYS
    max_duration_days: int = MAX_DURATION_DAYS
    min_premium_percent: int = MIN_PREMIUM_PERCENT

    # ── Behavioral switches ────────────────────────────────────
    # An unpublished location reads as zero and so satisfies the drought
    # condition unless this is turned off.
    unpublished_location_pays: bool = True
    # Reject purchases that would leave outstanding coverage above the pool.
    enforce_solvency: bool = False

    # ── Event log ──────────────────────────────────────────────
    # SQLAlchemy URL; empty keeps the event log in memory.
    event_log_url: str = ""

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = LedgerSettings()
