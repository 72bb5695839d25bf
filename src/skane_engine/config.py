"""Centralised engine settings loaded from environment / .env file."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_db_dir() -> Path:
    """Return (and create) the directory that holds the SQLite file."""
    d = Path(os.getenv("SKANE_DATA_DIR", str(_PROJECT_ROOT / "data")))
    d.mkdir(parents=True, exist_ok=True)
    return d


_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_resolve_db_dir() / 'skane.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the Skane session engine.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat ``SKANE_``
    namespace (stripped automatically by *pydantic-settings*), e.g.
    ``SKANE_COOLDOWN_HOURS=24``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SKANE_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))
    api_secret_key: str = "change-me-to-a-random-secret"
    cors_origins: str = "*"  # comma-separated origins, or "*" for all
    feedback_rate_limit_per_minute: int = 10
    trust_forwarded_for: bool = False  # honour X-Forwarded-For only behind a trusted proxy

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Signal catalog ────────────────────────────────────────
    signal_min: float = 0.0
    signal_max: float = 1.0

    # ── Classifier ────────────────────────────────────────────
    low_cut: float = 0.35  # below → LOW_ENERGY
    high_cut: float = 0.65  # above → HIGH_ACTIVATION

    # ── Skane Index ───────────────────────────────────────────
    band_base_half_width: float = 3.0
    band_confidence_spread: float = 12.0  # extra half width at zero confidence
    full_relief_ratio: float = 0.6  # "better" lands at before.min * (1 - ratio)
    min_share_delta: float = 10.0

    # ── Session lifecycle ─────────────────────────────────────
    cooldown_hours: int = 24
    guest_recency_minutes: int = 60
    unknown_feedback_policy: Literal["coerce", "reject"] = "coerce"
    default_action_id: str = "box_breathing"

    # ── Ritual eligibility ────────────────────────────────────
    ritual_min_actions: int = 5
    ritual_min_positive_rate: float = 0.6
    ritual_min_days_since_first: int = 3
    ritual_min_distinct_days: int = 2
    ritual_count_neutral_as_positive: bool = True

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.signal_min >= self.signal_max:
            raise ValueError("signal_min must be lower than signal_max")
        if not 0.0 < self.low_cut < self.high_cut < 1.0:
            raise ValueError("cut points must satisfy 0 < low_cut < high_cut < 1")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
