# settings.py
from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "dev"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = ""
    PAYOUT_STORE: Literal["postgres", "memory"] = "postgres"
    DB_POOL_MAX_CONN: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=0)

    # -----------------------
    # Payment provider
    # -----------------------
    PAYOUT_PROVIDER: Literal["mock", "http"] = "mock"
    PAYOUT_PROVIDER_BASE_URL: str = ""
    PAYOUT_PROVIDER_API_KEY: str = ""
    PAYOUT_PROVIDER_TIMEOUT_S: float = 20.0
    PAYOUT_CURRENCY: str = "usd"

    # -----------------------
    # Balance
    # -----------------------
    PAYOUT_MIN_THRESHOLD_CENTS: int = Field(default=5000, ge=0)
    # fraction of total held back, 0.1 == 10%
    PAYOUT_RESERVE_PERCENTAGE: float = Field(default=0.0, ge=0.0, le=1.0)

    # -----------------------
    # Idempotency / dedupe
    # -----------------------
    PAYOUT_IDEMPOTENCY_BUCKET_SECONDS: int = Field(default=300, ge=1)
    PAYOUT_DEDUPE_WINDOW_SECONDS: int = Field(default=300, ge=0)

    # -----------------------
    # Retry
    # -----------------------
    PAYOUT_MAX_RETRIES: int = Field(default=3, ge=0)
    PAYOUT_RETRY_BASE_DELAY_S: float = 60.0
    PAYOUT_RETRY_MAX_DELAY_S: float = 3600.0
    PAYOUT_RETRY_MULTIPLIER: float = 2.0
    PAYOUT_RETRY_JITTER_FRACTION: float = Field(default=0.1, ge=0.0, le=1.0)
    PAYOUT_UNMAPPED_ERROR_MAX_ATTEMPTS: int = Field(default=2, ge=1)

    # -----------------------
    # Workers
    # -----------------------
    PAYOUT_WORKER_CONCURRENCY: int = Field(default=2, ge=1)
    RETRY_POLL_SECONDS: int = 5
    RETRY_BATCH_SIZE: int = 50
    # how long a claimed retry is hidden from other workers
    RETRY_CLAIM_LEASE_SECONDS: int = 300
    RECONCILE_INTERVAL_SECONDS: int = 300
    RECONCILE_STALENESS_SECONDS: int = 900
    RECONCILE_BATCH_SIZE: int = 100


def validate_env_settings(s: Settings | None = None) -> None:
    """
    Fail fast in staging/prod when required values are missing.
    dev is allowed to boot with the sandbox provider and no database.
    """
    s = s or settings
    env = (s.ENV or "dev").strip().lower()
    if env not in {"staging", "prod", "production"}:
        return

    missing: list[str] = []
    if s.PAYOUT_STORE == "postgres" and not (s.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if s.PAYOUT_PROVIDER == "http":
        if not (s.PAYOUT_PROVIDER_BASE_URL or "").strip():
            missing.append("PAYOUT_PROVIDER_BASE_URL")
        if not (s.PAYOUT_PROVIDER_API_KEY or "").strip():
            missing.append("PAYOUT_PROVIDER_API_KEY")
    elif env in {"prod", "production"}:
        missing.append("PAYOUT_PROVIDER (mock provider not allowed in prod)")

    if missing:
        raise RuntimeError("Missing required settings: " + ", ".join(missing))


settings = Settings()
