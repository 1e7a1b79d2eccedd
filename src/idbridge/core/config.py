"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    """Process-wide settings.

    Attributes:
        http_timeout_seconds: Timeout for every IdP and directory request.
        http_retries: Retries for idempotent GETs on transient failures.
        state_max_age_seconds: Lifetime of an OIDC authorization state.
        state_sweep_interval_seconds: How often expired states are swept.
        saml_clock_skew_seconds: Tolerance on SAML validity windows.
        scheduler_tick_seconds: Interval of the directory sync scheduler.
        sync_page_size: Page size requested from directory sources.
        default_role: Role applied when no mapping matches.
        database_url: asyncpg DSN used by the job runner.
    """

    http_timeout_seconds: float = 10.0
    http_retries: int = 1
    state_max_age_seconds: int = 600  # 10 minutes
    state_sweep_interval_seconds: int = 300  # 5 minutes
    saml_clock_skew_seconds: int = 60
    scheduler_tick_seconds: int = 60
    sync_page_size: int = 100
    default_role: str = "USER"
    database_url: str | None = None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


@lru_cache
def get_settings() -> Settings:
    """Get the configured settings.

    Returns:
        Settings built from IDBRIDGE_* environment variables.
    """
    return Settings(
        http_timeout_seconds=_env_float("IDBRIDGE_HTTP_TIMEOUT_SECONDS", 10.0),
        http_retries=_env_int("IDBRIDGE_HTTP_RETRIES", 1),
        state_max_age_seconds=_env_int("IDBRIDGE_STATE_MAX_AGE_SECONDS", 600),
        state_sweep_interval_seconds=_env_int("IDBRIDGE_STATE_SWEEP_INTERVAL_SECONDS", 300),
        saml_clock_skew_seconds=_env_int("IDBRIDGE_SAML_CLOCK_SKEW_SECONDS", 60),
        scheduler_tick_seconds=_env_int("IDBRIDGE_SCHEDULER_TICK_SECONDS", 60),
        sync_page_size=_env_int("IDBRIDGE_SYNC_PAGE_SIZE", 100),
        default_role=os.environ.get("IDBRIDGE_DEFAULT_ROLE", "USER").strip() or "USER",
        database_url=os.environ.get("DATABASE_URL") or None,
    )
