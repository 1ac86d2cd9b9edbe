"""
Runtime configuration for the address migration.

Values come from ADDRMIGRATE_* environment variables (a project .env file
is loaded first); CLI flags override them in app.py.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from .env import load_env
from .retry import RetryPolicy, exponential_backoff, linear_backoff

ENV_PREFIX = "ADDRMIGRATE_"

BACKOFFS = {
    "linear": linear_backoff,
    "exponential": exponential_backoff,
}


def _get_int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {value}")
    return value


def _get_str_env(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class MigrationConfig:
    """Tunables for one migration run."""

    database_url: str = "sqlite:///data/orders.db"
    batch_size: int = 50
    max_attempts: int = 3
    retry_base_delay: float = 0.1
    retry_max_delay: float = 5.0
    retry_backoff: str = "linear"
    batch_pause: float = 0.1
    resolver_url: Optional[str] = None
    resolver_timeout: float = 10.0
    log_level: str = "INFO"

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.retry_backoff not in BACKOFFS:
            raise ValueError(
                f"retry_backoff must be one of {sorted(BACKOFFS)}, got {self.retry_backoff!r}"
            )

    @classmethod
    def from_env(cls) -> "MigrationConfig":
        load_env()
        defaults = cls()
        return cls(
            database_url=_get_str_env("DATABASE_URL", defaults.database_url),
            batch_size=_get_int_env("BATCH_SIZE", defaults.batch_size, minimum=1),
            max_attempts=_get_int_env("MAX_ATTEMPTS", defaults.max_attempts, minimum=1),
            retry_base_delay=_get_float_env("RETRY_BASE_DELAY", defaults.retry_base_delay),
            retry_max_delay=_get_float_env("RETRY_MAX_DELAY", defaults.retry_max_delay),
            retry_backoff=_get_str_env("RETRY_BACKOFF", defaults.retry_backoff).lower(),
            batch_pause=_get_float_env("BATCH_PAUSE", defaults.batch_pause),
            resolver_url=_get_str_env("RESOLVER_URL", defaults.resolver_url),
            resolver_timeout=_get_float_env("RESOLVER_TIMEOUT", defaults.resolver_timeout),
            log_level=_get_str_env("LOG_LEVEL", defaults.log_level).upper(),
        )

    def with_overrides(self, **overrides) -> "MigrationConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff=BACKOFFS[self.retry_backoff],
        )
