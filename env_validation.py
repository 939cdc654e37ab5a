"""Environment variable validation and management."""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


@dataclass(frozen=True)
class Settings:
    db_path: str
    redis_url: Optional[str]
    cache_namespace: str
    cache_default_ttl: int
    cache_timeout_seconds: float
    recommendation_max_limit: int
    seed_catalog: bool


def validate_environment() -> Settings:
    """Validate environment variables and return the resolved settings.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": "data.db",
        "CACHE_NAMESPACE": "reved",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "REDIS_URL": "Redis connection URL; the in-process cache is used when unset",
    }

    redis_url = os.getenv("REDIS_URL") or None
    if redis_url and not redis_url.startswith(("redis://", "rediss://", "unix://")):
        raise EnvironmentError(f"Invalid URL format for REDIS_URL: {redis_url}")

    ttl = get_env_int("CACHE_DEFAULT_TTL", 3600)
    if ttl <= 0:
        raise EnvironmentError("CACHE_DEFAULT_TTL must be a positive number of seconds")

    timeout = get_env_float("CACHE_TIMEOUT_SECONDS", 0.5)
    if timeout <= 0:
        raise EnvironmentError("CACHE_TIMEOUT_SECONDS must be positive")

    max_limit = get_env_int("RECOMMENDATION_MAX_LIMIT", 20)
    if max_limit < 1:
        raise EnvironmentError("RECOMMENDATION_MAX_LIMIT must be at least 1")

    # Log optional variables status
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

    return Settings(
        db_path=os.environ["DB_PATH"],
        redis_url=redis_url,
        cache_namespace=os.environ["CACHE_NAMESPACE"],
        cache_default_ttl=ttl,
        cache_timeout_seconds=timeout,
        recommendation_max_limit=max_limit,
        seed_catalog=get_env_bool("SEED_CATALOG", True),
    )

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be an integer, got {value!r}") from exc


def get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be a number, got {value!r}") from exc
