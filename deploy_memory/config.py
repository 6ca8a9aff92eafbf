"""
Environment-driven configuration for Deploy Memory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError

DEFAULT_TABLE_NAME = "deploy-memory"
DEFAULT_REGION = "us-west-2"
DEFAULT_TTL_DAYS = 90
DEFAULT_MAX_EVENTS = 50
BACKENDS = ("dynamodb", "local")


@dataclass(frozen=True)
class Settings:
    """Resolved Deploy Memory settings."""
    table_name: str = DEFAULT_TABLE_NAME
    region: str = DEFAULT_REGION
    ttl_days: int = DEFAULT_TTL_DAYS
    backend: str = "dynamodb"
    home: Path = Path(".deploy_memory")
    max_events: int = DEFAULT_MAX_EVENTS


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def get_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Settings: Resolved settings

    Raises:
        ConfigError: If a value is malformed
    """
    if environ is None:
        environ = os.environ

    backend = environ.get("DEPLOY_MEMORY_BACKEND", "dynamodb").strip().lower()
    if backend not in BACKENDS:
        raise ConfigError(f"DEPLOY_MEMORY_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

    region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or DEFAULT_REGION

    return Settings(
        table_name=environ.get("DEPLOY_MEMORY_TABLE", DEFAULT_TABLE_NAME),
        region=region,
        ttl_days=_int_setting(environ, "DEPLOY_MEMORY_TTL_DAYS", DEFAULT_TTL_DAYS),
        backend=backend,
        home=Path(environ.get("DEPLOY_MEMORY_HOME", ".deploy_memory")).resolve(),
        max_events=_int_setting(environ, "DEPLOY_MEMORY_MAX_EVENTS", DEFAULT_MAX_EVENTS),
    )
