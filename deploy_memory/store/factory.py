"""
Store selection from settings.
"""

from typing import Optional

from ..config import Settings, get_settings
from .base import MemoryStore
from .dynamodb import DynamoDBMemoryStore
from .local import LocalMemoryStore


def create_store(settings: Optional[Settings] = None) -> MemoryStore:
    """Build the store configured by settings (or the environment)."""
    settings = settings or get_settings()

    if settings.backend == "local":
        return LocalMemoryStore(settings.home, ttl_days=settings.ttl_days)

    return DynamoDBMemoryStore(
        table_name=settings.table_name,
        region=settings.region,
        ttl_days=settings.ttl_days,
    )
