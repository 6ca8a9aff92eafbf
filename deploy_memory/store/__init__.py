"""
Append-only, TTL-bounded storage of classified deploy failures.
"""

from .base import MemoryStore, STATS_HISTORY_LIMIT
from .dynamodb import DynamoDBMemoryStore
from .local import LocalMemoryStore
from .factory import create_store

__all__ = [
    "MemoryStore",
    "STATS_HISTORY_LIMIT",
    "DynamoDBMemoryStore",
    "LocalMemoryStore",
    "create_store",
]
