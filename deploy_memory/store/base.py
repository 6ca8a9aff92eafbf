"""
Common interface for deploy memory stores.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from ..config import DEFAULT_TTL_DAYS
from ..models import DeployMemoryEvent, EventStats, utc_now

# Upper bound on the history aggregated by get_event_stats.
STATS_HISTORY_LIMIT = 1000


class MemoryStore(ABC):
    """Base class for deploy memory stores."""

    def __init__(self, ttl_days: int = DEFAULT_TTL_DAYS):
        self.ttl_days = ttl_days

    def expires_at(self, written_at: datetime) -> datetime:
        """Expiry time for an event written at written_at."""
        return written_at + timedelta(days=self.ttl_days)

    @abstractmethod
    def put_event(self, event: DeployMemoryEvent) -> None:
        """Append one event. Events are never updated in place."""
        pass

    @abstractmethod
    def query_by_fingerprint(self, fingerprint_id: str, limit: int = 10) -> List[DeployMemoryEvent]:
        """Events for one fingerprint, most recent first, at most limit."""
        pass

    def get_latest_event(self, fingerprint_id: str) -> Optional[DeployMemoryEvent]:
        """Most recent event for a fingerprint, or None."""
        events = self.query_by_fingerprint(fingerprint_id, limit=1)
        return events[0] if events else None

    def get_event_stats(self, fingerprint_id: str) -> EventStats:
        """
        Aggregate a fingerprint's recent history.

        A fingerprint with no history yields zero occurrences stamped with the
        current time.
        """
        events = self.query_by_fingerprint(fingerprint_id, limit=STATS_HISTORY_LIMIT)

        if not events:
            now = utc_now()
            return EventStats(
                fingerprint_id=fingerprint_id,
                total_occurrences=0,
                first_seen=now,
                last_seen=now,
                average_confidence=0.0,
            )

        timestamps = [e.created_at for e in events]
        return EventStats(
            fingerprint_id=fingerprint_id,
            total_occurrences=len(events),
            first_seen=min(timestamps),
            last_seen=max(timestamps),
            average_confidence=sum(e.confidence for e in events) / len(events),
        )
