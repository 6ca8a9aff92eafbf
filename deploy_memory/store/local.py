"""
File-backed deploy memory store.

One NDJSON file per fingerprint under the store home. Events are appended;
expired lines are skipped when reading and pruned on the next write.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

from ..config import DEFAULT_TTL_DAYS
from ..errors import StoreError
from ..models import DeployMemoryEvent, utc_now
from .base import MemoryStore

logger = logging.getLogger(__name__)

_SAFE_FINGERPRINT = re.compile(r'^[A-Za-z0-9_-]+$')


class LocalMemoryStore(MemoryStore):
    """Stores deploy memory events as NDJSON files on local disk."""

    def __init__(self, home: Union[str, Path], ttl_days: int = DEFAULT_TTL_DAYS):
        super().__init__(ttl_days)
        self.home = Path(home)

    def _events_file(self, fingerprint_id: str) -> Path:
        if not _SAFE_FINGERPRINT.match(fingerprint_id):
            raise ValueError(f"Invalid fingerprint: {fingerprint_id}")
        return self.home / "memory" / f"{fingerprint_id}.ndjson"

    def put_event(self, event: DeployMemoryEvent) -> None:
        events_file = self._events_file(event.fingerprint_id)
        events_file.parent.mkdir(parents=True, exist_ok=True)

        now = utc_now()
        self._prune_expired(events_file, now)

        record = event.to_dict()
        record["expires_at"] = self.expires_at(now).isoformat()

        with open(events_file, "a") as f:
            f.write(json.dumps(record) + "\n")
            f.flush()

        logger.info(f"Stored deploy memory event {event.event_id} for fingerprint {event.fingerprint_id}")

    def query_by_fingerprint(self, fingerprint_id: str, limit: int = 10) -> List[DeployMemoryEvent]:
        events_file = self._events_file(fingerprint_id)
        if limit <= 0 or not events_file.exists():
            return []

        now = utc_now()
        events = []
        with open(events_file, "r") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    # A reader can race a writer mid-line; skip the partial record.
                    logger.debug(f"Skipping partial line {line_no} in {events_file}")
                    continue
                try:
                    if _expires_at(record) <= now:
                        continue
                    events.append(DeployMemoryEvent.from_dict(record))
                except (KeyError, TypeError, ValueError) as e:
                    raise StoreError(f"Malformed record at {events_file}:{line_no}: {e}") from e

        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[:limit]

    def _prune_expired(self, events_file: Path, now: datetime) -> None:
        """Rewrite events_file without expired records. Unreadable lines are kept."""
        if not events_file.exists():
            return

        kept = []
        dropped = 0
        with open(events_file, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    expired = _expires_at(json.loads(line)) <= now
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    expired = False
                if expired:
                    dropped += 1
                    continue
                kept.append(line)

        if not dropped:
            return

        tmp_file = events_file.with_name(events_file.name + ".tmp")
        with open(tmp_file, "w") as f:
            f.writelines(line + "\n" for line in kept)
            f.flush()
        tmp_file.replace(events_file)
        logger.debug(f"Pruned {dropped} expired record(s) from {events_file}")


def _expires_at(record: Dict[str, Any]) -> datetime:
    return datetime.fromisoformat(record["expires_at"])
