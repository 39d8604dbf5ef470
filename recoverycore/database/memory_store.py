"""
In-memory error log store for development and testing.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from .base import IErrorLogStore, QueryError

logger = logging.getLogger(__name__)


class MemoryErrorLogStore(IErrorLogStore):
    """In-memory error log store."""

    def __init__(self, max_size: int = 10000):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.max_size = max_size
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def save_error(self, record: Dict[str, Any]) -> None:
        if "id" not in record:
            raise QueryError("Error record has no id")

        self.records[record["id"]] = copy.deepcopy(record)

        # Trim oldest if too large
        while len(self.records) > self.max_size:
            oldest = min(self.records.values(), key=lambda r: r.get("created_at") or "")
            del self.records[oldest["id"]]

    async def probe(self) -> int:
        return min(len(self.records), 1)

    async def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = sorted(self.records.values(), key=lambda r: r.get("created_at") or "", reverse=True)
        return [copy.deepcopy(row) for row in rows[:limit]]

    async def mark_resolved(self, error_id: str) -> bool:
        record = self.records.get(error_id)
        if record is None:
            return False
        record["resolved"] = True
        record["resolved_at"] = datetime.now(timezone.utc).isoformat()
        return True
