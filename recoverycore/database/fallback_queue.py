"""
Local Fallback Queue
===================

Write-ahead spool used when the primary error log store rejects a write.
Each record is kept as ``error_<errorId>.json`` in a local directory until
``drain`` replays it into the primary store. A later write for the same
error replaces the earlier one, so only the newest state is replayed.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Union

from .base import DatabaseError, IErrorLogStore

logger = logging.getLogger(__name__)


class FallbackQueue:
    """Directory-backed queue of error records awaiting persistence."""

    def __init__(self, directory: Union[str, Path], max_entries: int = 1000):
        self.directory = Path(directory)
        self.max_entries = max_entries
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, error_id: str) -> Path:
        return self.directory / f"error_{error_id}.json"

    def enqueue(self, record: Dict[str, Any]) -> None:
        """Spool a record. Writes go through a temp file so readers never see partial JSON."""
        path = self._path_for(record["id"])
        tmp_path = path.with_suffix(".tmp")

        with open(tmp_path, "w") as f:
            json.dump(record, f, default=str)
        os.replace(tmp_path, path)

        self._enforce_limit()

    def _entries(self) -> List[Path]:
        return sorted(self.directory.glob("error_*.json"), key=lambda p: p.stat().st_mtime)

    def _enforce_limit(self):
        entries = self._entries()
        overflow = len(entries) - self.max_entries
        for path in entries[:max(overflow, 0)]:
            logger.warning(f"Fallback queue full, dropping {path.name}")
            path.unlink(missing_ok=True)

    def pending(self) -> List[Dict[str, Any]]:
        """Records waiting to be replayed, oldest first."""
        records = []
        for path in self._entries():
            try:
                with open(path, "r") as f:
                    records.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.error(f"Unreadable fallback entry {path.name}: {e}")
        return records

    def __len__(self) -> int:
        return len(self._entries())

    async def drain(self, store: IErrorLogStore) -> int:
        """
        Replay spooled records into the store.

        Stops at the first failure so ordering is kept for the next drain.

        Returns:
            Number of records persisted
        """
        drained = 0

        for path in self._entries():
            try:
                with open(path, "r") as f:
                    record = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Discarding unreadable fallback entry {path.name}: {e}")
                path.unlink(missing_ok=True)
                continue

            try:
                await store.save_error(record)
            except DatabaseError as e:
                logger.warning(f"Fallback drain paused, primary store still failing: {e}")
                break

            path.unlink(missing_ok=True)
            drained += 1

        if drained:
            logger.info(f"Replayed {drained} spooled error records")

        return drained
