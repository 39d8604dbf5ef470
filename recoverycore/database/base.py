"""
Error Log Storage Interface
==========================

Abstract base class and exceptions for durable error log stores.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional


class DatabaseError(Exception):
    """Base exception for database operations."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, **kwargs):
        super().__init__(message)
        self.original_error = original_error
        self.metadata = kwargs


class ConnectionError(DatabaseError):
    """Exception raised for database connection issues."""
    pass


class QueryError(DatabaseError):
    """Exception raised for query execution issues."""
    pass


class StorageBackend(Enum):
    """Supported storage backends."""
    MEMORY = "memory"
    POSTGRESQL = "postgresql"


class IErrorLogStore(ABC):
    """Interface for error log storage backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Open connections."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    @abstractmethod
    async def save_error(self, record: Dict[str, Any]) -> None:
        """
        Insert or update one ``error_logs`` row keyed by ``id``.

        Raises:
            DatabaseError: If the write fails
        """
        pass

    @abstractmethod
    async def probe(self) -> int:
        """Trivial read used by health checks. Returns rows read."""
        pass

    @abstractmethod
    async def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent rows, newest first."""
        pass

    @abstractmethod
    async def mark_resolved(self, error_id: str) -> bool:
        """Flag a row as resolved. Returns False if it does not exist."""
        pass
