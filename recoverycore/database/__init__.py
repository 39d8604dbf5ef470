"""
Error Log Persistence
====================

Durable storage for reported errors.

Classes:
    IErrorLogStore: Abstract base class for error log stores
    MemoryErrorLogStore: In-memory store for development and testing
    PostgreSQLErrorLogStore: asyncpg-backed ``error_logs`` table
    FallbackQueue: Local write-ahead spool replayed into the primary store
    ErrorLogStoreFactory: Builds a store from configuration
"""

from typing import Any

from .base import (
    IErrorLogStore,
    StorageBackend,
    DatabaseError,
    ConnectionError,
    QueryError
)
from .memory_store import MemoryErrorLogStore
from .fallback_queue import FallbackQueue


class ErrorLogStoreFactory:
    """Factory for creating error log stores."""

    @staticmethod
    def create_store(backend: StorageBackend, **kwargs: Any) -> IErrorLogStore:
        """Create error log store instance."""
        if backend == StorageBackend.MEMORY:
            return MemoryErrorLogStore()

        from .postgresql_store import PostgreSQLErrorLogStore

        dsn = kwargs.get("dsn")
        if not dsn:
            raise ValueError("PostgreSQL dsn required")
        return PostgreSQLErrorLogStore(
            dsn,
            table_name=kwargs.get("table_name", "error_logs"),
            pool_size=kwargs.get("pool_size", 5),
            command_timeout=kwargs.get("command_timeout", 10.0)
        )


__all__ = [
    "IErrorLogStore",
    "StorageBackend",
    "DatabaseError",
    "ConnectionError",
    "QueryError",
    "MemoryErrorLogStore",
    "FallbackQueue",
    "ErrorLogStoreFactory",
]
