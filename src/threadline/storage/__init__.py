"""Storage adapters."""

from .connection_pool import ConnectionPool
from .sqlite import SqliteRepository

__all__ = ["ConnectionPool", "SqliteRepository"]
