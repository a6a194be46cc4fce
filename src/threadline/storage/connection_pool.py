"""
Database Connection Pool

Bounded pool of :class:`SqliteRepository` connections shared by concurrent
sync runs. SQLite in WAL mode lets readers proceed while one writer holds
the lock; pooled connections wait on the busy timeout for their turn.

Features:
- Connection reuse (reduces connection overhead)
- Configurable pool size (default: 5 connections)
- Health check before each hand-out
- ``run`` executes repository calls in a worker thread
- Graceful shutdown with connection cleanup
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from queue import Empty, Queue
from threading import Lock
from types import TracebackType
from typing import TypeVar

from ..core.config import StorageSettings
from ..core.errors import StorageError
from .sqlite import SqliteRepository

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL_SECONDS = 0.01


class ConnectionPool:
    """Thread-safe connection pool for :class:`SqliteRepository`."""

    def __init__(self, settings: StorageSettings, pool_size: int | None = None) -> None:
        """
        Initialize connection pool.

        Args:
            settings: Storage settings containing database path
            pool_size: Maximum number of connections (default: ``settings.pool_size``)
        """
        self.settings = settings
        self.pool_size = pool_size or settings.pool_size
        self._pool: Queue[SqliteRepository] = Queue(maxsize=self.pool_size)
        self._lock = Lock()
        self._created_count = 0
        self._closed = False

        for _ in range(self.pool_size):
            self._pool.put(self._create_connection())

        LOGGER.info("Initialized connection pool with %d connections", self.pool_size)

    def _create_connection(self) -> SqliteRepository:
        """Open a new repository connection."""
        with self._lock:
            if self._closed:
                raise StorageError("Connection pool is closed")
            repository = SqliteRepository(self.settings)
            self._created_count += 1
            LOGGER.debug("Created connection #%d", self._created_count)
            return repository

    def _checked(self, repository: SqliteRepository) -> SqliteRepository:
        """Return ``repository`` or a fresh replacement if it went stale."""
        if repository.ping():
            return repository
        LOGGER.warning("Connection validation failed, replacing connection")
        repository.close()
        return self._create_connection()

    @contextmanager
    def acquire(self, timeout: float = 10.0) -> Iterator[SqliteRepository]:
        """
        Acquire a connection from the pool (synchronous).

        Raises:
            StorageError: If pool is closed or no connection frees up in time
        """
        if self._closed:
            raise StorageError("Connection pool is closed")
        try:
            repository = self._checked(self._pool.get(timeout=timeout))
        except Empty as exc:
            raise StorageError(
                f"Could not acquire connection within {timeout} seconds"
            ) from exc
        try:
            yield repository
        finally:
            self._pool.put(repository)

    @asynccontextmanager
    async def acquire_async(self, timeout: float = 10.0) -> AsyncIterator[SqliteRepository]:
        """Acquire a connection without blocking the event loop."""
        if self._closed:
            raise StorageError("Connection pool is closed")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                repository = self._pool.get_nowait()
                break
            except Empty:
                if loop.time() >= deadline:
                    raise StorageError(
                        f"Could not acquire connection within {timeout} seconds"
                    ) from None
                await asyncio.sleep(POLL_INTERVAL_SECONDS)

        try:
            repository = self._checked(repository)
            yield repository
        finally:
            self._pool.put(repository)

    async def run(self, operation: Callable[[SqliteRepository], T]) -> T:
        """Run ``operation`` against a pooled repository in a worker thread."""
        async with self.acquire_async() as repository:
            return await asyncio.to_thread(operation, repository)

    def close(self) -> None:
        """Close all connections in the pool."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            closed_count = 0
            while True:
                try:
                    repository = self._pool.get_nowait()
                except Empty:
                    break
                repository.close()
                closed_count += 1
            LOGGER.info("Closed connection pool (%d connections closed)", closed_count)

    def __enter__(self) -> ConnectionPool:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager scope and close pool."""
        self.close()

    @property
    def size(self) -> int:
        """Number of idle connections currently in the pool."""
        return self._pool.qsize()

    @property
    def is_closed(self) -> bool:
        """Check if pool is closed."""
        return self._closed


__all__ = ["ConnectionPool"]
