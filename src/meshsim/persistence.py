"""
Local key-value persistence for simulation state.

Four named collections hold JSON records keyed by a designated field:

    nodes     -> id
    messages  -> id
    content   -> cid
    metadata  -> key

Backends:
- SQLiteBackend: durable, aiosqlite with WAL mode, one table per collection
- InMemoryBackend: volatile dict, used as the fallback when SQLite is blocked

Persistence wraps a backend with the retry and fallback policy:
- upsert retries the whole operation (reopening the backend) under a RetryPolicy
- fetch_all reports an empty list instead of raising when the backend is down
- fetch/delete/clear propagate failures directly
- after close() nothing reopens the backend until open() is called again

Usage:
    persistence = Persistence(SQLiteBackend(base_path / "network.sqlite"))
    await persistence.open()
    await persistence.upsert("nodes", node.to_dict())
    nodes = await persistence.fetch_all("nodes")
"""

import asyncio
import copy
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiosqlite

from .errors import BackendUnavailable
from .models import MetadataEntry

logger = logging.getLogger(__name__)


# Collection name -> key field of its records
COLLECTIONS: Dict[str, str] = {
    "nodes": "id",
    "messages": "id",
    "content": "cid",
    "metadata": "key",
}


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}. Must be one of: {set(COLLECTIONS)}")


@contextmanager
def _backend_errors(action: str):
    """Translate low-level storage failures and undecodable rows into BackendUnavailable."""
    try:
        yield
    except (sqlite3.Error, OSError, ValueError) as e:
        raise BackendUnavailable(f"Failed to {action}: {e}") from e


class StorageBackend(ABC):
    """
    Abstract base class for key-value storage backends.

    Records are plain dictionaries; the backend never interprets them beyond
    JSON serialization. Every method may raise BackendUnavailable.
    """

    name = "abstract"

    @abstractmethod
    async def open(self) -> None:
        """Open the backend. Idempotent; collections are created if absent."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def put(self, collection: str, key: str, record: Dict[str, Any]) -> None:
        """Write or overwrite a record under key."""
        pass

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """Delete a record. Returns True if it existed."""
        pass

    @abstractmethod
    async def clear(self, collection: str) -> None:
        pass

    @abstractmethod
    async def ping(self) -> None:
        """Raise BackendUnavailable if the backend cannot be reached."""
        pass


class InMemoryBackend(StorageBackend):
    """
    Volatile backend keyed by collection name.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._open = False

    async def open(self) -> None:
        for collection in COLLECTIONS:
            self._collections.setdefault(collection, {})
        self._open = True

    async def close(self) -> None:
        self._open = False

    def _table(self, collection: str) -> Dict[str, Dict[str, Any]]:
        if not self._open:
            raise BackendUnavailable("In-memory backend is not open")
        return self._collections[collection]

    async def put(self, collection: str, key: str, record: Dict[str, Any]) -> None:
        self._table(collection)[key] = copy.deepcopy(record)

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        record = self._table(collection).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._table(collection).values()]

    async def delete(self, collection: str, key: str) -> bool:
        return self._table(collection).pop(key, None) is not None

    async def clear(self, collection: str) -> None:
        self._table(collection).clear()

    async def ping(self) -> None:
        if not self._open:
            raise BackendUnavailable("In-memory backend is not open")


class SQLiteBackend(StorageBackend):
    """
    Durable backend on a local SQLite file via aiosqlite.

    Each collection is a table of (key TEXT PRIMARY KEY, data TEXT) where data
    is the JSON-encoded record.
    """

    name = "sqlite"

    def __init__(self, db_path: Path, enable_wal: bool = True, timeout: float = 30.0):
        """
        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable WAL mode for concurrent writes (default: True)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self._enable_wal = enable_wal
        self._timeout = timeout
        self._conn: Optional[aiosqlite.Connection] = None

    async def open(self) -> None:
        if self._conn is not None:
            return
        with _backend_errors(f"open database {self.db_path}"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self.db_path, timeout=self._timeout)
            try:
                await self._init_db(conn)
            except BaseException:
                await conn.close()
                raise
            self._conn = conn
            logger.debug(f"Opened SQLite backend at {self.db_path}")

    async def _init_db(self, conn: aiosqlite.Connection) -> None:
        if self._enable_wal:
            await conn.execute("PRAGMA journal_mode=WAL")
        for collection in COLLECTIONS:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{collection}" (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)
        await conn.commit()

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        with _backend_errors("close database"):
            await conn.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise BackendUnavailable(f"Database {self.db_path} is not open")
        return self._conn

    async def put(self, collection: str, key: str, record: Dict[str, Any]) -> None:
        conn = self._connection()
        with _backend_errors(f"write {collection}/{key}"):
            await conn.execute(
                f'INSERT OR REPLACE INTO "{collection}" (key, data) VALUES (?, ?)',
                (key, json.dumps(record)),
            )
            await conn.commit()

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        conn = self._connection()
        with _backend_errors(f"read {collection}/{key}"):
            async with conn.execute(
                f'SELECT data FROM "{collection}" WHERE key = ?', (key,)
            ) as cursor:
                row = await cursor.fetchone()
            return json.loads(row[0]) if row else None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        conn = self._connection()
        records = []
        with _backend_errors(f"read {collection}"):
            async with conn.execute(f'SELECT data FROM "{collection}"') as cursor:
                async for row in cursor:
                    records.append(json.loads(row[0]))
        return records

    async def delete(self, collection: str, key: str) -> bool:
        conn = self._connection()
        with _backend_errors(f"delete {collection}/{key}"):
            async with conn.execute(
                f'DELETE FROM "{collection}" WHERE key = ?', (key,)
            ) as cursor:
                deleted = cursor.rowcount > 0
            await conn.commit()
        return deleted

    async def clear(self, collection: str) -> None:
        conn = self._connection()
        with _backend_errors(f"clear {collection}"):
            await conn.execute(f'DELETE FROM "{collection}"')
            await conn.commit()

    async def ping(self) -> None:
        conn = self._connection()
        with _backend_errors("reach database"):
            await conn.execute("SELECT 1")


@dataclass
class RetryPolicy:
    """
    Bounded retry with a fixed delay between attempts.

    Attributes:
        max_attempts: Total attempts including the first one
        delay: Seconds to wait between attempts
        retry_on: Exception types that trigger another attempt
    """
    max_attempts: int = 3
    delay: float = 0.3
    retry_on: Tuple[type, ...] = (BackendUnavailable,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")

    async def run(self,
                  operation: Callable[[], Awaitable[Any]],
                  describe: str = "operation",
                  on_retry: Optional[Callable[[], Awaitable[None]]] = None) -> Any:
        """
        Run an async operation, retrying on the configured exception types.

        Args:
            operation: Zero-argument coroutine function
            describe: Label used in log messages
            on_retry: Coroutine function awaited before each new attempt

        Returns:
            Whatever the operation returns

        Raises:
            The last retried exception once attempts are exhausted
        """
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except self.retry_on as e:
                last_error = e
                remaining = self.max_attempts - attempt
                if remaining == 0:
                    logger.error(f"{describe} failed after {self.max_attempts} attempts: {e}")
                    break
                logger.warning(
                    f"{describe} failed, retrying in {self.delay}s ({remaining} attempts left): {e}"
                )
                await asyncio.sleep(self.delay)
                if on_retry is not None:
                    await on_retry()
        raise last_error


@dataclass
class HealthStatus:
    """Result of a persistence health check."""
    status: str  # ok | error
    message: str
    backend: str = ""
    fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "backend": self.backend,
            "fallback": self.fallback,
        }


class Persistence:
    """
    Record store facade with retry-on-write and in-memory fallback.

    If the primary backend cannot be opened and fallback is enabled, every
    operation is redirected to an InMemoryBackend for the rest of the
    session. State still works, it just is not durable.
    """

    def __init__(self,
                 backend: Optional[StorageBackend] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 fallback: bool = True):
        self._backend = backend or InMemoryBackend()
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback = fallback
        self._using_fallback = False
        self._closed = False

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def using_fallback(self) -> bool:
        return self._using_fallback

    async def open(self) -> None:
        """
        Open the backend, switching to the in-memory fallback if it is blocked.

        Raises:
            BackendUnavailable: If the backend cannot be opened and fallback is off
        """
        self._closed = False
        try:
            await self._backend.open()
        except BackendUnavailable as e:
            if not self.fallback:
                raise
            logger.warning(f"Using in-memory fallback, {self._backend.name} backend unavailable: {e}")
            self._backend = InMemoryBackend()
            self._using_fallback = True
            await self._backend.open()

    async def close(self) -> None:
        """Close the backend. Later operations fail until open() is called again."""
        self._closed = True
        await self._backend.close()

    async def _ensure_open(self) -> None:
        if self._closed:
            raise BackendUnavailable("Persistence has been closed")
        await self._backend.open()

    async def _reopen(self) -> None:
        try:
            await self._backend.close()
        except BackendUnavailable as e:
            logger.debug(f"Ignoring close failure before reopen: {e}")

    @staticmethod
    def _key_for(collection: str, record: Dict[str, Any]) -> str:
        _check_collection(collection)
        key_field = COLLECTIONS[collection]
        key = record.get(key_field)
        if not key:
            raise ValueError(f"Record for {collection} is missing its key field '{key_field}'")
        return str(key)

    async def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write or overwrite a record, retrying the whole operation on failure.

        Returns:
            The record that was written

        Raises:
            BackendUnavailable: If every attempt failed
        """
        key = self._key_for(collection, record)
        if self._closed:
            raise BackendUnavailable("Persistence has been closed")

        async def attempt():
            await self._ensure_open()
            await self._backend.put(collection, key, record)

        await self.retry_policy.run(
            attempt,
            describe=f"Write {collection}/{key}",
            on_retry=self._reopen,
        )
        return record

    async def fetch_all(self, collection: str) -> List[Dict[str, Any]]:
        """Every record in a collection, or [] when the backend is unreachable."""
        _check_collection(collection)
        try:
            await self._ensure_open()
            return await self._backend.get_all(collection)
        except BackendUnavailable as e:
            logger.error(f"Failed to get items from {collection}: {e}")
            return []

    async def fetch(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        _check_collection(collection)
        await self._ensure_open()
        return await self._backend.get(collection, key)

    async def delete(self, collection: str, key: str) -> bool:
        _check_collection(collection)
        await self._ensure_open()
        return await self._backend.delete(collection, key)

    async def clear(self, collection: str) -> None:
        _check_collection(collection)
        await self._ensure_open()
        await self._backend.clear(collection)

    async def clear_all(self) -> None:
        for collection in COLLECTIONS:
            await self.clear(collection)

    async def set_metadata(self, key: str, value: Any) -> None:
        await self.upsert("metadata", MetadataEntry(key=key, value=value).to_dict())

    async def get_metadata(self, key: str) -> Any:
        """Metadata value for key, or None if missing or falsy."""
        record = await self.fetch("metadata", key)
        if not record:
            return None
        return record.get("value") or None

    async def health_check(self) -> HealthStatus:
        """Report whether the backend is reachable. Never raises."""
        try:
            await self._ensure_open()
            await self._backend.ping()
        except BackendUnavailable as e:
            return HealthStatus(
                status="error",
                message=f"Database connection error: {e}",
                backend=self._backend.name,
                fallback=self._using_fallback,
            )
        message = "Database connection is healthy"
        if self._using_fallback:
            message = "Using in-memory fallback; data will not persist"
        return HealthStatus(
            status="ok",
            message=message,
            backend=self._backend.name,
            fallback=self._using_fallback,
        )


__all__ = [
    "COLLECTIONS",
    "StorageBackend",
    "InMemoryBackend",
    "SQLiteBackend",
    "RetryPolicy",
    "HealthStatus",
    "Persistence",
]
