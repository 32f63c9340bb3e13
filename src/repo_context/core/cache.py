"""Namespaced key/value cache with TTL, hit/miss metrics and pluggable backends.

Two backends ship:

- :class:`InMemoryBackend`: per-process dict, the default.
- :class:`SQLiteBackend`: a file shared by every worker process on the host,
  used when ``cache_db_path`` is configured.

Expiry is lazy: an expired entry is removed when it is read, never swept in
the background. Backend failures are logged and degrade to a miss / no-op so
a broken cache can never fail a request.
"""

import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import orjson
from loguru import logger

from ..config.defaults import DEFAULT_CACHE_NAMESPACE, DEFAULT_CACHE_TTL_SECONDS
from .exceptions import CacheError

PERCENT_SCALE = 100

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and its absolute expiry (``None`` = never expires)."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class CacheBackend(Protocol):
    """Storage used by :class:`CacheManager`. Keys arrive already namespaced."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self, prefix: str) -> int: ...


class InMemoryBackend:
    """Thread-safe in-process backend with lazy TTL eviction."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._store[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._store[key] = CacheEntry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._store if k.startswith(prefix)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class SQLiteBackend:
    """SQLite-backed cache shared across processes.

    Values are serialized with orjson, so only JSON-compatible values
    (dicts, lists, strings, numbers, booleans) round-trip.

    Example:
        >>> backend = SQLiteBackend(Path("/tmp/cache.db"))
        >>> backend.set("ns:answer", {"text": "42"}, ttl=60)
        >>> backend.get("ns:answer")
        {'text': '42'}
    """

    def __init__(self, db_path: Path, clock: Clock = time.time) -> None:
        """Initialize SQLite cache.

        Args:
            db_path: Database file (parent directories are created)
            clock: Time source, injectable for tests
        """
        self.db_path = db_path
        self._clock = clock
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success; SQLite errors become CacheError."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise CacheError(f"Cannot open cache database {self.db_path}: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise CacheError(f"Cache database error: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create database and table if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    expires_at REAL
                )
                """
            )
        logger.debug(f"Initialized cache database at {self.db_path}")

    def get(self, key: str) -> Any | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM cache WHERE key = ?", (key,)
            ).fetchone()

            if row is None:
                return None

            value_blob, expires_at = row
            if expires_at is not None and self._clock() > expires_at:
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                return None

        return orjson.loads(value_blob)

    def set(self, key: str, value: Any, ttl: float | None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache (key, value, expires_at)
                VALUES (?, ?, ?)
                """,
                (key, orjson.dumps(value), expires_at),
            )

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM cache WHERE key = ?", (key,))

    def clear(self, prefix: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM cache WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            )
            return cursor.rowcount


class CacheManager:
    """Namespaced cache facade with TTL and hit/miss/set counters.

    Example:
        >>> cache = CacheManager(namespace="answers")
        >>> cache.set("q1", "v", ttl=10)
        'v'
        >>> cache.get("q1")
        'v'
        >>> cache.hit_rate()
        100.0
    """

    _DEFAULT = object()

    def __init__(
        self,
        namespace: str = DEFAULT_CACHE_NAMESPACE,
        backend: CacheBackend | None = None,
        default_ttl: float | None = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self.namespace = namespace
        self.backend: CacheBackend = backend or InMemoryBackend()
        self.default_ttl = default_ttl
        self._metrics = {"hits": 0, "misses": 0, "sets": 0}
        self._metrics_lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on miss, expiry or backend failure."""
        try:
            value = self.backend.get(self._namespaced(key))
        except Exception as e:
            logger.warning(f"cache get failed for {key}: {e}")
            return None

        self._record("hits" if value is not None else "misses")
        logger.debug(f"cache {'HIT' if value is not None else 'MISS'}: {key}")
        return value

    def set(self, key: str, value: Any, ttl: Any = _DEFAULT) -> Any:
        """Store ``value``; ``ttl=None`` stores without expiry.

        Returns ``value`` so callers can write ``return cache.set(k, compute())``.
        """
        effective_ttl = self.default_ttl if ttl is CacheManager._DEFAULT else ttl
        try:
            self.backend.set(self._namespaced(key), value, effective_ttl)
        except Exception as e:
            logger.warning(f"cache set failed for {key}: {e}")
            return value

        self._record("sets")
        logger.debug(f"cache SET: {key} (ttl={effective_ttl}s)")
        return value

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(self._namespaced(key))
            logger.debug(f"cache DELETE: {key}")
        except Exception as e:
            logger.warning(f"cache delete failed for {key}: {e}")

    def clear(self) -> int:
        """Drop every entry in this namespace; returns the number removed."""
        try:
            removed = self.backend.clear(f"{self.namespace}:")
        except Exception as e:
            logger.warning(f"cache clear failed: {e}")
            return 0

        logger.info(f"cache cleared for namespace: {self.namespace} ({removed} entries)")
        return removed

    def metrics(self) -> dict[str, int]:
        with self._metrics_lock:
            return dict(self._metrics)

    def hit_rate(self) -> float:
        """Percentage of lookups that hit, rounded to 2 places (0.0 with no lookups)."""
        snapshot = self.metrics()
        total = snapshot["hits"] + snapshot["misses"]
        if total == 0:
            return 0.0
        return round(snapshot["hits"] / total * PERCENT_SCALE, 2)

    def _namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _record(self, counter: str) -> None:
        with self._metrics_lock:
            self._metrics[counter] += 1


def build_cache_manager(
    enabled: bool = True,
    namespace: str = DEFAULT_CACHE_NAMESPACE,
    ttl_seconds: float | None = DEFAULT_CACHE_TTL_SECONDS,
    db_path: Path | None = None,
) -> CacheManager:
    """Pick a backend for the given settings.

    A disabled cache, or one without ``db_path``, uses the in-memory backend.
    If the SQLite file cannot be opened the manager falls back to in-memory.
    """
    backend: CacheBackend = InMemoryBackend()

    if enabled and db_path is not None:
        try:
            backend = SQLiteBackend(db_path)
            logger.info(f"cache backend: SQLite ({db_path})")
        except (CacheError, OSError) as e:
            logger.warning(f"SQLite cache init failed, falling back to in-memory: {e}")
    else:
        logger.info("cache backend: in-memory")

    return CacheManager(namespace=namespace, backend=backend, default_ttl=ttl_seconds)
