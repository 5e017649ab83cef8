"""Per-index mutual exclusion for long-running reindex operations.

Full and partial reindexes of the same logical index must never overlap.
The local backend serialises threads of one process; the redis backend
serialises Celery workers and API processes sharing one Redis.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
import redis
from redis.exceptions import LockError, RedisError
from prometheus_client import Counter
from stats_indexer.config import get_settings
from stats_indexer.indexer.errors import IndexBusy, TransientIOFailure, ConfigurationError

logger = logging.getLogger(__name__)

INDEX_LOCK_CONTENDED = Counter('indexer_lock_contended_total', 'Lock acquisitions that failed or timed out', ['index'])

LOCK_KEY_PREFIX = "indexer:lock:"


class LocalIndexLock:
    def __init__(self, index_name: str):
        self.index_name = index_name
        self._lock = threading.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, blocking: bool = True, timeout: Optional[float] = None) -> Iterator[None]:
        if blocking:
            acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        else:
            acquired = self._lock.acquire(blocking=False)
        if not acquired:
            INDEX_LOCK_CONTENDED.labels(index=self.index_name).inc()
            raise IndexBusy(f"index {self.index_name} is being reindexed")
        try:
            yield
        finally:
            self._lock.release()


class RedisIndexLock:
    def __init__(self, index_name: str, client: redis.Redis, ttl_seconds: int):
        self.index_name = index_name
        self.client = client
        self.ttl_seconds = ttl_seconds

    @property
    def key(self) -> str:
        return f"{LOCK_KEY_PREFIX}{self.index_name}"

    def locked(self) -> bool:
        try:
            return bool(self.client.exists(self.key))
        except RedisError as exc:
            raise TransientIOFailure(f"lock backend unavailable: {exc}") from exc

    @contextmanager
    def hold(self, blocking: bool = True, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self.client.lock(self.key, timeout=self.ttl_seconds)
        try:
            acquired = lock.acquire(blocking=blocking, blocking_timeout=timeout)
        except RedisError as exc:
            raise TransientIOFailure(f"lock backend unavailable: {exc}") from exc
        if not acquired:
            INDEX_LOCK_CONTENDED.labels(index=self.index_name).inc()
            raise IndexBusy(f"index {self.index_name} is being reindexed")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # ttl elapsed while holding; another worker may already own it
                logger.warning("[%s] index lock expired before release", self.index_name)


_locks: dict[str, "LocalIndexLock | RedisIndexLock"] = {}
_registry_lock = threading.Lock()


def get_index_lock(index_name: str):
    """Get or create the lock guarding one logical index."""
    with _registry_lock:
        if index_name not in _locks:
            settings = get_settings()
            backend = settings.index_lock_backend.lower()
            if backend == "local":
                _locks[index_name] = LocalIndexLock(index_name)
            elif backend == "redis":
                client = redis.Redis.from_url(settings.redis_url)
                _locks[index_name] = RedisIndexLock(index_name, client, settings.index_lock_timeout_seconds)
            else:
                raise ConfigurationError(f"unknown INDEX_LOCK_BACKEND: {settings.index_lock_backend!r}")
        return _locks[index_name]


def reset_index_locks():  # test helper
    with _registry_lock:
        _locks.clear()
