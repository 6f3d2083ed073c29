"""
Per-resource mutexes for booking settlement and wallet mutations.

A Redis ``SET NX EX`` key serializes across processes when ``REDIS_URL`` is
configured. A process-local lock registry always serializes threads inside one
process, so the guarantees hold without Redis as well. A registry entry is
dropped once no thread holds or waits on it. Locks are re-entrant per
thread: an operation already holding a booking lock may call helpers that ask
for the same lock.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional, Set

from redis import Redis
import ulid

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .exceptions import StateConflictException

logger = logging.getLogger(__name__)

_NAMESPACE = "homeserve:lock"
_POLL_INTERVAL_S = 0.05

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: Dict[str, "_LocalLock"] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()
_thread_state = threading.local()


def _booking_key(booking_id: str) -> str:
    return f"booking:{booking_id}:mutex"


def _wallet_key(owner_kind: str, owner_id: str) -> str:
    return f"wallet:{owner_kind}:{owner_id}:mutex"


def _namespaced_key(key: str) -> str:
    return f"{_NAMESPACE}:{key}"


def _resource_of(key: str) -> str:
    return key.split(":", 1)[0]


def _held_keys() -> Set[str]:
    held = getattr(_thread_state, "held", None)
    if held is None:
        held = set()
        _thread_state.held = held
    return held


class _LocalLock:
    """A process-local mutex plus the number of threads holding or waiting on it."""

    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


def _checkout_local(key: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            entry = _LocalLock()
            _LOCAL_LOCKS[key] = entry
        entry.refs += 1
        return entry.lock


def _return_local(key: str) -> None:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            return
        entry.refs -= 1
        if entry.refs <= 0:
            del _LOCAL_LOCKS[key]


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("resource_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _acquire_redis(key: str, token: str, ttl_s: int, wait_s: float) -> bool:
    """
    Try to take the cross-process key.

    Returns False only when another holder kept the key for the whole wait window.
    Redis errors fail open; the local lock still serializes this process.
    """
    client = _get_sync_redis()
    resource = _resource_of(key)
    if client is None:
        prometheus_metrics.record_lock(resource, "acquire", "local_only")
        return True

    deadline = time.monotonic() + wait_s
    try:
        while True:
            if client.set(_namespaced_key(key), token, nx=True, ex=ttl_s):
                prometheus_metrics.record_lock(resource, "acquire", "success")
                return True
            if time.monotonic() >= deadline:
                prometheus_metrics.record_lock(resource, "acquire", "blocked")
                return False
            time.sleep(_POLL_INTERVAL_S)
    except Exception as exc:
        prometheus_metrics.record_lock(resource, "acquire", "error")
        logger.warning(
            "resource_lock_redis_acquire_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True


def _release_redis(key: str, token: str) -> None:
    client = _get_sync_redis()
    if client is None:
        return
    resource = _resource_of(key)
    try:
        namespaced = _namespaced_key(key)
        if client.get(namespaced) == token:
            client.delete(namespaced)
            prometheus_metrics.record_lock(resource, "release", "success")
        else:
            prometheus_metrics.record_lock(resource, "release", "not_owner")
    except Exception as exc:
        prometheus_metrics.record_lock(resource, "release", "error")
        logger.warning(
            "resource_lock_redis_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def resource_lock_sync(
    key: str,
    ttl_s: Optional[int] = None,
    wait_s: Optional[float] = None,
) -> Iterator[None]:
    """
    Hold the mutex for ``key`` for the duration of the block.

    Raises:
        StateConflictException: the lock stayed busy for the whole wait window
    """
    held = _held_keys()
    if key in held:
        yield
        return

    ttl = ttl_s if ttl_s is not None else settings.lock_ttl_seconds
    wait = wait_s if wait_s is not None else settings.lock_wait_seconds

    local = _checkout_local(key)
    try:
        if not local.acquire(timeout=wait):
            prometheus_metrics.record_lock(_resource_of(key), "acquire", "blocked")
            logger.warning("resource_lock_local_blocked", extra={"lock_key": key})
            raise StateConflictException(
                "Another operation is in progress for this resource, please retry",
                code="RESOURCE_LOCKED",
            )
        try:
            token = str(ulid.ULID())
            if not _acquire_redis(key, token, ttl, wait):
                raise StateConflictException(
                    "Another operation is in progress for this resource, please retry",
                    code="RESOURCE_LOCKED",
                )
            held.add(key)
            try:
                yield
            finally:
                held.discard(key)
                _release_redis(key, token)
        finally:
            local.release()
    finally:
        _return_local(key)


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Serialize state changes and settlement for one booking."""
    with resource_lock_sync(_booking_key(booking_id), ttl_s=ttl_s):
        yield


@contextmanager
def wallet_lock_sync(owner_kind: str, owner_id: str, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Serialize balance updates for one ledger owner (customer, worker or coins)."""
    with resource_lock_sync(_wallet_key(owner_kind, owner_id), ttl_s=ttl_s):
        yield


@contextmanager
def checkout_lock_sync(customer_id: str, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Serialize booking creation per customer (coupon per-user limits, coin and wallet spend)."""
    with resource_lock_sync(f"checkout:{customer_id}:mutex", ttl_s=ttl_s):
        yield


@contextmanager
def worker_day_lock_sync(worker_id: str, day: object, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Serialize assignments of one worker on one calendar day."""
    with resource_lock_sync(f"worker:{worker_id}:{day}:mutex", ttl_s=ttl_s):
        yield
