from __future__ import annotations

import threading
import time
from typing import Dict, Optional

import pytest

from homeserve.core import booking_lock
from homeserve.core.booking_lock import (
    _booking_key,
    _namespaced_key,
    _wallet_key,
    booking_lock_sync,
    resource_lock_sync,
    wallet_lock_sync,
)
from homeserve.core.exceptions import StateConflictException

pytestmark = pytest.mark.unit


class FakeRedis:
    """Just enough of the redis client for SET NX EX / GET / DELETE."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.deleted: list = []

    def set(self, key: str, value: str, nx: bool = False, ex: Optional[int] = None) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    def delete(self, key: str) -> int:
        self.deleted.append(key)
        return 1 if self.store.pop(key, None) is not None else 0


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise ConnectionError("redis down")

    def get(self, key):
        raise ConnectionError("redis down")

    def delete(self, key):
        raise ConnectionError("redis down")


def test_key_formats():
    assert _booking_key("B1") == "booking:B1:mutex"
    assert _wallet_key("worker", "W1") == "wallet:worker:W1:mutex"
    assert _namespaced_key("booking:B1:mutex") == "homeserve:lock:booking:B1:mutex"


def test_lock_is_reentrant_within_a_thread():
    entered = []
    with booking_lock_sync("reentrant"):
        with booking_lock_sync("reentrant"):
            entered.append(True)
    assert entered == [True]


def test_busy_lock_raises_resource_locked():
    held = threading.Event()
    release = threading.Event()

    def holder():
        with resource_lock_sync("test:busy:mutex"):
            held.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(StateConflictException) as exc:
            with resource_lock_sync("test:busy:mutex", wait_s=0.05):
                pass
        assert exc.value.code == "RESOURCE_LOCKED"
    finally:
        release.set()
        thread.join(timeout=5)

    with resource_lock_sync("test:busy:mutex", wait_s=0.5):
        pass


def test_different_keys_do_not_block_each_other():
    with wallet_lock_sync("customer", "C1"):
        with wallet_lock_sync("worker", "W1"):
            pass


def test_redis_key_set_and_released(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: fake)

    with booking_lock_sync("B42", ttl_s=12):
        key = _namespaced_key(_booking_key("B42"))
        assert key in fake.store
        assert fake.ttls[key] == 12

    assert fake.store == {}
    assert fake.deleted == ["homeserve:lock:booking:B42:mutex"]


def test_redis_key_held_elsewhere_blocks(monkeypatch):
    fake = FakeRedis()
    fake.store[_namespaced_key(_booking_key("B43"))] = "other-process"
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: fake)

    with pytest.raises(StateConflictException) as exc:
        with resource_lock_sync(_booking_key("B43"), wait_s=0.05):
            pass

    assert exc.value.code == "RESOURCE_LOCKED"
    assert fake.store[_namespaced_key(_booking_key("B43"))] == "other-process"


def test_redis_errors_fail_open(monkeypatch):
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: BrokenRedis())

    ran = []
    with booking_lock_sync("B44"):
        ran.append(True)
    assert ran == [True]


def test_no_redis_without_url(monkeypatch):
    monkeypatch.setattr(booking_lock.settings, "redis_url", None)
    assert booking_lock._get_sync_redis() is None


def test_local_registry_drops_released_keys():
    before = len(booking_lock._LOCAL_LOCKS)
    for index in range(500):
        with booking_lock_sync(f"cycle-{index}"):
            assert _booking_key(f"cycle-{index}") in booking_lock._LOCAL_LOCKS
    assert len(booking_lock._LOCAL_LOCKS) == before


def test_registry_entry_survives_while_a_waiter_remains():
    key = "test:waiter:mutex"
    held = threading.Event()
    release = threading.Event()
    outcome = []

    def holder():
        with resource_lock_sync(key):
            held.set()
            release.wait(timeout=5)

    def waiter():
        with resource_lock_sync(key, wait_s=5):
            outcome.append("acquired")

    first = threading.Thread(target=holder)
    first.start()
    assert held.wait(timeout=5)
    second = threading.Thread(target=waiter)
    second.start()
    try:
        time.sleep(0.1)
        assert booking_lock._LOCAL_LOCKS[key].refs == 2
    finally:
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

    assert outcome == ["acquired"]
    assert key not in booking_lock._LOCAL_LOCKS
