"""In-memory lock service implementation."""

from __future__ import annotations

import asyncio

from .decisions import decide_acquire, decide_release, decide_renew
from .models import LockRecord, LockResult
from .service import LockService


class InMemoryLockService(LockService):
    """単一プロセス用のインメモリ実装。プロセス間の整合性は保証しない。"""

    def __init__(self) -> None:
        self._locks: dict[str, LockRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        self._check_key(namespace, lock_name)
        async with self._lock:
            return self._locks.get(f"{namespace}:{lock_name}")

    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration", "expiry")
        async with self._lock:
            outcome = decide_acquire(self._locks.get(lock.key), lock, now)
            if outcome.is_success:
                self._locks[lock.key] = lock
        return self._finish(lock, outcome)

    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration")
        async with self._lock:
            outcome, renewed = decide_renew(self._locks.get(lock.key), lock, now)
            if renewed is not None:
                self._locks[lock.key] = renewed
        return self._finish(renewed or lock, outcome)

    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id")
        async with self._lock:
            outcome = decide_release(self._locks.get(lock.key), lock, now)
            if outcome.is_success:
                self._locks.pop(lock.key, None)
        return self._finish(lock, outcome)

    def clear(self) -> None:
        """すべてのロックを破棄する（テスト用）。"""
        self._locks.clear()
