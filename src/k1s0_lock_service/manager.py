"""LockManager: 時刻計算とバックエンドへの委譲"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from .context import bind_lock_context, hash_instance_id, reset_lock_context
from .models import LockAction, LockRecord, LockResult
from .service import LockService
from .validation import validate_identifier, validate_lease_duration

logger = structlog.get_logger(__name__)

ANONYMOUS_OWNER = "anonymous"

T = TypeVar("T")


def _epoch_seconds() -> int:
    return int(time.time())


class LockManager:
    """現在時刻を求めて expiry を計算し、設定されたバックエンドへ委譲する。

    入力不正は LockValidationError を送出する。競合・バックエンド障害は
    LockResult の失敗として返す。
    """

    def __init__(self, service: LockService, clock: Callable[[], int] | None = None) -> None:
        self._service = service
        self._clock = clock or _epoch_seconds

    @property
    def service(self) -> LockService:
        return self._service

    async def get_lock(self, namespace: str, lock_name: str) -> LockResult:
        """ロックの状態を返す。存在しない場合も namespace / lock_name のみの結果を返す。"""
        validate_identifier("namespace", namespace)
        validate_identifier("lock_name", lock_name)
        self._bind_request(LockAction.GET, namespace, lock_name)

        stored, elapsed_ms = await self._timed(lambda: self._service.get_lock(namespace, lock_name))
        result = LockResult.for_get(namespace, lock_name, stored, self._clock())
        self._enrich(elapsed_ms, "success" if stored is not None else "not_found", None)
        return result

    async def acquire_lock(
        self,
        namespace: str,
        lock_name: str,
        owner: str | None,
        instance_id: str,
        lease_duration: int,
    ) -> LockResult:
        """expiry = now + lease_duration としてロックを取得する。"""
        owner = self._validate(namespace, lock_name, owner, instance_id, lease_duration)
        self._bind_request(LockAction.ACQUIRE, namespace, lock_name, owner, instance_id, lease_duration)

        now = self._clock()
        expiry = now + lease_duration
        lock = LockRecord(namespace, lock_name, owner, instance_id, lease_duration, expiry)
        result, elapsed_ms = await self._timed(lambda: self._service.acquire_lock(lock, now))
        self._enrich(elapsed_ms, _result_label(result), expiry if result.success else None)
        return result

    async def renew_lock(
        self,
        namespace: str,
        lock_name: str,
        owner: str | None,
        instance_id: str,
        lease_duration: int,
    ) -> LockResult:
        """保存済みの expiry に lease_duration 秒を加算する。"""
        owner = self._validate(namespace, lock_name, owner, instance_id, lease_duration)
        self._bind_request(LockAction.RENEW, namespace, lock_name, owner, instance_id, lease_duration)

        now = self._clock()
        lock = LockRecord(namespace, lock_name, owner, instance_id, lease_duration)
        result, elapsed_ms = await self._timed(lambda: self._service.renew_lock(lock, now))
        self._enrich(elapsed_ms, _result_label(result), result.expiry if result.success else None)
        return result

    async def release_lock(
        self,
        namespace: str,
        lock_name: str,
        owner: str | None,
        instance_id: str,
    ) -> LockResult:
        owner = self._validate(namespace, lock_name, owner, instance_id, None)
        self._bind_request(LockAction.RELEASE, namespace, lock_name, owner, instance_id)

        now = self._clock()
        lock = LockRecord(namespace, lock_name, owner, instance_id)
        result, elapsed_ms = await self._timed(lambda: self._service.release_lock(lock, now))
        self._enrich(elapsed_ms, _result_label(result), None)
        return result

    @staticmethod
    def _validate(
        namespace: str,
        lock_name: str,
        owner: str | None,
        instance_id: str,
        lease_duration: int | None,
    ) -> str:
        validate_identifier("namespace", namespace)
        validate_identifier("lock_name", lock_name)
        validate_identifier("instance_id", instance_id)
        if lease_duration is not None:
            validate_lease_duration(lease_duration)
        return owner or ANONYMOUS_OWNER

    @staticmethod
    def _bind_request(
        operation: LockAction,
        namespace: str,
        lock_name: str,
        owner: str | None = None,
        instance_id: str | None = None,
        lease_duration: int | None = None,
    ) -> None:
        reset_lock_context()
        bind_lock_context(
            lock_namespace=namespace,
            lock_name=lock_name,
            lock_operation=operation.value.lower(),
            auth_subject=owner,
            instance_id_hash=hash_instance_id(instance_id),
            requested_lease_duration_sec=lease_duration,
        )

    async def _timed(self, call: Callable[[], Awaitable[T]]) -> tuple[T, int]:
        started = time.perf_counter()
        value = await call()
        return value, int((time.perf_counter() - started) * 1000)

    def _enrich(self, backend_duration_ms: int, lock_result: str, computed_expiry: int | None) -> None:
        bind_lock_context(
            lock_backend=self._service.backend_name,
            backend_duration_ms=backend_duration_ms,
            lock_result=lock_result,
            computed_expiry_epoch_sec=computed_expiry,
        )
        logger.info("lock request completed")


def _result_label(result: LockResult) -> str:
    return "success" if result.success else "conflict"
