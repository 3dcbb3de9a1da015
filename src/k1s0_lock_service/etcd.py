"""etcd lock service implementation.

etcd には複合条件がないため、読み取り → クライアント側判定 → リビジョン比較付きトランザクションで
書き込む。コミットに負けた場合は作成したリースを取り消して最初からやり直す（max_retries 回まで）。
キーにはリースを付与するため、更新が途絶えたロックは etcd 側でも自動削除される。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog

from .decisions import decide_acquire, decide_release, decide_renew
from .exceptions import LockServiceError, LockServiceErrorCodes
from .models import LockOutcome, LockRecord, LockResult
from .service import LockService

logger = structlog.get_logger(__name__)


class EtcdLockService(LockService):
    """etcd の CAS とリースによる実装。

    client は etcd3.Etcd3Client 互換のオブジェクト。同期 API のため asyncio.to_thread で呼び出す。
    """

    def __init__(self, client: Any, key_prefix: str = "locks/", max_retries: int = 3) -> None:
        if max_retries < 0:
            raise LockServiceError(LockServiceErrorCodes.INVALID_CONFIG, "max_retries must be >= 0")
        self._client = client
        self._key_prefix = key_prefix
        self._max_retries = max_retries

    @property
    def backend_name(self) -> str:
        return "etcd"

    def _key(self, namespace: str, lock_name: str) -> str:
        return f"{self._key_prefix}{namespace}:{lock_name}"

    async def _read(self, key: str) -> tuple[LockRecord | None, int]:
        """現在値と mod_revision を返す。キーが無ければ (None, 0)。"""
        value, meta = await asyncio.to_thread(self._client.get, key)
        if value is None:
            return None, 0
        return LockRecord.from_dict(json.loads(value)), meta.mod_revision

    def _unchanged(self, key: str, revision: int) -> Any:
        if revision == 0:
            return self._client.transactions.create(key) == 0
        return self._client.transactions.mod(key) == revision

    async def _put_if_unchanged(self, key: str, revision: int, record: LockRecord, now: int) -> bool:
        ttl = max(1, (record.expiry or now) - now)
        lease = await asyncio.to_thread(self._client.lease, ttl)
        value = json.dumps(record.to_dict())
        succeeded, _ = await asyncio.to_thread(
            self._client.transaction,
            compare=[self._unchanged(key, revision)],
            success=[self._client.transactions.put(key, value, lease)],
            failure=[],
        )
        if not succeeded:
            # 書き込まれなかったリースは孤立するので取り消す
            await asyncio.to_thread(lease.revoke)
        return succeeded

    async def _delete_if_unchanged(self, key: str, revision: int) -> bool:
        succeeded, _ = await asyncio.to_thread(
            self._client.transaction,
            compare=[self._unchanged(key, revision)],
            success=[self._client.transactions.delete(key)],
            failure=[],
        )
        return succeeded

    def _exhausted(self, lock: LockRecord, operation: str, outcome: LockOutcome) -> LockResult:
        logger.error(
            "Max retries exceeded",
            operation=operation,
            namespace=lock.namespace,
            lock_name=lock.lock_name,
            max_retries=self._max_retries,
        )
        return self._finish(lock, outcome)

    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        self._check_key(namespace, lock_name)
        try:
            record, _ = await self._read(self._key(namespace, lock_name))
            return record
        except Exception:
            logger.exception("Error getting lock", namespace=namespace, lock_name=lock_name)
            return None

    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration", "expiry")
        key = self._key(lock.namespace, lock.lock_name)
        try:
            for attempt in range(self._max_retries + 1):
                existing, revision = await self._read(key)
                outcome = decide_acquire(existing, lock, now)
                if not outcome.is_success or await self._put_if_unchanged(key, revision, lock, now):
                    return self._finish(lock, outcome)
                logger.debug("CAS failed for acquire", attempt=attempt + 1, max_attempts=self._max_retries + 1)
        except Exception:
            logger.exception("Error acquiring lock", namespace=lock.namespace, lock_name=lock.lock_name)
            return self._finish(lock, LockOutcome.ACQUIRE_ERROR)
        return self._exhausted(lock, "acquire", LockOutcome.ACQUIRE_MAX_RETRIES)

    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration")
        key = self._key(lock.namespace, lock.lock_name)
        try:
            for attempt in range(self._max_retries + 1):
                existing, revision = await self._read(key)
                outcome, renewed = decide_renew(existing, lock, now)
                if renewed is None:
                    return self._finish(lock, outcome)
                if await self._put_if_unchanged(key, revision, renewed, now):
                    return self._finish(renewed, outcome)
                logger.debug("CAS failed for renew", attempt=attempt + 1, max_attempts=self._max_retries + 1)
        except Exception:
            logger.exception("Error renewing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            return self._finish(lock, LockOutcome.RENEW_ERROR)
        return self._exhausted(lock, "renew", LockOutcome.RENEW_MAX_RETRIES)

    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id")
        key = self._key(lock.namespace, lock.lock_name)
        try:
            for attempt in range(self._max_retries + 1):
                existing, revision = await self._read(key)
                outcome = decide_release(existing, lock, now)
                if outcome is not LockOutcome.RELEASED or await self._delete_if_unchanged(key, revision):
                    return self._finish(lock, outcome)
                logger.debug("CAS failed for release", attempt=attempt + 1, max_attempts=self._max_retries + 1)
        except Exception:
            logger.exception("Error releasing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            return self._finish(lock, LockOutcome.RELEASE_ERROR)
        return self._exhausted(lock, "release", LockOutcome.RELEASE_MAX_RETRIES)
