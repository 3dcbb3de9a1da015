"""Firestore lock service implementation.

ドキュメント ID は "{namespace}:{lock_name}"。取得・判定・書き込みを 1 トランザクションで行う。
競合した並行書き込みはコミット時に検出され、クライアントライブラリがトランザクション全体を
自動で再実行する（async_transactional の max_attempts）。この再実行を前提としているため、
他のドキュメントストアへ移植する場合は同等の再実行か明示的なリトライが必要。
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud.firestore import AsyncClient, AsyncTransaction, async_transactional

from .decisions import decide_acquire, decide_release, decide_renew
from .models import LockOutcome, LockRecord, LockResult
from .service import LockService

logger = structlog.get_logger(__name__)

_DATA_ERRORS = (GoogleAPIError, KeyError, TypeError, ValueError)


class FirestoreLockService(LockService):
    """Firestore トランザクションによる実装。"""

    def __init__(self, client: AsyncClient, collection: str = "locks", ttl_field: str | None = "ttl") -> None:
        self._client = client
        self._collection = collection
        self._ttl_field = ttl_field

    @property
    def backend_name(self) -> str:
        return "firestore"

    def _document(self, namespace: str, lock_name: str) -> Any:
        return self._client.collection(self._collection).document(f"{namespace}:{lock_name}")

    def _to_data(self, lock: LockRecord) -> dict[str, Any]:
        data = lock.to_dict()
        if self._ttl_field and lock.expiry is not None:
            # ストアの TTL ポリシーによる物理削除用。論理的な期限判定には使わない。
            data[self._ttl_field] = datetime.fromtimestamp(lock.expiry, tz=UTC)
        return data

    @staticmethod
    async def _read(transaction: AsyncTransaction | None, doc_ref: Any) -> LockRecord | None:
        snapshot = await doc_ref.get(transaction=transaction)
        if not snapshot.exists:
            return None
        return LockRecord.from_dict(snapshot.to_dict())

    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        self._check_key(namespace, lock_name)
        try:
            return await self._read(None, self._document(namespace, lock_name))
        except _DATA_ERRORS:
            logger.exception("Error getting lock", namespace=namespace, lock_name=lock_name)
            return None

    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration", "expiry")

        @async_transactional
        async def run(transaction: AsyncTransaction, doc_ref: Any) -> LockOutcome:
            outcome = decide_acquire(await self._read(transaction, doc_ref), lock, now)
            if outcome.is_success:
                transaction.set(doc_ref, self._to_data(lock))
            return outcome

        try:
            outcome = await run(self._client.transaction(), self._document(lock.namespace, lock.lock_name))
        except _DATA_ERRORS:
            logger.exception("Error acquiring lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.ACQUIRE_ERROR
        return self._finish(lock, outcome)

    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id", "lease_duration")

        @async_transactional
        async def run(transaction: AsyncTransaction, doc_ref: Any) -> tuple[LockOutcome, LockRecord | None]:
            outcome, renewed = decide_renew(await self._read(transaction, doc_ref), lock, now)
            if renewed is not None:
                transaction.set(doc_ref, self._to_data(renewed))
            return outcome, renewed

        renewed: LockRecord | None = None
        try:
            outcome, renewed = await run(self._client.transaction(), self._document(lock.namespace, lock.lock_name))
        except _DATA_ERRORS:
            logger.exception("Error renewing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RENEW_ERROR
        return self._finish(renewed or lock, outcome)

    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        self._check_lock(lock, "owner", "instance_id")

        @async_transactional
        async def run(transaction: AsyncTransaction, doc_ref: Any) -> LockOutcome:
            outcome = decide_release(await self._read(transaction, doc_ref), lock, now)
            if outcome is LockOutcome.RELEASED:
                transaction.delete(doc_ref)
            return outcome

        try:
            outcome = await run(self._client.transaction(), self._document(lock.namespace, lock.lock_name))
        except _DATA_ERRORS:
            logger.exception("Error releasing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RELEASE_ERROR
        return self._finish(lock, outcome)
