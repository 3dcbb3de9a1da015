"""LockService 抽象基底クラス"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from .context import record_outcome
from .exceptions import LockValidationError
from .models import LockOutcome, LockRecord, LockResult

logger = structlog.get_logger(__name__)


class LockService(ABC):
    """ロックバックエンド抽象基底クラス。

    すべての実装は同一キーへの並行呼び出しに対して安全でなければならない。
    競合とバックエンド障害は例外ではなく LockResult（失敗）として返し、
    入力不正のみ LockValidationError を送出する。
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """バックエンド名（ログ用）。"""
        ...

    @abstractmethod
    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        """保存されているロックをそのまま返す。存在しない、または取得失敗時は None。"""
        ...

    @abstractmethod
    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        """ロックを取得する。未保持・期限切れ・同一保持者の場合に成功。"""
        ...

    @abstractmethod
    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        """保存済みの値を基準に lock.lease_duration 秒だけ延長する。"""
        ...

    @abstractmethod
    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        """ロックを解放する。有効かつ他者保持の場合のみ失敗。"""
        ...

    @staticmethod
    def _check_key(namespace: str | None, lock_name: str | None) -> None:
        if not namespace:
            raise LockValidationError("namespace", "namespace is required")
        if not lock_name:
            raise LockValidationError("lock_name", "lock_name is required")

    @classmethod
    def _check_lock(cls, lock: LockRecord | None, *required: str) -> LockRecord:
        """lock と指定フィールドが揃っていることを確認する。"""
        if lock is None:
            raise LockValidationError("lock", "lock is required")
        cls._check_key(lock.namespace, lock.lock_name)
        for name in required:
            if getattr(lock, name) is None:
                raise LockValidationError(name, f"{name} is required")
        return lock

    def _finish(self, record: LockRecord, outcome: LockOutcome) -> LockResult:
        """結果コードを記録して LockResult を組み立てる。"""
        record_outcome(outcome)
        logger.debug(
            "lock backend decision",
            lock_backend=self.backend_name,
            lock_namespace=record.namespace,
            lock_name=record.lock_name,
        )
        return LockResult.from_outcome(record, outcome)
