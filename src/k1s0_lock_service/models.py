"""lock_service データモデル"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class LockAction(StrEnum):
    """実行中の操作、または確定した結果。永続化しない。"""

    GET = "GET"
    ACQUIRE = "ACQUIRE"
    RENEW = "RENEW"
    RELEASE = "RELEASE"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class LockOutcome(StrEnum):
    """バックエンドの判定結果コード。canonical log の lock_service_outcome に記録する。"""

    ACQUIRED = "ACQUIRED"
    LOCK_REPLACED = "LOCK_REPLACED"
    ACQUIRE_CONFLICT = "ACQUIRE_CONFLICT"
    ACQUIRE_ERROR = "ACQUIRE_ERROR"
    ACQUIRE_MAX_RETRIES = "ACQUIRE_MAX_RETRIES"

    RENEWED = "RENEWED"
    RENEW_NOT_FOUND = "RENEW_NOT_FOUND"
    RENEW_MISMATCH = "RENEW_MISMATCH"
    RENEW_EXPIRED = "RENEW_EXPIRED"
    RENEW_CONFLICT = "RENEW_CONFLICT"
    RENEW_ERROR = "RENEW_ERROR"
    RENEW_MAX_RETRIES = "RENEW_MAX_RETRIES"

    RELEASED = "RELEASED"
    RELEASED_NOT_FOUND = "RELEASED_NOT_FOUND"
    RELEASED_EXPIRED = "RELEASED_EXPIRED"
    RELEASE_CONFLICT = "RELEASE_CONFLICT"
    RELEASE_ERROR = "RELEASE_ERROR"
    RELEASE_MAX_RETRIES = "RELEASE_MAX_RETRIES"

    @property
    def operation(self) -> LockAction:
        """この結果コードを生んだ操作。"""
        return _OUTCOME_OPERATIONS[self]

    @property
    def is_success(self) -> bool:
        return self in _HELD_OUTCOMES or self in _CLEARED_OUTCOMES

    @property
    def retries_exhausted(self) -> bool:
        return self in _MAX_RETRY_OUTCOMES


_HELD_OUTCOMES = frozenset(
    {LockOutcome.ACQUIRED, LockOutcome.LOCK_REPLACED, LockOutcome.RENEWED}
)
_CLEARED_OUTCOMES = frozenset(
    {LockOutcome.RELEASED, LockOutcome.RELEASED_NOT_FOUND, LockOutcome.RELEASED_EXPIRED}
)
_MAX_RETRY_OUTCOMES = frozenset(
    {
        LockOutcome.ACQUIRE_MAX_RETRIES,
        LockOutcome.RENEW_MAX_RETRIES,
        LockOutcome.RELEASE_MAX_RETRIES,
    }
)
_OUTCOME_OPERATIONS: dict[LockOutcome, LockAction] = {
    outcome: (
        LockAction.ACQUIRE
        if outcome.name.startswith("ACQUIRE") or outcome is LockOutcome.LOCK_REPLACED
        else LockAction.RENEW
        if outcome.name.startswith("RENEW")
        else LockAction.RELEASE
    )
    for outcome in LockOutcome
}


@dataclass(frozen=True)
class LockRecord:
    """バックエンドに保存されるロック。

    owner / instance_id が None の場合、is_match ではワイルドカードとして扱う。
    expiry が None のロックは常に有効とみなす（組み立て直後の問い合わせ用）。
    """

    namespace: str
    lock_name: str
    owner: str | None = None
    instance_id: str | None = None
    lease_duration: int | None = None
    expiry: int | None = None

    @property
    def key(self) -> str:
        """"{namespace}:{lock_name}" 形式の一意キー。"""
        return f"{self.namespace}:{self.lock_name}"

    def is_expired(self, now: int) -> bool:
        """expiry が now より前なら True。expiry == now はまだ保持中。"""
        return self.expiry is not None and self.expiry < now

    def is_active(self, now: int) -> bool:
        return not self.is_expired(now)

    def is_match(self, other: LockRecord | None) -> bool:
        """自身の非 None フィールドがすべて other と一致するか確認する。"""
        if other is None:
            return False
        for name in ("namespace", "lock_name", "owner", "instance_id"):
            mine = getattr(self, name)
            if mine is not None and mine != getattr(other, name):
                return False
        return True

    def with_lease(self, lease_duration: int | None, expiry: int | None) -> LockRecord:
        return replace(self, lease_duration=lease_duration, expiry=expiry)

    def redacted(self) -> LockRecord:
        """namespace と lock_name だけを残したコピーを返す。"""
        return LockRecord(namespace=self.namespace, lock_name=self.lock_name)

    def to_dict(self) -> dict[str, Any]:
        """保存用の辞書に変換する。"""
        return {
            "namespace": self.namespace,
            "lockName": self.lock_name,
            "owner": self.owner,
            "instanceId": self.instance_id,
            "leaseDuration": self.lease_duration,
            "expiry": self.expiry,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockRecord:
        """保存形式の辞書から復元する。数値は int に正規化する。"""
        return cls(
            namespace=data["namespace"],
            lock_name=data["lockName"],
            owner=data.get("owner"),
            instance_id=data.get("instanceId"),
            lease_duration=_to_int(data.get("leaseDuration")),
            expiry=_to_int(data.get("expiry")),
        )


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


@dataclass(frozen=True)
class LockResult:
    """呼び出し元へ返す操作結果。"""

    record: LockRecord
    operation: LockAction
    action: LockAction
    success: bool | None = None
    outcome: LockOutcome | None = None

    @classmethod
    def succeeded(cls, record: LockRecord, outcome: LockOutcome) -> LockResult:
        return cls(
            record=record,
            operation=outcome.operation,
            action=LockAction.SUCCESS,
            success=True,
            outcome=outcome,
        )

    @classmethod
    def cleared(cls, record: LockRecord, outcome: LockOutcome) -> LockResult:
        return cls(
            record=record.redacted(),
            operation=outcome.operation,
            action=LockAction.SUCCESS,
            success=True,
            outcome=outcome,
        )

    @classmethod
    def failed(cls, record: LockRecord, outcome: LockOutcome) -> LockResult:
        """失敗結果。現在の保持者を漏らさないよう識別フィールドを消す。"""
        return cls(
            record=record.redacted(),
            operation=outcome.operation,
            action=LockAction.FAILED,
            success=False,
            outcome=outcome,
        )

    @classmethod
    def from_outcome(cls, record: LockRecord, outcome: LockOutcome) -> LockResult:
        """結果コードに応じて succeeded / cleared / failed を選ぶ。"""
        if outcome in _HELD_OUTCOMES:
            return cls.succeeded(record, outcome)
        if outcome in _CLEARED_OUTCOMES:
            return cls.cleared(record, outcome)
        return cls.failed(record, outcome)

    @classmethod
    def for_get(
        cls,
        namespace: str,
        lock_name: str,
        stored: LockRecord | None,
        now: int,
    ) -> LockResult:
        """参照用の結果を返す。instance_id は決して返さない。

        期限切れの場合は owner / lease_duration / expiry も消し、
        有効な場合は lease_duration のみ消す。
        """
        if stored is None:
            record = LockRecord(namespace=namespace, lock_name=lock_name)
        elif stored.is_expired(now):
            record = stored.redacted()
        else:
            record = replace(stored, instance_id=None, lease_duration=None)
        return cls(record=record, operation=LockAction.GET, action=LockAction.GET)

    @property
    def namespace(self) -> str:
        return self.record.namespace

    @property
    def lock_name(self) -> str:
        return self.record.lock_name

    @property
    def owner(self) -> str | None:
        return self.record.owner

    @property
    def instance_id(self) -> str | None:
        return self.record.instance_id

    @property
    def lease_duration(self) -> int | None:
        return self.record.lease_duration

    @property
    def expiry(self) -> int | None:
        return self.record.expiry

    @property
    def retries_exhausted(self) -> bool:
        """CAS リトライ上限に達した結果なら True。通常の競合より長く待つべき。"""
        return self.outcome is not None and self.outcome.retries_exhausted
