"""読み取り後に判定するバックエンド共通のロック判定ロジック"""

from __future__ import annotations

from .models import LockOutcome, LockRecord


def decide_acquire(existing: LockRecord | None, requested: LockRecord, now: int) -> LockOutcome:
    """取得可否を判定する。

    同一 owner / instance による再取得は期限切れかどうかに関わらず上書きする。
    """
    if existing is None:
        return LockOutcome.ACQUIRED
    if requested.is_match(existing):
        return LockOutcome.LOCK_REPLACED
    if existing.is_active(now):
        return LockOutcome.ACQUIRE_CONFLICT
    return LockOutcome.ACQUIRED


def decide_renew(
    existing: LockRecord | None, requested: LockRecord, now: int
) -> tuple[LockOutcome, LockRecord | None]:
    """更新可否を判定し、成功時は保存済みの値を基準に延長したレコードを返す。

    requested.lease_duration は延長する秒数として扱う。
    """
    if existing is None:
        return LockOutcome.RENEW_NOT_FOUND, None
    if not requested.is_match(existing):
        return LockOutcome.RENEW_MISMATCH, None
    if existing.is_expired(now):
        return LockOutcome.RENEW_EXPIRED, None
    delta = requested.lease_duration or 0
    renewed = existing.with_lease(
        (existing.lease_duration or 0) + delta,
        (existing.expiry or now) + delta,
    )
    return LockOutcome.RENEWED, renewed


def decide_release(existing: LockRecord | None, requested: LockRecord, now: int) -> LockOutcome:
    """解放可否を判定する。RELEASED の場合のみ呼び出し側で削除する。"""
    if existing is None:
        return LockOutcome.RELEASED_NOT_FOUND
    if existing.is_expired(now):
        return LockOutcome.RELEASED_EXPIRED
    if not requested.is_match(existing):
        return LockOutcome.RELEASE_CONFLICT
    return LockOutcome.RELEASED


def classify_failed_release(existing: LockRecord | None, now: int) -> LockOutcome:
    """条件付き削除が失敗した後、再読み込みした値から結果を分類する。

    再読み込みは削除とアトミックではないため、分類のみに使う。
    """
    if existing is None:
        return LockOutcome.RELEASED_NOT_FOUND
    if existing.is_expired(now):
        return LockOutcome.RELEASED_EXPIRED
    return LockOutcome.RELEASE_CONFLICT
