"""リクエスト単位の canonical log コンテキスト"""

from __future__ import annotations

import hashlib
from typing import Any

import structlog

OUTCOME_KEY = "lock_service_outcome"

LOCK_CONTEXT_KEYS = (
    "lock_namespace",
    "lock_name",
    "lock_operation",
    "auth_subject",
    "instance_id_hash",
    "requested_lease_duration_sec",
    "lock_backend",
    "backend_duration_ms",
    "lock_result",
    "computed_expiry_epoch_sec",
    OUTCOME_KEY,
)


def bind_lock_context(**fields: Any) -> None:
    """canonical log のフィールドを contextvars に束縛する。None は無視する。"""
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in fields.items() if value is not None}
    )


def record_outcome(outcome: str) -> None:
    """バックエンドの判定結果コードを記録する。"""
    structlog.contextvars.bind_contextvars(**{OUTCOME_KEY: str(outcome)})


def current_lock_context() -> dict[str, Any]:
    return structlog.contextvars.get_contextvars()


def reset_lock_context() -> None:
    """ロック関連のフィールドだけを外す。呼び出し側が束縛した他のフィールドは残す。"""
    structlog.contextvars.unbind_contextvars(*LOCK_CONTEXT_KEYS)


def clear_lock_context() -> None:
    structlog.contextvars.clear_contextvars()


def hash_instance_id(instance_id: str | None) -> str | None:
    """ログ出力用に instance_id を SHA-256 でハッシュ化する。生の値はログに残さない。"""
    if instance_id is None:
        return None
    return hashlib.sha256(instance_id.encode("utf-8")).hexdigest()
