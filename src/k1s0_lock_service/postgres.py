"""PostgreSQL lock service implementation.

取得・更新・解放はそれぞれ 1 文のアトミックな SQL（upsert / update / delete ... RETURNING）で行う。
"""

from __future__ import annotations

import asyncio
from typing import Any

import asyncpg
import structlog

from .models import LockOutcome, LockRecord, LockResult
from .service import LockService
from .validation import validate_table_name

logger = structlog.get_logger(__name__)

_SERVER_NOW = "EXTRACT(EPOCH FROM now())::bigint"
_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)
_COLUMNS = "namespace, lock_name, owner, instance_id, lease_duration, expiry"


def _row_to_record(row: Any) -> LockRecord:
    return LockRecord(
        namespace=row["namespace"],
        lock_name=row["lock_name"],
        owner=row["owner"],
        instance_id=row["instance_id"],
        lease_duration=int(row["lease_duration"]),
        expiry=int(row["expiry"]),
    )


class PostgresLockService(LockService):
    """asyncpg プールを使う実装。

    既定では呼び出し側の now をバインド変数として SQL に渡す。
    use_server_time=True の場合はサーバーの now() で期限を判定する。
    """

    def __init__(self, pool: asyncpg.Pool, table: str = "locks", use_server_time: bool = False) -> None:
        self._pool = pool
        self._table = validate_table_name(table)
        self._use_server_time = use_server_time

    @property
    def backend_name(self) -> str:
        return "postgres"

    def _now(self, position: int, now: int) -> tuple[str, list[int]]:
        """SQL 中の現在時刻の表現と、追加するバインド値を返す。"""
        if self._use_server_time:
            return _SERVER_NOW, []
        return f"${position}", [now]

    async def ensure_schema(self) -> None:
        """ロックテーブルが無ければ作成する。"""
        await self._pool.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "namespace TEXT NOT NULL, "
            "lock_name TEXT NOT NULL, "
            "owner TEXT NOT NULL, "
            "instance_id TEXT NOT NULL, "
            "lease_duration BIGINT NOT NULL, "
            "expiry BIGINT NOT NULL, "
            "PRIMARY KEY (namespace, lock_name))"
        )

    async def _select(self, namespace: str, lock_name: str) -> LockRecord | None:
        row = await self._pool.fetchrow(
            f"SELECT {_COLUMNS} FROM {self._table} WHERE namespace = $1 AND lock_name = $2",
            namespace,
            lock_name,
        )
        return _row_to_record(row) if row is not None else None

    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        self._check_key(namespace, lock_name)
        try:
            return await self._select(namespace, lock_name)
        except _DB_ERRORS:
            logger.exception("Error getting lock", namespace=namespace, lock_name=lock_name)
            return None

    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        """INSERT ... ON CONFLICT DO UPDATE。更新は期限切れか同一保持者の場合のみ。"""
        self._check_lock(lock, "owner", "instance_id", "lease_duration", "expiry")
        now_sql, now_args = self._now(7, now)
        t = self._table
        sql = (
            f"INSERT INTO {t} ({_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6) "
            "ON CONFLICT (namespace, lock_name) DO UPDATE SET "
            "owner = EXCLUDED.owner, "
            "instance_id = EXCLUDED.instance_id, "
            "lease_duration = EXCLUDED.lease_duration, "
            "expiry = EXCLUDED.expiry "
            f"WHERE {t}.expiry < {now_sql} "
            f"OR ({t}.owner = EXCLUDED.owner AND {t}.instance_id = EXCLUDED.instance_id) "
            "RETURNING namespace"
        )
        try:
            row = await self._pool.fetchrow(
                sql,
                lock.namespace,
                lock.lock_name,
                lock.owner,
                lock.instance_id,
                lock.lease_duration,
                lock.expiry,
                *now_args,
            )
            outcome = LockOutcome.ACQUIRED if row is not None else LockOutcome.ACQUIRE_CONFLICT
        except _DB_ERRORS:
            logger.exception("Error acquiring lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.ACQUIRE_ERROR
        return self._finish(lock, outcome)

    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        """両方のリース値に差分を加算する UPDATE ... RETURNING。行が無ければ競合。"""
        self._check_lock(lock, "owner", "instance_id", "lease_duration")
        now_sql, now_args = self._now(6, now)
        sql = (
            f"UPDATE {self._table} SET "
            "lease_duration = lease_duration + $1, "
            "expiry = expiry + $1 "
            "WHERE namespace = $2 AND lock_name = $3 "
            f"AND expiry >= {now_sql} "
            "AND owner = $4 AND instance_id = $5 "
            f"RETURNING {_COLUMNS}"
        )
        renewed: LockRecord | None = None
        try:
            row = await self._pool.fetchrow(
                sql,
                lock.lease_duration,
                lock.namespace,
                lock.lock_name,
                lock.owner,
                lock.instance_id,
                *now_args,
            )
            if row is not None:
                renewed = _row_to_record(row)
                outcome = LockOutcome.RENEWED
            else:
                outcome = LockOutcome.RENEW_CONFLICT
        except _DB_ERRORS:
            logger.exception("Error renewing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RENEW_ERROR
        return self._finish(renewed or lock, outcome)

    async def _expired_flag(self, namespace: str, lock_name: str, now: int) -> bool | None:
        """行の期限切れ判定を SQL 側の時刻で返す。行が無ければ None。"""
        now_sql, now_args = self._now(3, now)
        row = await self._pool.fetchrow(
            f"SELECT (expiry < {now_sql}) AS expired FROM {self._table} WHERE namespace = $1 AND lock_name = $2",
            namespace,
            lock_name,
            *now_args,
        )
        return bool(row["expired"]) if row is not None else None

    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        """保持者一致で DELETE し、0 行なら再読み込みで分類する。

        期限切れの判定は他の文と同じ時刻源（バインド値またはサーバーの now()）で行う。
        再読み込みは削除とアトミックではないが、影響するのは結果の分類のみ。
        """
        self._check_lock(lock, "owner", "instance_id")
        now_sql, now_args = self._now(5, now)
        try:
            row = await self._pool.fetchrow(
                f"DELETE FROM {self._table} "
                "WHERE namespace = $1 AND lock_name = $2 AND owner = $3 AND instance_id = $4 "
                f"RETURNING (expiry < {now_sql}) AS expired",
                lock.namespace,
                lock.lock_name,
                lock.owner,
                lock.instance_id,
                *now_args,
            )
            if row is not None:
                outcome = LockOutcome.RELEASED_EXPIRED if row["expired"] else LockOutcome.RELEASED
            else:
                expired = await self._expired_flag(lock.namespace, lock.lock_name, now)
                if expired is None:
                    outcome = LockOutcome.RELEASED_NOT_FOUND
                elif expired:
                    outcome = LockOutcome.RELEASED_EXPIRED
                else:
                    outcome = LockOutcome.RELEASE_CONFLICT
        except _DB_ERRORS:
            logger.exception("Error releasing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RELEASE_ERROR
        return self._finish(lock, outcome)
