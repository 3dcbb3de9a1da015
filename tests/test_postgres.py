"""PostgresLockService のユニットテスト"""

import asyncpg
import pytest
from fakes import FakePool
from k1s0_lock_service.exceptions import LockServiceError, LockServiceErrorCodes
from k1s0_lock_service.models import LockOutcome, LockRecord
from k1s0_lock_service.postgres import PostgresLockService

T = 1_700_000_000


def acquire_request(owner: str = "o", instance_id: str = "i", lease: int = 60, now: int = T) -> LockRecord:
    return LockRecord("ns", "name", owner, instance_id, lease, now + lease)


@pytest.mark.parametrize("table", ["", "1locks", "locks; DROP TABLE x", "lock-table", "a" * 64])
def test_invalid_table_name(pg_pool: FakePool, table: str) -> None:
    with pytest.raises(LockServiceError) as exc_info:
        PostgresLockService(pg_pool, table=table)
    assert exc_info.value.code == LockServiceErrorCodes.INVALID_CONFIG


@pytest.mark.parametrize("table", ["locks", "_locks", "Lock_Table_2", "a" * 63])
def test_valid_table_name(pg_pool: FakePool, table: str) -> None:
    PostgresLockService(pg_pool, table=table)


async def test_ensure_schema(pg_pool: FakePool) -> None:
    service = PostgresLockService(pg_pool, table="app_locks")

    await service.ensure_schema()

    sql, _ = pg_pool.statements[-1]
    assert sql.startswith("CREATE TABLE IF NOT EXISTS app_locks")
    assert "PRIMARY KEY (namespace, lock_name)" in sql


async def test_acquire_binds_caller_time(pg_pool: FakePool) -> None:
    """既定では呼び出し側の now をバインド変数で渡す。"""
    service = PostgresLockService(pg_pool)

    await service.acquire_lock(acquire_request(), T)

    sql, args = pg_pool.statements[-1]
    assert "ON CONFLICT (namespace, lock_name) DO UPDATE" in sql
    assert "locks.expiry < $7" in sql
    assert args == ("ns", "name", "o", "i", 60, T + 60, T)


async def test_server_time(pg_pool: FakePool) -> None:
    """use_server_time=True ではサーバーの now() を使い、now をバインドしない。"""
    service = PostgresLockService(pg_pool, use_server_time=True)

    await service.renew_lock(LockRecord("ns", "name", "o", "i", 30), T)

    sql, args = pg_pool.statements[-1]
    assert "expiry >= EXTRACT(EPOCH FROM now())::bigint" in sql
    assert args == (30, "ns", "name", "o", "i")


async def test_renew_returns_updated_row(pg_pool: FakePool) -> None:
    service = PostgresLockService(pg_pool)
    await service.acquire_lock(acquire_request(), T)

    result = await service.renew_lock(LockRecord("ns", "name", "o", "i", 30), T + 10)

    assert result.outcome == LockOutcome.RENEWED
    assert result.lease_duration == 90
    assert result.expiry == T + 90


async def test_renew_failure_is_conflict(pg_pool: FakePool) -> None:
    service = PostgresLockService(pg_pool)

    result = await service.renew_lock(LockRecord("ns", "name", "o", "i", 30), T)

    assert result.outcome == LockOutcome.RENEW_CONFLICT


async def test_release_follow_up_select(pg_pool: FakePool) -> None:
    """削除 0 行の場合は SELECT で分類する。"""
    service = PostgresLockService(pg_pool)
    await service.acquire_lock(acquire_request(owner="a", instance_id="a1"), T)

    result = await service.release_lock(LockRecord("ns", "name", "b", "b1"), T + 1)

    assert result.outcome == LockOutcome.RELEASE_CONFLICT
    verbs = [sql.split()[0] for sql, _ in pg_pool.statements[-2:]]
    assert verbs == ["DELETE", "SELECT"]


@pytest.mark.parametrize(
    "error",
    [asyncpg.PostgresError("boom"), asyncpg.InterfaceError("pool closed"), ConnectionRefusedError()],
)
async def test_database_errors_are_converted(pg_pool: FakePool, error: Exception) -> None:
    service = PostgresLockService(pg_pool)
    pg_pool.error = error

    assert await service.get_lock("ns", "name") is None
    assert (await service.acquire_lock(acquire_request(), T)).outcome == LockOutcome.ACQUIRE_ERROR
    assert (await service.renew_lock(LockRecord("ns", "name", "o", "i", 30), T)).outcome == LockOutcome.RENEW_ERROR
    assert (await service.release_lock(LockRecord("ns", "name", "o", "i"), T)).outcome == LockOutcome.RELEASE_ERROR


async def test_release_expired_uses_server_time(pg_pool: FakePool) -> None:
    """use_server_time=True では解放結果の期限切れ判定もサーバーの now() で行う。"""
    service = PostgresLockService(pg_pool, use_server_time=True)
    await service.acquire_lock(acquire_request(), T)

    # 呼び出し側の時刻では有効期限内だが、サーバー時刻では期限切れ
    result = await service.release_lock(LockRecord("ns", "name", "o", "i"), T)

    assert result.outcome == LockOutcome.RELEASED_EXPIRED
    sql, args = pg_pool.statements[-1]
    assert "RETURNING (expiry < EXTRACT(EPOCH FROM now())::bigint) AS expired" in sql
    assert args == ("ns", "name", "o", "i")


async def test_failed_release_classified_with_server_time(pg_pool: FakePool) -> None:
    service = PostgresLockService(pg_pool, use_server_time=True)
    await service.acquire_lock(acquire_request(owner="a", instance_id="a1"), T)

    result = await service.release_lock(LockRecord("ns", "name", "b", "b1"), T)

    assert result.outcome == LockOutcome.RELEASED_EXPIRED
    sql, args = pg_pool.statements[-1]
    assert sql.startswith("SELECT (expiry < EXTRACT(EPOCH FROM now())::bigint) AS expired")
    assert args == ("ns", "name")


async def test_release_binds_caller_time(pg_pool: FakePool) -> None:
    service = PostgresLockService(pg_pool)
    await service.acquire_lock(acquire_request(), T)

    result = await service.release_lock(LockRecord("ns", "name", "o", "i"), T + 10)

    assert result.outcome == LockOutcome.RELEASED
    sql, args = pg_pool.statements[-1]
    assert "RETURNING (expiry < $5) AS expired" in sql
    assert args == ("ns", "name", "o", "i", T + 10)
