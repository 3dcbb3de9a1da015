"""設定からロックサービスを組み立てるファクトリ"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from .config import DynamoDbSection, EtcdSection, FirestoreSection, LockServiceConfig, PostgresSection
from .exceptions import LockServiceError, LockServiceErrorCodes
from .manager import LockManager
from .memory import InMemoryLockService
from .service import LockService

logger = structlog.get_logger(__name__)


def _firestore(section: FirestoreSection) -> LockService:
    from google.cloud.firestore import AsyncClient

    from .firestore import FirestoreLockService

    client = AsyncClient(project=section.project, database=section.database)
    return FirestoreLockService(client, collection=section.collection, ttl_field=section.ttl_field)


def _dynamodb(section: DynamoDbSection) -> LockService:
    import boto3

    from .dynamodb import DynamoDbLockService

    resource = boto3.resource(
        "dynamodb",
        region_name=section.region,
        endpoint_url=section.endpoint_url,
        aws_access_key_id=section.access_key_id,
        aws_secret_access_key=section.secret_access_key,
    )
    return DynamoDbLockService(resource.Table(section.table_name), ttl_attribute=section.ttl_attribute)


def _etcd(section: EtcdSection) -> LockService:
    # etcd3 は optional extra（k1s0-lock-service[etcd]）
    import etcd3

    from .etcd import EtcdLockService

    tls = section.tls
    client = etcd3.client(
        host=section.host,
        port=section.port,
        timeout=section.request_timeout_ms / 1000,
        user=section.username,
        password=section.password,
        ca_cert=tls.ca_cert_path if tls.enabled else None,
        cert_cert=tls.client_cert_path if tls.enabled else None,
        cert_key=tls.client_key_path if tls.enabled else None,
    )
    return EtcdLockService(client, key_prefix=section.key_prefix, max_retries=section.max_retries)


async def _postgres(section: PostgresSection) -> LockService:
    import asyncpg

    from .postgres import PostgresLockService

    pool = await asyncpg.create_pool(
        host=section.host,
        port=section.port,
        database=section.database,
        user=section.user,
        password=section.password,
        ssl="require" if section.ssl else None,
        min_size=1,
        max_size=section.pool_size,
    )
    service = PostgresLockService(pool, table=section.table, use_server_time=section.use_server_time)
    if section.create_table:
        await service.ensure_schema()
    return service


async def create_lock_service(config: LockServiceConfig) -> LockService:
    """config.backend に応じたバックエンドを生成する。

    Raises:
        LockServiceError: クライアントの生成や接続に失敗した場合 (BACKEND_INIT_ERROR)
    """
    backend = config.backend
    try:
        if backend == "memory":
            service: LockService = InMemoryLockService()
        elif backend == "firestore":
            service = _firestore(config.firestore)
        elif backend == "dynamodb":
            service = _dynamodb(config.dynamodb)
        elif backend == "etcd":
            service = _etcd(config.etcd)
        elif backend == "postgres":
            service = await _postgres(config.postgres)
        else:
            raise LockServiceError(LockServiceErrorCodes.INVALID_CONFIG, f"Unknown lock backend: {backend}")
    except LockServiceError:
        raise
    except Exception as e:
        raise LockServiceError(
            code=LockServiceErrorCodes.BACKEND_INIT,
            message=f"Failed to initialize {backend} lock backend",
            cause=e,
        ) from e
    logger.info("lock backend initialized", lock_backend=service.backend_name)
    return service


async def create_lock_manager(
    config: LockServiceConfig,
    clock: Callable[[], int] | None = None,
) -> LockManager:
    """設定からバックエンドを生成して LockManager で包む。"""
    return LockManager(await create_lock_service(config), clock=clock)
