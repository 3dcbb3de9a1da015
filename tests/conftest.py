"""全バックエンド共通のフィクスチャ"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from typing import Any

import boto3
import pytest
from fakes import FakeEtcdClient, FakePool
from k1s0_lock_service.context import clear_lock_context
from k1s0_lock_service.dynamodb import DynamoDbLockService
from k1s0_lock_service.etcd import EtcdLockService
from k1s0_lock_service.memory import InMemoryLockService
from k1s0_lock_service.postgres import PostgresLockService
from k1s0_lock_service.service import LockService
from moto import mock_aws

BACKENDS = ["memory", "dynamodb", "etcd", "postgres", "firestore"]


@pytest.fixture(autouse=True)
def _clean_log_context() -> Iterator[None]:
    clear_lock_context()
    yield
    clear_lock_context()


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def dynamodb_table(aws_credentials: None) -> Iterator[Any]:
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="us-east-1")
        table = resource.create_table(
            TableName="locks",
            KeySchema=[{"AttributeName": "lockId", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "lockId", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        yield table


@pytest.fixture
def etcd_client() -> FakeEtcdClient:
    return FakeEtcdClient()


@pytest.fixture
def pg_pool() -> FakePool:
    return FakePool()


def _firestore_service() -> LockService:
    if not os.environ.get("FIRESTORE_EMULATOR_HOST"):
        pytest.skip("FIRESTORE_EMULATOR_HOST is not set")
    from google.cloud.firestore import AsyncClient
    from k1s0_lock_service.firestore import FirestoreLockService

    client = AsyncClient(project="k1s0-lock-service-test")
    return FirestoreLockService(client, collection=f"locks-{uuid.uuid4().hex[:8]}")


@pytest.fixture(params=BACKENDS)
def lock_service(request: pytest.FixtureRequest) -> Iterator[LockService]:
    """同一のシナリオをすべてのバックエンドに対して実行するためのフィクスチャ。"""
    backend = request.param
    if backend == "memory":
        yield InMemoryLockService()
    elif backend == "dynamodb":
        yield DynamoDbLockService(request.getfixturevalue("dynamodb_table"))
    elif backend == "etcd":
        yield EtcdLockService(request.getfixturevalue("etcd_client"))
    elif backend == "postgres":
        yield PostgresLockService(request.getfixturevalue("pg_pool"))
    else:
        yield _firestore_service()


@pytest.fixture
def lock_name() -> str:
    return f"lock-{uuid.uuid4().hex[:12]}"
