"""設定型定義（pydantic BaseModel）"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .exceptions import LockServiceError
from .validation import validate_table_name

BackendName = Literal["memory", "firestore", "dynamodb", "etcd", "postgres"]


class LogSection(BaseModel):
    """ログ設定。"""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class FirestoreSection(BaseModel):
    """Firestore 接続設定。"""

    project: str | None = None
    database: str = "(default)"
    collection: str = "locks"
    ttl_field: str | None = "ttl"


class DynamoDbSection(BaseModel):
    """DynamoDB 接続設定。"""

    table_name: str = "locks"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    ttl_attribute: str | None = None


class EtcdTlsSection(BaseModel):
    """etcd TLS 設定。"""

    enabled: bool = False
    ca_cert_path: str | None = None
    client_cert_path: str | None = None
    client_key_path: str | None = None


class EtcdSection(BaseModel):
    """etcd 接続設定。"""

    host: str = "localhost"
    port: int = Field(default=2379, ge=1, le=65535)
    key_prefix: str = "locks/"
    max_retries: int = Field(default=3, ge=0)
    request_timeout_ms: int = Field(default=5000, ge=1)
    username: str | None = None
    password: str | None = None
    tls: EtcdTlsSection = Field(default_factory=EtcdTlsSection)


class PostgresSection(BaseModel):
    """PostgreSQL 接続設定。"""

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "lockservice"
    user: str = "postgres"
    password: str | None = None
    ssl: bool = False
    table: str = "locks"
    pool_size: int = Field(default=10, ge=1)
    use_server_time: bool = False
    create_table: bool = False

    @field_validator("table")
    @classmethod
    def _check_table(cls, value: str) -> str:
        try:
            return validate_table_name(value)
        except LockServiceError as e:
            raise ValueError(str(e)) from e


class LockServiceConfig(BaseModel):
    """ロックサービス全体の設定。backend で有効なバックエンドを選ぶ。"""

    backend: BackendName = "memory"
    log: LogSection = Field(default_factory=LogSection)
    firestore: FirestoreSection = Field(default_factory=FirestoreSection)
    dynamodb: DynamoDbSection = Field(default_factory=DynamoDbSection)
    etcd: EtcdSection = Field(default_factory=EtcdSection)
    postgres: PostgresSection = Field(default_factory=PostgresSection)
