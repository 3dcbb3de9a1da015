"""DynamoDB lock service implementation.

読み取りを挟まず、1 回の条件付き書き込みで取得・更新・解放を行う。
パーティションキーは lockId = "{namespace}:{lock_name}"。
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from .decisions import classify_failed_release
from .models import LockOutcome, LockRecord, LockResult
from .service import LockService

logger = structlog.get_logger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"


def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == _CONDITION_FAILED


def _holder(lock: LockRecord) -> Any:
    return Attr("owner").eq(lock.owner) & Attr("instanceId").eq(lock.instance_id)


class DynamoDbLockService(LockService):
    """DynamoDB の条件式による実装。

    table は boto3 の Table リソース。同期 API のため asyncio.to_thread で呼び出す。
    複数スレッドから共有するが、使うのは get_item / put_item / update_item / delete_item のみで、
    いずれも内部状態を変更せずスレッドセーフな table.meta.client に委譲される。
    load() や属性の遅延読み込みなどリソースの状態を変える操作は使わないこと。
    ttl_attribute を指定すると expiry と同じ値を書き込み、DynamoDB TTL で古い項目を掃除させる。
    """

    def __init__(self, table: Any, ttl_attribute: str | None = None) -> None:
        self._table = table
        self._ttl_attribute = ttl_attribute

    @property
    def backend_name(self) -> str:
        return "dynamodb"

    def _to_item(self, lock: LockRecord) -> dict[str, Any]:
        item = {"lockId": lock.key}
        item.update({k: v for k, v in lock.to_dict().items() if v is not None})
        if self._ttl_attribute and lock.expiry is not None:
            item[self._ttl_attribute] = lock.expiry
        return item

    @staticmethod
    def _from_item(item: dict[str, Any] | None) -> LockRecord | None:
        if not item:
            return None
        return LockRecord.from_dict(item)

    async def _get_item(self, key: str) -> LockRecord | None:
        response = await asyncio.to_thread(self._table.get_item, Key={"lockId": key}, ConsistentRead=True)
        return self._from_item(response.get("Item"))

    async def get_lock(self, namespace: str, lock_name: str) -> LockRecord | None:
        self._check_key(namespace, lock_name)
        try:
            return await self._get_item(f"{namespace}:{lock_name}")
        except (BotoCoreError, ClientError, KeyError, ValueError):
            logger.exception("Error getting lock", namespace=namespace, lock_name=lock_name)
            return None

    async def acquire_lock(self, lock: LockRecord, now: int) -> LockResult:
        """未保持・期限切れ・同一保持者のいずれかを条件に上書きする。"""
        self._check_lock(lock, "owner", "instance_id", "lease_duration", "expiry")
        condition = Attr("lockId").not_exists() | Attr("expiry").lt(now) | _holder(lock)
        try:
            response = await asyncio.to_thread(
                self._table.put_item,
                Item=self._to_item(lock),
                ConditionExpression=condition,
                ReturnValues="ALL_OLD",
            )
            previous = self._from_item(response.get("Attributes"))
            if previous is not None and lock.is_match(previous):
                outcome = LockOutcome.LOCK_REPLACED
            else:
                outcome = LockOutcome.ACQUIRED
        except ClientError as e:
            if _is_condition_failure(e):
                logger.debug("Conditional check failed for acquire", namespace=lock.namespace, lock_name=lock.lock_name)
                outcome = LockOutcome.ACQUIRE_CONFLICT
            else:
                logger.exception("Error acquiring lock", namespace=lock.namespace, lock_name=lock.lock_name)
                outcome = LockOutcome.ACQUIRE_ERROR
        except (BotoCoreError, KeyError, ValueError):
            logger.exception("Error acquiring lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.ACQUIRE_ERROR
        return self._finish(lock, outcome)

    async def renew_lock(self, lock: LockRecord, now: int) -> LockResult:
        """両方のリース値に差分を加算し、更新後の値をそのまま返す。"""
        self._check_lock(lock, "owner", "instance_id", "lease_duration")
        condition = Attr("lockId").exists() & Attr("expiry").gte(now) & _holder(lock)
        update = "SET #lease = #lease + :delta, #expiry = #expiry + :delta"
        names = {"#lease": "leaseDuration", "#expiry": "expiry"}
        if self._ttl_attribute:
            update += ", #ttl = #expiry + :delta"
            names["#ttl"] = self._ttl_attribute
        renewed: LockRecord | None = None
        try:
            response = await asyncio.to_thread(
                self._table.update_item,
                Key={"lockId": lock.key},
                UpdateExpression=update,
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues={":delta": lock.lease_duration},
                ReturnValues="ALL_NEW",
            )
            renewed = self._from_item(response.get("Attributes"))
            outcome = LockOutcome.RENEWED
        except ClientError as e:
            if _is_condition_failure(e):
                logger.debug("Conditional check failed for renew", namespace=lock.namespace, lock_name=lock.lock_name)
                outcome = LockOutcome.RENEW_CONFLICT
            else:
                logger.exception("Error renewing lock", namespace=lock.namespace, lock_name=lock.lock_name)
                outcome = LockOutcome.RENEW_ERROR
        except (BotoCoreError, KeyError, ValueError):
            logger.exception("Error renewing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RENEW_ERROR
        return self._finish(renewed or lock, outcome)

    async def release_lock(self, lock: LockRecord, now: int) -> LockResult:
        """保持者一致を条件に削除する。

        条件不一致の場合は再読み込みで分類する。この読み取りは削除とアトミックではないが、
        影響するのは結果の分類のみでロック状態には影響しない。
        """
        self._check_lock(lock, "owner", "instance_id")
        try:
            try:
                response = await asyncio.to_thread(
                    self._table.delete_item,
                    Key={"lockId": lock.key},
                    ConditionExpression=_holder(lock),
                    ReturnValues="ALL_OLD",
                )
            except ClientError as e:
                if not _is_condition_failure(e):
                    raise
                outcome = classify_failed_release(await self._get_item(lock.key), now)
            else:
                previous = self._from_item(response.get("Attributes"))
                if previous is not None and previous.is_expired(now):
                    outcome = LockOutcome.RELEASED_EXPIRED
                else:
                    outcome = LockOutcome.RELEASED
        except (BotoCoreError, ClientError, KeyError, ValueError):
            logger.exception("Error releasing lock", namespace=lock.namespace, lock_name=lock.lock_name)
            outcome = LockOutcome.RELEASE_ERROR
        return self._finish(lock, outcome)
