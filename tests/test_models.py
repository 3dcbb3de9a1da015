"""lock_service データモデルのユニットテスト"""

from decimal import Decimal

import pytest
from k1s0_lock_service.models import LockAction, LockOutcome, LockRecord, LockResult

T = 1_700_000_000


def test_key() -> None:
    assert LockRecord("ns", "name").key == "ns:name"


def test_is_expired_boundary() -> None:
    """expiry == now は期限切れではない。"""
    lock = LockRecord("ns", "name", "o", "i", 60, T)
    assert lock.is_expired(T - 1) is False
    assert lock.is_expired(T) is False
    assert lock.is_expired(T + 1) is True
    assert lock.is_active(T) is True


def test_no_expiry_is_always_active() -> None:
    lock = LockRecord("ns", "name")
    assert lock.is_expired(T) is False
    assert lock.is_active(T) is True


def test_is_match_treats_none_as_wildcard() -> None:
    stored = LockRecord("ns", "name", "o", "i", 60, T)
    assert LockRecord("ns", "name").is_match(stored) is True
    assert LockRecord("ns", "name", "o").is_match(stored) is True
    assert LockRecord("ns", "name", "o", "i").is_match(stored) is True


def test_is_match_ignores_lease_fields() -> None:
    stored = LockRecord("ns", "name", "o", "i", 60, T)
    assert LockRecord("ns", "name", "o", "i", 5, T + 999).is_match(stored) is True


@pytest.mark.parametrize(
    "candidate",
    [
        LockRecord("other", "name", "o", "i"),
        LockRecord("ns", "other", "o", "i"),
        LockRecord("ns", "name", "x", "i"),
        LockRecord("ns", "name", "o", "x"),
    ],
)
def test_is_match_mismatch(candidate: LockRecord) -> None:
    assert candidate.is_match(LockRecord("ns", "name", "o", "i", 60, T)) is False


def test_is_match_none() -> None:
    assert LockRecord("ns", "name").is_match(None) is False


def test_from_dict_normalizes_numbers() -> None:
    """DynamoDB の Decimal なども int に正規化される。"""
    record = LockRecord.from_dict(
        {
            "namespace": "ns",
            "lockName": "name",
            "owner": "o",
            "instanceId": "i",
            "leaseDuration": Decimal("60"),
            "expiry": Decimal(T),
            "ttl": "ignored",
        }
    )
    assert record == LockRecord("ns", "name", "o", "i", 60, T)
    assert isinstance(record.expiry, int)


def test_to_dict_uses_storage_field_names() -> None:
    assert LockRecord("ns", "name", "o", "i", 60, T).to_dict() == {
        "namespace": "ns",
        "lockName": "name",
        "owner": "o",
        "instanceId": "i",
        "leaseDuration": 60,
        "expiry": T,
    }


def test_outcome_operation() -> None:
    assert LockOutcome.LOCK_REPLACED.operation == LockAction.ACQUIRE
    assert LockOutcome.ACQUIRE_MAX_RETRIES.operation == LockAction.ACQUIRE
    assert LockOutcome.RENEW_EXPIRED.operation == LockAction.RENEW
    assert LockOutcome.RELEASED_NOT_FOUND.operation == LockAction.RELEASE
    assert LockOutcome.RELEASE_ERROR.operation == LockAction.RELEASE


def test_result_failed_is_redacted() -> None:
    record = LockRecord("ns", "name", "o", "i", 60, T)
    result = LockResult.from_outcome(record, LockOutcome.ACQUIRE_CONFLICT)
    assert result.success is False
    assert result.action == LockAction.FAILED
    assert result.operation == LockAction.ACQUIRE
    assert result.record == LockRecord("ns", "name")


def test_result_cleared() -> None:
    result = LockResult.from_outcome(LockRecord("ns", "name", "o", "i"), LockOutcome.RELEASED_EXPIRED)
    assert result.success is True
    assert result.action == LockAction.SUCCESS
    assert result.owner is None
    assert result.instance_id is None


def test_result_succeeded_keeps_fields() -> None:
    record = LockRecord("ns", "name", "o", "i", 60, T)
    result = LockResult.from_outcome(record, LockOutcome.ACQUIRED)
    assert result.success is True
    assert result.record == record


def test_result_retries_exhausted() -> None:
    record = LockRecord("ns", "name")
    assert LockResult.from_outcome(record, LockOutcome.RENEW_MAX_RETRIES).retries_exhausted is True
    assert LockResult.from_outcome(record, LockOutcome.RENEW_CONFLICT).retries_exhausted is False


def test_for_get_absent() -> None:
    result = LockResult.for_get("ns", "name", None, T)
    assert result.action == LockAction.GET
    assert result.success is None
    assert result.record == LockRecord("ns", "name")


def test_for_get_live_hides_instance_and_lease() -> None:
    result = LockResult.for_get("ns", "name", LockRecord("ns", "name", "o", "i", 60, T + 60), T)
    assert result.owner == "o"
    assert result.expiry == T + 60
    assert result.instance_id is None
    assert result.lease_duration is None


def test_for_get_expired_hides_holder() -> None:
    result = LockResult.for_get("ns", "name", LockRecord("ns", "name", "o", "i", 60, T - 1), T)
    assert result.record == LockRecord("ns", "name")
