"""lock_service 例外型のユニットテスト"""

from k1s0_lock_service.exceptions import LockServiceError, LockServiceErrorCodes, LockValidationError


def test_lock_service_error_str() -> None:
    err = LockServiceError(LockServiceErrorCodes.BACKEND_INIT, "boom")
    assert str(err) == "BACKEND_INIT_ERROR: boom"
    assert err.code == "BACKEND_INIT_ERROR"


def test_lock_service_error_cause() -> None:
    cause = OSError("refused")
    err = LockServiceError(LockServiceErrorCodes.BACKEND_INIT, "boom", cause=cause)
    assert err.__cause__ is cause


def test_validation_error() -> None:
    err = LockValidationError("namespace", "namespace is required")
    assert isinstance(err, LockServiceError)
    assert err.field == "namespace"
    assert err.code == LockServiceErrorCodes.INVALID_ARGUMENT
    assert str(err) == "INVALID_ARGUMENT: namespace is required"
