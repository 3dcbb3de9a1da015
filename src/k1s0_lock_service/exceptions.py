"""lock_service ライブラリの例外型定義"""

from __future__ import annotations


class LockServiceError(Exception):
    """lock_service ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class LockValidationError(LockServiceError):
    """呼び出し側の入力不正（事前条件違反）。"""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(LockServiceErrorCodes.INVALID_ARGUMENT, message)
        self.field = field


class LockServiceErrorCodes:
    """LockServiceError のエラーコード定数。"""

    INVALID_ARGUMENT: str = "INVALID_ARGUMENT"
    INVALID_CONFIG: str = "INVALID_CONFIG"
    BACKEND_INIT: str = "BACKEND_INIT_ERROR"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"
