"""設定ファイル読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import LockServiceConfig
from .exceptions import LockServiceError, LockServiceErrorCodes


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージして新しい辞書を返す。

    override の値が優先される。リストは置換（マージしない）。
    """
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LockServiceError(
            code=LockServiceErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise LockServiceError(
            code=LockServiceErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise LockServiceError(
            code=LockServiceErrorCodes.PARSE_YAML,
            message=f"Config root must be a mapping: {path}",
        )
    return data


def _check_backend_section(data: dict[str, Any]) -> None:
    """memory 以外のバックエンドを選んだ場合、その接続セクションが書かれているか確認する。

    既定値だけで外部ストアへ接続してしまう設定漏れを防ぐ。
    """
    backend = data.get("backend", "memory")
    if backend == "memory" or not isinstance(backend, str):
        return
    if not isinstance(data.get(backend), dict):
        raise LockServiceError(
            code=LockServiceErrorCodes.VALIDATION,
            message=f"Config section '{backend}' is required when backend is '{backend}'",
        )


def load_config(base_path: Path, env_path: Path | None = None) -> LockServiceConfig:
    """設定ファイルを読み込んで LockServiceConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    _check_backend_section(data)
    try:
        return LockServiceConfig.model_validate(data)
    except ValidationError as e:
        raise LockServiceError(
            code=LockServiceErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
