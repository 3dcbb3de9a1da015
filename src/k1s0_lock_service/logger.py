"""structlog ベースのロガー設定"""

from __future__ import annotations

import logging
import sys

import structlog

from .config import LogSection


def new_logger(
    level: str = "INFO",
    format: str = "json",
    service_name: str = "lock-service",
) -> structlog.stdlib.BoundLogger:
    """設定済みの structlog ロガーを返す。

    contextvars に束縛した canonical log のフィールドはすべてのログ行に付与される。

    Args:
        level: ログレベル ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        format: 出力形式 ("json" or "text")
        service_name: service フィールドに出力する名前

    Returns:
        設定済みの structlog.stdlib.BoundLogger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    processors: list[structlog.types.Processor]
    if format == "json":
        processors = [
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.stdlib.get_logger().bind(service=service_name)


def configure_logging(section: LogSection) -> structlog.stdlib.BoundLogger:
    """設定ファイルの log セクションからロガーを構成する。"""
    return new_logger(level=section.level, format=section.format)
