"""ユーティリティモジュール."""

import logging
import sys
from typing import Any

import structlog

from inspire_graph.config import settings


def setup_logging() -> None:
    """ロギング設定の初期化."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.logging.file_path:
        handlers.append(logging.FileHandler(settings.logging.file_path))

    logging.basicConfig(
        level=getattr(logging, settings.logging.level.upper()),
        handlers=handlers,
    )

    shared = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]
    if settings.logging.format == "json":
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_app_info() -> dict[str, Any]:
    """アプリケーション情報取得."""
    return {
        "name": settings.app_name,
        "version": settings.version,
        "debug": settings.debug,
        "inspire_api": settings.inspire.api_base,
        "rate_limit": f"{settings.rate_limit.max_requests}/{settings.rate_limit.window_seconds}s",
        "cache_enabled": settings.cache.enabled,
        "cache_dir": settings.cache.custom_dir or "(default)",
        "logging_level": settings.logging.level,
    }
