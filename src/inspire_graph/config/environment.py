"""環境設定管理."""

import os
import warnings
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError, field_validator

from inspire_graph.config import Settings
from inspire_graph.exceptions import ConfigurationError

VALID_SORT_MODES = ("relevance", "mostrecent", "mostcited")


class Environment(str, Enum):
    """環境種別."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class EnvironmentSettings(Settings):
    """環境対応設定クラス."""

    environment: Environment = Environment.DEVELOPMENT

    model_config = {
        "env_file": [
            ".env",
            ".env.local",
            f".env.{os.getenv('INSPIRE_GRAPH_ENV', 'development')}",
        ],
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Environment:
        """環境値の検証.

        Raises:
            ValueError: 無効な環境値の場合
        """
        if isinstance(v, Environment):
            return v
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError as e:
                raise ValueError(f"Invalid environment: {v}") from e
        raise ValueError(f"Invalid environment type: {type(v)}")

    def is_production(self) -> bool:
        """本番環境かどうか."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """テスト環境かどうか."""
        return self.environment == Environment.TESTING


class ConfigValidator:
    """設定検証クラス."""

    def __init__(self, settings: Settings) -> None:
        """初期化.

        Args:
            settings: 検証対象の設定
        """
        self.settings = settings
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def validate_all(self) -> None:
        """全設定の検証.

        Raises:
            ConfigurationError: 設定エラーがある場合
        """
        self._validate_rate_limit()
        self._validate_cache()
        self._validate_graph()
        self._validate_logging()
        self._validate_environment()

        if self.errors:
            raise ConfigurationError(f"Configuration errors: {'; '.join(self.errors)}")

    def _validate_rate_limit(self) -> None:
        """レート制限設定検証."""
        rate_limit = self.settings.rate_limit

        if rate_limit.max_requests < 1:
            self.errors.append("RATE_LIMIT__MAX_REQUESTS must be at least 1")

        if rate_limit.window_seconds <= 0:
            self.errors.append("RATE_LIMIT__WINDOW_SECONDS must be positive")

        if rate_limit.max_queue_wait_seconds is not None and rate_limit.max_queue_wait_seconds <= 0:
            self.errors.append("RATE_LIMIT__MAX_QUEUE_WAIT_SECONDS must be positive")

        if rate_limit.backoff_base_seconds > rate_limit.backoff_max_seconds:
            self.warnings.append("RATE_LIMIT__BACKOFF_BASE_SECONDS exceeds backoff cap")

    def _validate_cache(self) -> None:
        """キャッシュ設定検証."""
        cache = self.settings.cache

        if cache.ttl_hours <= 0:
            self.errors.append("CACHE__TTL_HOURS must be positive")

        if cache.debounce_seconds < 0:
            self.errors.append("CACHE__DEBOUNCE_SECONDS must not be negative")

        if cache.custom_dir and not Path(cache.custom_dir).expanduser().exists():
            self.warnings.append(f"Cache directory does not exist yet: {cache.custom_dir}")

    def _validate_graph(self) -> None:
        """引用グラフ設定検証."""
        graph = self.settings.graph

        if graph.default_sort not in VALID_SORT_MODES:
            self.errors.append(f"GRAPH__DEFAULT_SORT must be one of {', '.join(VALID_SORT_MODES)}")

        if not 0 < graph.default_max_per_side <= graph.cache_ceiling:
            self.errors.append("GRAPH__DEFAULT_MAX_PER_SIDE must be within 1..GRAPH__CACHE_CEILING")

    def _validate_logging(self) -> None:
        """ログ設定検証."""
        logging = self.settings.logging

        if logging.format not in ("json", "console"):
            self.errors.append("LOGGING__FORMAT must be 'json' or 'console'")

        if logging.file_path:
            file_path = Path(logging.file_path)
            if not file_path.parent.exists():
                self.errors.append(f"Log directory does not exist: {file_path.parent}")

    def _validate_environment(self) -> None:
        """環境別の検証."""
        if not isinstance(self.settings, EnvironmentSettings):
            return

        if self.settings.is_production():
            if self.settings.debug:
                self.errors.append("DEBUG must be disabled in production")
            if self.settings.logging.format != "json":
                self.warnings.append("Console log format is not recommended in production")

        if self.settings.is_testing() and self.settings.cache.enabled and not self.settings.cache.custom_dir:
            self.warnings.append("Testing environment writes to the default cache directory")


def load_environment_settings() -> EnvironmentSettings:
    """環境設定の読み込み.

    Raises:
        ConfigurationError: 設定エラーがある場合
    """
    env = os.getenv("INSPIRE_GRAPH_ENV", "development").lower()
    os.environ["ENVIRONMENT"] = env

    try:
        settings = EnvironmentSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

    validator = ConfigValidator(settings)
    validator.validate_all()

    for warning in validator.warnings:
        warnings.warn(f"Configuration warning: {warning}", stacklevel=2)

    return settings
