"""設定管理のテスト."""

from pathlib import Path

import pytest

from inspire_graph.config import EnrichmentConfig, LocalLibraryConfig, Settings
from inspire_graph.config.environment import (
    ConfigValidator,
    Environment,
    EnvironmentSettings,
    load_environment_settings,
)
from inspire_graph.exceptions import ConfigurationError


def test_default_settings() -> None:
    """デフォルト設定テスト."""
    settings = Settings()
    assert settings.app_name == "inspire-graph"
    assert settings.rate_limit.max_requests == 15
    assert settings.rate_limit.window_seconds == 5.0
    assert settings.cache.ttl_hours == 24.0
    assert settings.graph.cache_ceiling == 200
    assert settings.inspire.api_base == "https://inspirehep.net/api"


def test_nested_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """ネストした環境変数による上書きテスト."""
    monkeypatch.setenv("RATE_LIMIT__MAX_REQUESTS", "3")
    monkeypatch.setenv("CACHE__COMPRESSION", "false")
    settings = Settings()
    assert settings.rate_limit.max_requests == 3
    assert settings.cache.compression is False


@pytest.mark.parametrize(  # type: ignore[misc]
    "batch_size,parallel,expected_batch,expected_parallel",
    [
        (100, 4, 100, 4),
        (5, 0, 25, 1),
        (500, 9, 110, 5),
    ],
)
def test_enrichment_config_clamped(
    batch_size: int, parallel: int, expected_batch: int, expected_parallel: int
) -> None:
    """補完設定が範囲内に丸められることを確認."""
    config = EnrichmentConfig(batch_size=batch_size, parallel_batches=parallel)
    assert config.batch_size == expected_batch
    assert config.parallel_batches == expected_parallel


def test_local_library_url() -> None:
    """ローカルライブラリ接続URLテスト."""
    assert LocalLibraryConfig().url is None
    assert LocalLibraryConfig(database_path="/tmp/zotero.sqlite").url == "sqlite:////tmp/zotero.sqlite"


class TestConfigValidator:
    """ConfigValidatorのテスト."""

    def test_valid_defaults(self) -> None:
        """デフォルト設定は検証を通る."""
        validator = ConfigValidator(Settings())
        validator.validate_all()
        assert validator.errors == []

    def test_invalid_rate_limit(self) -> None:
        """不正なレート制限設定はエラー."""
        settings = Settings()
        settings.rate_limit.max_requests = 0
        settings.rate_limit.window_seconds = 0

        validator = ConfigValidator(settings)
        with pytest.raises(ConfigurationError) as exc_info:
            validator.validate_all()
        assert "RATE_LIMIT__MAX_REQUESTS" in str(exc_info.value)
        assert "RATE_LIMIT__WINDOW_SECONDS" in str(exc_info.value)

    def test_invalid_sort_mode(self) -> None:
        """不正な並び順はエラー."""
        settings = Settings()
        settings.graph.default_sort = "random"

        with pytest.raises(ConfigurationError, match="GRAPH__DEFAULT_SORT"):
            ConfigValidator(settings).validate_all()

    def test_max_per_side_above_ceiling(self) -> None:
        """表示件数が上限を超えるとエラー."""
        settings = Settings()
        settings.graph.default_max_per_side = 500

        with pytest.raises(ConfigurationError, match="GRAPH__DEFAULT_MAX_PER_SIDE"):
            ConfigValidator(settings).validate_all()

    def test_missing_cache_dir_is_warning(self, tmp_path: Path) -> None:
        """存在しないキャッシュディレクトリは警告のみ."""
        settings = Settings()
        settings.cache.custom_dir = str(tmp_path / "missing")

        validator = ConfigValidator(settings)
        validator.validate_all()
        assert any("does not exist" in w for w in validator.warnings)

    def test_backoff_warning(self) -> None:
        """バックオフ基準値が上限を超えると警告."""
        settings = Settings()
        settings.rate_limit.backoff_base_seconds = 60.0

        validator = ConfigValidator(settings)
        validator.validate_all()
        assert validator.warnings


class TestEnvironmentSettings:
    """EnvironmentSettingsのテスト."""

    def test_environment_from_string(self) -> None:
        """文字列から環境を解釈."""
        settings = EnvironmentSettings(environment="PRODUCTION")
        assert settings.environment == Environment.PRODUCTION
        assert settings.is_production()
        assert not settings.is_testing()

    def test_invalid_environment(self) -> None:
        """不正な環境値はエラー."""
        with pytest.raises(ValueError):
            EnvironmentSettings(environment="staging")

    def test_production_rejects_debug(self) -> None:
        """本番環境ではDEBUGを許可しない."""
        settings = EnvironmentSettings(environment="production", debug=True)

        validator = ConfigValidator(settings)
        with pytest.raises(ConfigurationError, match="DEBUG"):
            validator.validate_all()

    def test_production_console_logging_warns(self) -> None:
        """本番環境のコンソールログは警告."""
        settings = EnvironmentSettings(environment="production")
        settings.logging.format = "console"

        validator = ConfigValidator(settings)
        validator.validate_all()
        assert any("production" in w for w in validator.warnings)

    def test_plain_settings_skip_environment_checks(self) -> None:
        """環境を持たない設定では環境別の検証をしない."""
        settings = Settings(debug=True)

        validator = ConfigValidator(settings)
        validator.validate_all()
        assert validator.errors == []


class TestLoadEnvironmentSettings:
    """環境設定読み込みのテスト."""

    def test_reads_environment_variable(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """INSPIRE_GRAPH_ENVから環境を決める."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("INSPIRE_GRAPH_ENV", "Testing")
        monkeypatch.setenv("CACHE__CUSTOM_DIR", str(tmp_path))

        settings = load_environment_settings()

        assert settings.environment == Environment.TESTING
        assert settings.is_testing()
        assert settings.cache.custom_dir == str(tmp_path)

    def test_invalid_environment_is_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """不正な環境名は設定エラー."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("INSPIRE_GRAPH_ENV", "staging")

        with pytest.raises(ConfigurationError):
            load_environment_settings()
