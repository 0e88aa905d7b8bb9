"""設定管理モジュール."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

# バッチエンリッチメントの許容範囲
MIN_BATCH_SIZE = 25
MAX_BATCH_SIZE = 110
MIN_PARALLEL_BATCHES = 1
MAX_PARALLEL_BATCHES = 5


class InspireConfig(BaseModel):
    """INSPIRE API設定."""

    api_base: str = "https://inspirehep.net/api"
    literature_url: str = "https://inspirehep.net/literature"
    timeout: float = 30.0
    cited_by_page_size: int = 250
    cited_by_max_pages: int = 40


class RateLimitConfig(BaseModel):
    """レート制限設定."""

    max_requests: int = 15
    window_seconds: float = 5.0
    max_queue_wait_seconds: float | None = None
    max_retry_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0


class CacheConfig(BaseModel):
    """キャッシュ設定."""

    enabled: bool = True
    custom_dir: str | None = None
    data_dir: str = str(Path.home() / ".local" / "share")
    ttl_hours: float = 24.0
    compression: bool = True
    debounce_seconds: float = 0.5
    memory_size: int = 100


class GraphConfig(BaseModel):
    """引用グラフ設定."""

    default_max_per_side: int = 25
    cache_ceiling: int = 200
    default_sort: str = "relevance"


class EnrichmentConfig(BaseModel):
    """メタデータ補完設定."""

    batch_size: int = 100
    parallel_batches: int = 4
    metadata_cache_size: int = 500

    @field_validator("batch_size", mode="before")
    @classmethod
    def clamp_batch_size(cls, v: int) -> int:
        """バッチサイズを許容範囲に丸める."""
        return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, int(v)))

    @field_validator("parallel_batches", mode="before")
    @classmethod
    def clamp_parallel_batches(cls, v: int) -> int:
        """並列バッチ数を許容範囲に丸める."""
        return max(MIN_PARALLEL_BATCHES, min(MAX_PARALLEL_BATCHES, int(v)))


class CrossRefConfig(BaseModel):
    """CrossRef API設定."""

    api_url: str = "https://api.crossref.org/works"
    timeout: float = 10.0
    max_retries: int = 2


class LocalLibraryConfig(BaseModel):
    """ローカルライブラリ設定."""

    database_path: str | None = None
    identifier_field: str = "archiveLocation"
    chunk_size: int = 500

    @property
    def url(self) -> str | None:
        """SQLAlchemy接続URL."""
        if not self.database_path:
            return None
        return f"sqlite:///{self.database_path}"


class LoggingConfig(BaseModel):
    """ログ設定."""

    level: str = "INFO"
    format: str = "json"  # json or console
    file_path: str | None = None


class Settings(BaseSettings):
    """アプリケーション設定."""

    # 基本設定
    app_name: str = "inspire-graph"
    version: str = "0.1.0"
    debug: bool = False

    inspire: InspireConfig = Field(default_factory=InspireConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    crossref: CrossRefConfig = Field(default_factory=CrossRefConfig)
    local_library: LocalLibraryConfig = Field(default_factory=LocalLibraryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_file": ".env",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }


# グローバル設定インスタンス
settings = Settings()
