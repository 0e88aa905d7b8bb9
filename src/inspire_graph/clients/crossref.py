"""CrossRef APIクライアント."""

import asyncio
import copy
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from inspire_graph.config import CrossRefConfig, settings
from inspire_graph.exceptions import NetworkError
from inspire_graph.models.cache import CacheNamespace
from inspire_graph.services.persistent_cache import PersistentCache
from inspire_graph.utils.cancellation import CancellationToken, run_cancellable
from inspire_graph.utils.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

CSL_JSON_PATH = "transform/application/vnd.citationstyles.csl+json"


class CrossRefClient:
    """DOIからCSL-JSONを取得するクライアント."""

    def __init__(
        self,
        config: CrossRefConfig | None = None,
        cache: PersistentCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """初期化.

        Args:
            config: CrossRef設定
            cache: 結果を保存する永続キャッシュ（任意）
            http_client: HTTPクライアント（テスト用に差し替え可能）
        """
        self.config = config or settings.crossref
        self.cache = cache
        self.client = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    def _url(self, doi: str) -> str:
        return f"{self.config.api_url}/{quote(doi, safe='/')}/{CSL_JSON_PATH}"

    async def _fetch_once(self, doi: str, token: CancellationToken | None) -> dict[str, Any] | None:
        try:
            response = await run_cancellable(
                self.client.get(self._url(doi), timeout=self.config.timeout), token
            )
        except httpx.TransportError as e:
            MetricsCollector.track_request("crossref", "error")
            raise NetworkError(f"CrossRef request failed: {e}") from e

        MetricsCollector.track_request("crossref", response.status_code)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise NetworkError(f"CrossRef HTTP {response.status_code}", status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError("CrossRef returned invalid JSON") from e
        return data if isinstance(data, dict) else None

    async def get_csl_json(self, doi: str, token: CancellationToken | None = None) -> dict[str, Any] | None:
        """CSL-JSON取得.

        通信失敗は1秒, 2秒の間隔で最大2回再試行し, それでも失敗したらNone.

        Raises:
            AbortError: キャンセルされた場合
        """
        doi = doi.strip()
        if not doi:
            return None

        cache_key = doi.lower()
        if self.cache is not None:
            hit = await self.cache.get(CacheNamespace.CROSSREF, cache_key)
            if hit is not None:
                return copy.deepcopy(hit.data)  # type: ignore[no-any-return]

        async def cancellable_sleep(seconds: float) -> None:
            await run_cancellable(asyncio.sleep(seconds), token)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=2),
            retry=retry_if_exception_type(NetworkError),
            sleep=cancellable_sleep,
        )
        try:
            data = await retrying(self._fetch_once, doi, token)
        except RetryError as e:
            logger.warning("CrossRef fetch failed", doi=doi, error=str(e.last_attempt.exception()))
            return None

        if data is not None and self.cache is not None:
            self.cache.set(CacheNamespace.CROSSREF, cache_key, copy.deepcopy(data))
        return data  # type: ignore[no-any-return]

    async def close(self) -> None:
        """クライアントクローズ."""
        await self.client.aclose()
