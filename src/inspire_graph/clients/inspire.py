"""INSPIRE-HEP literature APIクライアント."""

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from inspire_graph.clients.rate_limiter import SlidingWindowRateLimiter
from inspire_graph.config import InspireConfig, settings
from inspire_graph.exceptions import NetworkError, RateLimitedError
from inspire_graph.models.api import LiteratureMetadata, ReferenceWrapper, SearchHits, SearchResponse
from inspire_graph.utils.cancellation import CancellationToken

logger = structlog.get_logger(__name__)

# シード論文の取得フィールド
SEED_FIELDS = (
    "titles.title,authors.full_name,author_count,earliest_date,"
    "citation_count,citation_count_without_self_citations"
)

# 一覧表示・補完用の取得フィールド
LIST_FIELDS = (
    "control_number,titles.title,authors.full_name,author_count,collaborations,"
    "publication_info,arxiv_eprints,earliest_date,dois,texkeys,document_type,"
    "citation_count,citation_count_without_self_citations"
)

REFERENCES_FIELDS = "metadata.references"


class InspireClient:
    """INSPIRE APIクライアント."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        config: InspireConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """初期化.

        Args:
            limiter: 共有レートリミッター
            config: API設定
            http_client: HTTPクライアント（テスト用に差し替え可能）
        """
        self.limiter = limiter
        self.config = config or settings.inspire
        self.client = http_client or httpx.AsyncClient(
            base_url=self.config.api_base,
            headers={"Accept": "application/json"},
            timeout=self.config.timeout,
        )

    def literature_url(self, recid: str) -> str:
        """論文ページURL."""
        return f"{self.config.literature_url}/{recid}"

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None,
        token: CancellationToken | None,
    ) -> Any | None:
        """GETしてJSONを返す（404はNone）.

        Raises:
            NetworkError: 通信失敗・2xx以外の応答・不正なJSON
        """
        response = await self.limiter.fetch(self.client, path, params=params, token=token)
        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise RateLimitedError("Rate limit exceeded", status_code=429)
        if not response.is_success:
            raise NetworkError(f"HTTP {response.status_code} for {path}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {path}", status_code=response.status_code) from e

    async def get_record(
        self,
        recid: str,
        fields: str = SEED_FIELDS,
        token: CancellationToken | None = None,
    ) -> LiteratureMetadata | None:
        """論文メタデータ取得."""
        payload = await self._get_json(f"/literature/{recid}", {"fields": fields}, token)
        if not isinstance(payload, dict):
            return None
        metadata = payload.get("metadata")
        if not isinstance(metadata, dict):
            return None
        return LiteratureMetadata.model_validate(metadata)

    async def get_references(
        self,
        recid: str,
        token: CancellationToken | None = None,
    ) -> list[ReferenceWrapper]:
        """参考文献リスト取得（INSPIREは全件を1レスポンスに含める）.

        Raises:
            NetworkError: 取得できなかった場合
        """
        payload = await self._get_json(f"/literature/{recid}", {"fields": REFERENCES_FIELDS}, token)
        if payload is None:
            raise NetworkError(f"Reference list not found for {recid}", status_code=404)

        metadata = payload.get("metadata") if isinstance(payload, dict) else None
        raw_references = metadata.get("references") if isinstance(metadata, dict) else None
        if not isinstance(raw_references, list):
            return []

        references: list[ReferenceWrapper] = []
        skipped = 0
        for raw in raw_references:
            if not isinstance(raw, dict):
                skipped += 1
                continue
            try:
                references.append(ReferenceWrapper.model_validate(raw))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.debug("Skipped malformed references", recid=recid, skipped=skipped)
        return references

    async def search(
        self,
        query: str,
        *,
        size: int,
        page: int = 1,
        sort: str | None = None,
        fields: str | None = LIST_FIELDS,
        token: CancellationToken | None = None,
    ) -> SearchHits:
        """文献検索."""
        params: dict[str, Any] = {"q": query, "size": max(1, size), "page": page}
        if sort:
            params["sort"] = sort
        if fields:
            params["fields"] = fields

        payload = await self._get_json("/literature", params, token)
        if not isinstance(payload, dict):
            return SearchHits()
        return SearchResponse.model_validate(payload).hits

    async def close(self) -> None:
        """クライアントクローズ."""
        await self.client.aclose()
