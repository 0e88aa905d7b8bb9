"""参考文献リストの取得とメタデータ補完."""

import asyncio
from collections.abc import Sequence
from typing import Protocol

import structlog
from pydantic import ValidationError

from inspire_graph.clients.inspire import LIST_FIELDS, InspireClient
from inspire_graph.config import EnrichmentConfig, settings
from inspire_graph.exceptions import AbortError, InspireGraphException
from inspire_graph.models.api import LiteratureMetadata, LiteratureRecord
from inspire_graph.models.cache import CacheNamespace
from inspire_graph.models.graph import ReferenceEntry
from inspire_graph.services.entry_builder import TitleCleaner, apply_metadata, build_reference_entry, needs_enrichment
from inspire_graph.services.memory_cache import MemoryCache
from inspire_graph.services.persistent_cache import PersistentCache
from inspire_graph.utils.cancellation import CancellationToken
from inspire_graph.utils.math_title import clean_math_title

logger = structlog.get_logger(__name__)


class EnrichmentSettingsProvider(Protocol):
    """補完設定の提供元."""

    def get_enrichment_settings(self) -> EnrichmentConfig:
        """現在の補完設定（範囲内に丸められたもの）."""
        ...


class StaticEnrichmentSettings:
    """固定の補完設定."""

    def __init__(self, config: EnrichmentConfig | None = None) -> None:
        """初期化."""
        self.config = config or settings.enrichment

    def get_enrichment_settings(self) -> EnrichmentConfig:
        """補完設定."""
        return self.config


class ReferencesService:
    """参考文献サービス."""

    def __init__(
        self,
        client: InspireClient,
        settings_provider: EnrichmentSettingsProvider | None = None,
        clean_title: TitleCleaner = clean_math_title,
        metadata_cache: MemoryCache[LiteratureMetadata] | None = None,
        cache: PersistentCache | None = None,
    ) -> None:
        """初期化.

        Args:
            client: INSPIREクライアント
            settings_provider: バッチサイズ・並列数の提供元
            clean_title: タイトル整形関数
            metadata_cache: recid単位のメタデータLRU（プロセス共有）
            cache: 参考文献リストを保存する永続キャッシュ（任意）
        """
        self.client = client
        self.cache = cache
        self.settings_provider = settings_provider or StaticEnrichmentSettings()
        self.clean_title = clean_title
        self.metadata_cache = metadata_cache or MemoryCache[LiteratureMetadata](
            settings.enrichment.metadata_cache_size, name="metadata"
        )

    async def fetch_references(
        self,
        recid: str,
        token: CancellationToken | None = None,
    ) -> list[ReferenceEntry]:
        """参考文献リストを取得してエントリに変換.

        論文の参考文献は変化しないため, 補完前のリストを永続キャッシュに保存する.

        Raises:
            NetworkError: リストを取得できなかった場合
            AbortError: キャンセルされた場合
        """
        if self.cache is not None:
            hit = await self.cache.get(CacheNamespace.REFS, recid)
            if hit is not None and isinstance(hit.data, list):
                try:
                    return [ReferenceEntry.model_validate(item) for item in hit.data]
                except ValidationError:
                    logger.warning("Invalid cached references discarded", recid=recid)
                    await self.cache.delete(CacheNamespace.REFS, recid)

        wrappers = await self.client.get_references(recid, token=token)
        entries = [build_reference_entry(wrapper, self.clean_title) for wrapper in wrappers]
        logger.debug("References fetched", recid=recid, count=len(entries))

        if self.cache is not None:
            self.cache.set(
                CacheNamespace.REFS,
                recid,
                [entry.model_dump(mode="json", by_alias=True) for entry in entries],
                total=len(entries),
            )
        return entries

    async def enrich(
        self,
        entries: Sequence[ReferenceEntry],
        token: CancellationToken | None = None,
    ) -> None:
        """不足しているメタデータをバッチ検索で補完（破壊的）.

        バッチ単位の失敗はログに残して続行する. キャンセルは伝播する.
        """
        targets: dict[str, list[ReferenceEntry]] = {}
        for entry in entries:
            if not entry.recid or not needs_enrichment(entry):
                continue
            cached = self.metadata_cache.get(entry.recid)
            if cached is not None:
                apply_metadata(entry, cached, self.clean_title)
                continue
            targets.setdefault(entry.recid, []).append(entry)

        if not targets:
            return

        config = self.settings_provider.get_enrichment_settings()
        recids = list(targets)
        batches = [recids[i : i + config.batch_size] for i in range(0, len(recids), config.batch_size)]
        logger.debug(
            "Enriching references",
            recids=len(recids),
            batches=len(batches),
            parallel=config.parallel_batches,
        )

        for start in range(0, len(batches), config.parallel_batches):
            if token is not None:
                token.raise_if_cancelled()
            group = batches[start : start + config.parallel_batches]
            results = await asyncio.gather(
                *(self._fetch_batch(batch, token) for batch in group),
                return_exceptions=True,
            )
            for batch, result in zip(group, results, strict=True):
                if isinstance(result, AbortError):
                    raise result
                if isinstance(result, BaseException):
                    if not isinstance(result, InspireGraphException):
                        raise result
                    logger.warning("Enrichment batch failed", size=len(batch), error=str(result))
                    continue
                for record in result:
                    recid, metadata = record.recid, record.metadata
                    if not recid or recid not in targets:
                        continue
                    if metadata.is_complete():
                        self.metadata_cache.set(recid, metadata)
                    for entry in targets[recid]:
                        apply_metadata(entry, metadata, self.clean_title)

    async def _fetch_batch(
        self, recids: list[str], token: CancellationToken | None
    ) -> list[LiteratureRecord]:
        query = " OR ".join(f"recid:{recid}" for recid in recids)
        hits = await self.client.search(query, size=len(recids), fields=LIST_FIELDS, token=token)
        return hits.hits
