"""ワンホップ引用グラフの取得."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from pydantic import ValidationError

from inspire_graph.clients.inspire import InspireClient
from inspire_graph.config import GraphConfig, InspireConfig, settings
from inspire_graph.exceptions import AbortError, InspireGraphException
from inspire_graph.models.cache import CacheNamespace
from inspire_graph.models.graph import GraphNode, OneHopResult, ReferenceEntry, SideCounts, SortMode
from inspire_graph.services.entry_builder import TitleCleaner, build_author_label, build_entry_from_record
from inspire_graph.services.local_library import InMemoryLocalLibrary, LocalLibrary
from inspire_graph.services.persistent_cache import PersistentCache
from inspire_graph.services.ranking import dedupe_entries, sort_entries
from inspire_graph.services.references_service import ReferencesService
from inspire_graph.services.review_filter import is_pdg_review_title, keep_entry
from inspire_graph.utils.cancellation import CancellationToken
from inspire_graph.utils.math_title import clean_math_title

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# relevance順はAPI側の並びを使わないため多めに取得して再評価する
RELEVANCE_OVERSAMPLE = 3
# レビュー除外で減る分の上乗せ
REVIEW_FILTER_OVERSAMPLE = 2


def _unique_recids(entries: list[ReferenceEntry]) -> list[str]:
    return list(dict.fromkeys(e.recid for e in entries if e.recid))


class OneHopGraphFetcher:
    """1シードの参考文献・被引用を取得してランク付けする."""

    def __init__(
        self,
        client: InspireClient,
        references: ReferencesService,
        cache: PersistentCache,
        local_library: LocalLibrary | None = None,
        config: GraphConfig | None = None,
        inspire_config: InspireConfig | None = None,
        clean_title: TitleCleaner = clean_math_title,
    ) -> None:
        """初期化.

        Args:
            client: INSPIREクライアント
            references: 参考文献サービス
            cache: 永続キャッシュ（メモリLRU込み）
            local_library: ローカルライブラリ照合
            config: グラフ設定
            inspire_config: API設定（被引用のページング）
            clean_title: タイトル整形関数
        """
        self.client = client
        self.references = references
        self.cache = cache
        self.local_library = local_library or InMemoryLocalLibrary()
        self.config = config or settings.graph
        self.inspire_config = inspire_config or settings.inspire
        self.clean_title = clean_title

    # ------------------------------------------------------------------
    # キャッシュキー
    # ------------------------------------------------------------------

    @staticmethod
    def cache_variant(sort: SortMode, include_reviews: bool) -> str:
        """キャッシュのバリアント名."""
        return f"{sort.value}_{'reviews' if include_reviews else 'noreviews'}"

    def legacy_variants(
        self, sort: SortMode, include_reviews: bool, max_references: int, max_cited_by: int
    ) -> list[tuple[str, SideCounts]]:
        """件数を含む旧形式のバリアント名と, その件数."""
        default = self.config.default_max_per_side
        ceiling = self.config.cache_ceiling
        sizes = list(dict.fromkeys([(max_references, max_cited_by), (default, default), (ceiling, ceiling)]))
        suffix = "_reviews" if include_reviews else ""
        return [
            (f"{sort.value}_{refs}_{cited}{suffix}", SideCounts(references=refs, cited_by=cited))
            for refs, cited in sizes
        ]

    def _clamp(self, requested: int | None) -> int:
        if requested is None or requested <= 0:
            requested = self.config.default_max_per_side
        return min(self.config.cache_ceiling, int(requested))

    # ------------------------------------------------------------------
    # キャッシュ読み込み
    # ------------------------------------------------------------------

    async def _read_variant(
        self, seed_recid: str, variant: str, ignore_ttl: bool
    ) -> OneHopResult | None:
        hit = await self.cache.get(CacheNamespace.GRAPH, seed_recid, variant, ignore_ttl=ignore_ttl)
        if hit is None:
            return None
        try:
            return OneHopResult.model_validate(hit.data)
        except ValidationError as e:
            logger.warning("Invalid cached graph discarded", recid=seed_recid, variant=variant, errors=e.error_count())
            await self.cache.delete(CacheNamespace.GRAPH, seed_recid, variant)
            return None

    async def _load_cached(
        self,
        seed_recid: str,
        sort: SortMode,
        include_reviews: bool,
        max_references: int,
        max_cited_by: int,
        *,
        ignore_ttl: bool = False,
    ) -> OneHopResult | None:
        """現行キー, 旧形式キーの順に参照. 旧形式は現行キーへ移行する."""
        variant = self.cache_variant(sort, include_reviews)
        result = await self._read_variant(seed_recid, variant, ignore_ttl)
        if result is not None:
            return result

        for legacy, sizes in self.legacy_variants(sort, include_reviews, max_references, max_cited_by):
            result = await self._read_variant(seed_recid, legacy, ignore_ttl)
            if result is None:
                continue
            if result.capacity.references == 0 and result.capacity.cited_by == 0:
                result.capacity = sizes
            self._store(seed_recid, result, sort, include_reviews)
            await self.cache.delete(CacheNamespace.GRAPH, seed_recid, legacy)
            logger.info("Migrated legacy graph cache", recid=seed_recid, legacy=legacy, variant=variant)
            return result
        return None

    def _store(self, seed_recid: str, result: OneHopResult, sort: SortMode, include_reviews: bool) -> None:
        self.cache.set(
            CacheNamespace.GRAPH,
            seed_recid,
            result.model_dump(mode="json", by_alias=True),
            variant=self.cache_variant(sort, include_reviews),
            total=result.totals.references + result.totals.cited_by,
        )

    async def _refresh_local(self, result: OneHopResult) -> OneHopResult:
        """ローカルライブラリとの紐付けを取り直したコピー."""
        refreshed = result.model_copy(deep=True)
        entries = refreshed.references + refreshed.cited_by
        found = await self.local_library.lookup_many([refreshed.center.recid, *_unique_recids(entries)])
        refreshed.center.local_item_id = found.get(refreshed.center.recid)
        for entry in entries:
            entry.local_item_id = found.get(entry.recid) if entry.recid else None
        return refreshed

    async def _serve(
        self,
        result: OneHopResult,
        max_references: int,
        max_cited_by: int,
        seed_title: str | None,
    ) -> OneHopResult:
        served = await self._refresh_local(result)
        if seed_title and seed_title.strip():
            served.center.title = self.clean_title(seed_title.strip()) or served.center.title
        return served.sliced(max_references, max_cited_by)

    async def get_cached_one_hop(
        self,
        seed_recid: str,
        *,
        sort: SortMode | str = SortMode.RELEVANCE,
        max_references: int | None = None,
        max_cited_by: int | None = None,
        include_reviews: bool = False,
        seed_title: str | None = None,
    ) -> OneHopResult | None:
        """キャッシュのみで結果を返す（通信しない, 期限切れも使う）."""
        sort = SortMode(sort)
        seed_recid = seed_recid.strip()
        refs, cited = self._clamp(max_references), self._clamp(max_cited_by)
        cached = await self._load_cached(seed_recid, sort, include_reviews, refs, cited, ignore_ttl=True)
        if cached is None:
            return None
        return await self._serve(cached, refs, cited, seed_title)

    # ------------------------------------------------------------------
    # 取得
    # ------------------------------------------------------------------

    async def fetch_one_hop(
        self,
        seed_recid: str,
        *,
        sort: SortMode | str = SortMode.RELEVANCE,
        max_references: int | None = None,
        max_cited_by: int | None = None,
        include_reviews: bool = False,
        force_refresh: bool = False,
        seed_title: str | None = None,
        token: CancellationToken | None = None,
    ) -> OneHopResult:
        """ワンホップ近傍を取得.

        キャッシュが要求件数を満たせばそれを返す. 参考文献・被引用のどちらかの取得に
        失敗した場合はキャッシュにフォールバックし, なければキャッシュせずに部分結果を返す.

        Raises:
            AbortError: キャンセルされた場合
        """
        sort = SortMode(sort)
        seed_recid = seed_recid.strip()
        refs, cited = self._clamp(max_references), self._clamp(max_cited_by)

        cached = await self._load_cached(seed_recid, sort, include_reviews, refs, cited)
        if cached is not None and not force_refresh and cached.covers(refs, cited):
            logger.debug("One-hop cache hit", recid=seed_recid, sort=sort.value)
            return await self._serve(cached, refs, cited, seed_title)

        ceiling = self.config.cache_ceiling
        capacity = SideCounts(
            references=min(ceiling, max(refs, cached.capacity.references if cached else 0)),
            cited_by=min(ceiling, max(cited, cached.capacity.cited_by if cached else 0)),
        )

        center, references, cited_by = await asyncio.gather(
            self._fetch_center(seed_recid, token),
            self._guarded("references", seed_recid, self._fetch_references(seed_recid, token)),
            self._guarded(
                "cited_by",
                seed_recid,
                self._fetch_cited_by(seed_recid, sort, capacity.cited_by, include_reviews, token),
            ),
        )

        if references is None or cited_by is None:
            fallback = cached or await self._load_cached(
                seed_recid, sort, include_reviews, refs, cited, ignore_ttl=True
            )
            if fallback is not None:
                logger.warning("One-hop fetch failed, serving cached graph", recid=seed_recid)
                return await self._serve(fallback, refs, cited, seed_title)

        # 同じレコードが書誌に重複して載ることがある
        all_references = dedupe_entries([e for e in references or [] if not is_pdg_review_title(e.title)])
        cited_entries, cited_total = cited_by or ([], 0)
        cited_entries = dedupe_entries(cited_entries)

        filtered_references = [e for e in all_references if keep_entry(e, include_reviews)]
        ranked_references = sort_entries(filtered_references, sort)[: capacity.references]
        ranked_cited_by = sort_entries(cited_entries, sort)[: capacity.cited_by]

        result = OneHopResult(
            center=center,
            references=ranked_references,
            cited_by=ranked_cited_by,
            totals=SideCounts(
                references=len(all_references),
                cited_by=cited_total,
            ),
            shown=SideCounts(references=len(ranked_references), cited_by=len(ranked_cited_by)),
            sort=sort,
            references_all_recids=_unique_recids(all_references),
            references_filtered_recids=_unique_recids(filtered_references),
            cited_by_recids=_unique_recids(ranked_cited_by),
            capacity=capacity,
        )
        result = await self._refresh_local(result)

        if references is not None and cited_by is not None:
            self._store(seed_recid, result, sort, include_reviews)
        else:
            logger.warning(
                "Returning partial one-hop graph without caching",
                recid=seed_recid,
                references_ok=references is not None,
                cited_by_ok=cited_by is not None,
            )

        if seed_title and seed_title.strip():
            result.center.title = self.clean_title(seed_title.strip()) or result.center.title
        return result.sliced(refs, cited)

    async def _guarded(self, side: str, seed_recid: str, awaitable: Awaitable[T]) -> T | None:
        """キャンセル以外の失敗をNoneにする."""
        try:
            return await awaitable
        except AbortError:
            raise
        except InspireGraphException as e:
            logger.warning("One-hop fetch failed", side=side, recid=seed_recid, error=str(e))
            return None

    async def _fetch_center(self, seed_recid: str, token: CancellationToken | None) -> GraphNode:
        """シード論文のノード."""
        inspire_url = self.client.literature_url(seed_recid)
        try:
            metadata = await self.client.get_record(seed_recid, token=token)
        except AbortError:
            raise
        except InspireGraphException as e:
            logger.warning("Seed metadata fetch failed", recid=seed_recid, error=str(e))
            metadata = None

        if metadata is None:
            return GraphNode(recid=seed_recid, title=seed_recid, is_seed=True, inspire_url=inspire_url)

        year = metadata.earliest_date[:4] if metadata.earliest_date else None
        names = metadata.author_names
        total = metadata.author_count if metadata.author_count is not None else len(names)
        citations = metadata.self_excluded_citations
        return GraphNode(
            recid=seed_recid,
            title=self.clean_title(metadata.first_title) or seed_recid,
            author_label=build_author_label(names, total, year),
            year=year,
            citation_count=citations if citations is not None else metadata.citation_count,
            is_seed=True,
            inspire_url=inspire_url,
        )

    async def _fetch_references(self, seed_recid: str, token: CancellationToken | None) -> list[ReferenceEntry]:
        """参考文献を全件取得して補完."""
        entries = await self.references.fetch_references(seed_recid, token)
        await self.references.enrich(entries, token)
        return entries

    async def _fetch_cited_by(
        self,
        seed_recid: str,
        sort: SortMode,
        capacity: int,
        include_reviews: bool,
        token: CancellationToken | None,
    ) -> tuple[list[ReferenceEntry], int]:
        """被引用をページングして取得.

        Returns:
            （フィルタ後のエントリ, API上の総件数）
        """
        factor = (RELEVANCE_OVERSAMPLE if sort is SortMode.RELEVANCE else 1) + (
            0 if include_reviews else REVIEW_FILTER_OVERSAMPLE
        )
        target = max(1, capacity * factor)
        page_size = max(1, min(self.inspire_config.cited_by_page_size, target))
        sort_param = None if sort is SortMode.RELEVANCE else sort.value
        query = f"refersto:recid:{seed_recid}"

        entries: list[ReferenceEntry] = []
        seen: set[str] = set()
        total = 0
        for page in range(1, self.inspire_config.cited_by_max_pages + 1):
            hits = await self.client.search(query, size=page_size, page=page, sort=sort_param, token=token)
            total = hits.total
            for record in hits.hits:
                entry = build_entry_from_record(record, self.clean_title)
                if entry.recid:
                    if entry.recid in seen or entry.recid == seed_recid:
                        continue
                    seen.add(entry.recid)
                if keep_entry(entry, include_reviews):
                    entries.append(entry)
            if len(hits.hits) < page_size or page * page_size >= min(total, target):
                break

        logger.debug("Cited-by fetched", recid=seed_recid, kept=len(entries), total=total)
        return entries, total
