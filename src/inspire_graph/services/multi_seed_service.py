"""複数シードの引用グラフ統合."""

import asyncio
from collections import Counter
from collections.abc import Iterable, Sequence

import structlog

from inspire_graph.clients.inspire import InspireClient
from inspire_graph.config import GraphConfig, settings
from inspire_graph.exceptions import AbortError, InspireGraphException, NoSeedsError
from inspire_graph.models.graph import (
    CachedMultiSeedResult,
    GraphNode,
    MultiSeedCacheSummary,
    MultiSeedGraphResult,
    OneHopResult,
    ReferenceEntry,
    SeedEdge,
    SeedView,
    SideCounts,
    SortMode,
)
from inspire_graph.services.graph_service import OneHopGraphFetcher
from inspire_graph.services.ranking import merge_entry, sort_entries
from inspire_graph.utils.cancellation import CancellationToken

logger = structlog.get_logger(__name__)


def normalize_seeds(seeds: Iterable[str]) -> list[str]:
    """空白除去・空要素除去・順序を保った重複除去."""
    return list(dict.fromkeys(s for s in (str(seed).strip() for seed in seeds) if s))


def detect_seed_edges(results: Sequence[OneHopResult]) -> list[SeedEdge]:
    """シード間の参照関係（レビュー除外前の参考文献で判定）."""
    refs_by_seed = {r.center.recid: set(r.references_all_recids) for r in results}
    edges: list[SeedEdge] = []
    for source in results:
        refs = refs_by_seed[source.center.recid]
        for target in results:
            if target.center.recid != source.center.recid and target.center.recid in refs:
                edges.append(SeedEdge(source=source.center.recid, target=target.center.recid))
    return edges


class MultiSeedGraphMerger:
    """シードごとのワンホップ結果を統合する."""

    def __init__(
        self,
        fetcher: OneHopGraphFetcher,
        client: InspireClient,
        config: GraphConfig | None = None,
    ) -> None:
        """初期化."""
        self.fetcher = fetcher
        self.client = client
        self.config = config or settings.graph

    def _limit(self, requested: int | None) -> int:
        if requested is None or requested <= 0:
            return self.config.default_max_per_side
        return int(requested)

    async def fetch_multi_seed(
        self,
        seeds: Iterable[str],
        *,
        sort: SortMode | str = SortMode.RELEVANCE,
        max_references: int | None = None,
        max_cited_by: int | None = None,
        include_reviews: bool = False,
        force_refresh: bool = False,
        token: CancellationToken | None = None,
    ) -> MultiSeedGraphResult:
        """各シードを並行取得して統合.

        Raises:
            NoSeedsError: 有効なシードがない場合
            AbortError: キャンセルされた場合
        """
        seed_list = normalize_seeds(seeds)
        if not seed_list:
            raise NoSeedsError()
        sort = SortMode(sort)
        refs, cited = self._limit(max_references), self._limit(max_cited_by)

        async def one_hop(recid: str) -> OneHopResult:
            try:
                return await self.fetcher.fetch_one_hop(
                    recid,
                    sort=sort,
                    max_references=refs,
                    max_cited_by=cited,
                    include_reviews=include_reviews,
                    force_refresh=force_refresh,
                    token=token,
                )
            except AbortError:
                raise
            except InspireGraphException as e:
                logger.warning("Seed fetch failed, using placeholder", recid=recid, error=str(e))
                return OneHopResult.placeholder(recid, sort, self.client.literature_url(recid))

        results = await asyncio.gather(*(one_hop(recid) for recid in seed_list))
        union_total = await self._cited_by_union_total(seed_list, token)
        logger.info("Multi-seed graph fetched", seeds=len(seed_list), sort=sort.value)
        return self._merge(list(results), seed_list, sort, refs, cited, union_total)

    async def fetch_multi_seed_cached(
        self,
        seeds: Iterable[str],
        *,
        sort: SortMode | str = SortMode.RELEVANCE,
        max_references: int | None = None,
        max_cited_by: int | None = None,
        include_reviews: bool = False,
    ) -> CachedMultiSeedResult | None:
        """キャッシュのみで統合（通信しない）.

        Returns:
            どのシードにもキャッシュがなければNone
        """
        seed_list = normalize_seeds(seeds)
        if not seed_list:
            return None
        sort = SortMode(sort)
        refs, cited = self._limit(max_references), self._limit(max_cited_by)

        cached = await asyncio.gather(
            *(
                self.fetcher.get_cached_one_hop(
                    recid,
                    sort=sort,
                    max_references=refs,
                    max_cited_by=cited,
                    include_reviews=include_reviews,
                )
                for recid in seed_list
            )
        )

        summary = MultiSeedCacheSummary(requested=SideCounts(references=refs, cited_by=cited))
        results: list[OneHopResult] = []
        for recid, result in zip(seed_list, cached, strict=True):
            if result is None:
                summary.missing_seeds.append(recid)
                results.append(OneHopResult.placeholder(recid, sort, self.client.literature_url(recid)))
                continue
            refs_partial = len(result.references) < refs and result.totals.references > len(result.references)
            cited_partial = len(result.cited_by) < cited and result.totals.cited_by > len(result.cited_by)
            if refs_partial or cited_partial:
                summary.partial_seeds.append(recid)
            results.append(result)

        if not any(r.references or r.cited_by for r in results):
            return None
        merged = self._merge(results, seed_list, sort, refs, cited, union_total=None)
        return CachedMultiSeedResult(result=merged, cache=summary)

    async def _cited_by_union_total(
        self, seeds: list[str], token: CancellationToken | None
    ) -> int | None:
        """OR検索による被引用の重複なし総数（失敗時None）."""
        query = " OR ".join(f"refersto:recid:{recid}" for recid in seeds)
        try:
            hits = await self.client.search(query, size=1, fields="control_number", token=token)
        except AbortError:
            raise
        except InspireGraphException as e:
            logger.warning("Cited-by union count failed", seeds=len(seeds), error=str(e))
            return None
        return hits.total

    def _merge(
        self,
        results: list[OneHopResult],
        seeds: list[str],
        sort: SortMode,
        max_references: int,
        max_cited_by: int,
        union_total: int | None,
    ) -> MultiSeedGraphResult:
        """重複除去・接続数による再ランク・全体での切り詰め."""
        seed_set = set(seeds)
        seed_nodes: list[GraphNode] = [r.center for r in results]
        seed_edges = detect_seed_edges(results)

        references: dict[str, ReferenceEntry] = {}
        cited_by: dict[str, ReferenceEntry] = {}
        by_seed: dict[str, SeedView] = {}
        for r in results:
            by_seed[r.center.recid] = SeedView(
                references=[e.recid for e in r.references if e.recid and e.recid not in seed_set],
                cited_by=[e.recid for e in r.cited_by if e.recid and e.recid not in seed_set],
                totals=r.totals.model_copy(),
                shown=r.shown.model_copy(),
            )
            for entry in r.references:
                if entry.recid and entry.recid not in seed_set:
                    merge_entry(references, entry.recid, entry)
            for entry in r.cited_by:
                if entry.recid and entry.recid not in seed_set:
                    merge_entry(cited_by, entry.recid, entry)

        reference_pools = [set(r.reference_pool()) - seed_set for r in results]
        reference_counts: Counter[str] = Counter()
        for pool in reference_pools:
            reference_counts.update(pool)
        cited_counts: Counter[str] = Counter()
        for view in by_seed.values():
            cited_counts.update(set(view.cited_by))

        ranked_references = sort_entries(list(references.values()), sort, reference_counts)[:max(0, max_references)]
        ranked_cited_by = sort_entries(list(cited_by.values()), sort, cited_counts)[:max(0, max_cited_by)]
        for entry in ranked_references:
            entry.connection_count = reference_counts.get(entry.recid or "", 1) or 1
        for entry in ranked_cited_by:
            entry.connection_count = cited_counts.get(entry.recid or "", 1) or 1

        shown_references = {e.recid for e in ranked_references}
        shown_cited_by = {e.recid for e in ranked_cited_by}
        for view in by_seed.values():
            view.references = [recid for recid in view.references if recid in shown_references]
            view.cited_by = [recid for recid in view.cited_by if recid in shown_cited_by]
            view.shown = SideCounts(references=len(view.references), cited_by=len(view.cited_by))

        references_total = len(set().union(*reference_pools)) if reference_pools else 0
        cited_total_raw = union_total if union_total is not None else sum(r.totals.cited_by for r in results)
        citing_seeds = {edge.source for edge in seed_edges}

        return MultiSeedGraphResult(
            seeds=seed_nodes,
            seed_edges=seed_edges,
            references=ranked_references,
            cited_by=ranked_cited_by,
            totals=SideCounts(
                references=references_total,
                cited_by=max(0, cited_total_raw - len(citing_seeds)),
            ),
            shown=SideCounts(references=len(ranked_references), cited_by=len(ranked_cited_by)),
            sort=sort,
            by_seed=by_seed,
        )
