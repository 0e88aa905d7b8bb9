"""引用グラフのドメインモデル."""

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SortMode(str, Enum):
    """並び順."""

    RELEVANCE = "relevance"
    MOST_RECENT = "mostrecent"
    MOST_CITED = "mostcited"


class GraphModel(BaseModel):
    """キャッシュにはcamelCaseで保存する共通基底."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArxivDetails(GraphModel):
    """arXiv情報."""

    id: str | None = None
    categories: list[str] = Field(default_factory=list)


class PublicationNote(GraphModel):
    """正誤表などの付記出版情報."""

    info: dict[str, Any]
    label: str


class GraphNode(GraphModel):
    """グラフ上の1論文."""

    recid: str
    title: str
    author_label: str | None = None
    year: str | None = None
    citation_count: int | None = None
    local_item_id: int | None = None
    is_seed: bool = False
    inspire_url: str | None = None


class ReferenceEntry(GraphModel):
    """参考文献・被引用リストの1エントリ."""

    recid: str | None = None
    label: str | None = None
    title: str = ""
    year: str | None = None
    earliest_date: str | None = None
    authors: list[str] = Field(default_factory=list)
    total_authors: int | None = None
    author_text: str = ""
    citation_count: int | None = None
    citation_count_without_self: int | None = None
    publication_info: dict[str, Any] | None = None
    publication_info_errata: list[PublicationNote] | None = None
    arxiv_details: ArxivDetails | None = None
    doi: str | None = None
    document_type: list[str] | None = None
    summary: str | None = None
    inspire_url: str | None = None
    fallback_url: str | None = None
    texkey: str | None = None
    local_item_id: int | None = None
    connection_count: int | None = None

    @property
    def citation_value(self) -> int:
        """自己引用を除く被引用数（なければ総数, どちらもなければ-1）."""
        if self.citation_count_without_self is not None:
            return self.citation_count_without_self
        if self.citation_count is not None:
            return self.citation_count
        return -1

    @property
    def year_value(self) -> float:
        """数値化した出版年（不明なら-inf）."""
        try:
            return float(int(str(self.year).strip()))
        except (TypeError, ValueError):
            return -math.inf


class SideCounts(GraphModel):
    """参考文献側・被引用側の件数."""

    references: int = 0
    cited_by: int = 0


class OneHopResult(GraphModel):
    """1シード分のワンホップ近傍."""

    center: GraphNode
    references: list[ReferenceEntry] = Field(default_factory=list)
    cited_by: list[ReferenceEntry] = Field(default_factory=list)
    totals: SideCounts = Field(default_factory=SideCounts)
    shown: SideCounts = Field(default_factory=SideCounts)
    sort: SortMode = SortMode.RELEVANCE
    references_all_recids: list[str] = Field(default_factory=list)
    # 旧形式のキャッシュでは欠けている
    references_filtered_recids: list[str] | None = None
    cited_by_recids: list[str] = Field(default_factory=list)
    capacity: SideCounts = Field(default_factory=SideCounts)

    def covers(self, max_references: int, max_cited_by: int) -> bool:
        """要求件数をこの結果で満たせるかどうか."""
        return self.capacity.references >= max_references and self.capacity.cited_by >= max_cited_by

    def reference_pool(self) -> list[str]:
        """レビュー除外後の参考文献recid（空でもそのまま使う）."""
        if self.references_filtered_recids is None:
            return self.references_all_recids
        return self.references_filtered_recids

    def sliced(self, max_references: int, max_cited_by: int) -> "OneHopResult":
        """要求件数に切り詰めたコピー."""
        references = self.references[: max(0, max_references)]
        cited_by = self.cited_by[: max(0, max_cited_by)]
        return self.model_copy(
            update={
                "references": references,
                "cited_by": cited_by,
                "shown": SideCounts(references=len(references), cited_by=len(cited_by)),
                "cited_by_recids": [e.recid for e in cited_by if e.recid],
            }
        )

    @classmethod
    def placeholder(cls, seed_recid: str, sort: SortMode, inspire_url: str | None = None) -> "OneHopResult":
        """取得できなかったシード用の空結果."""
        return cls(
            center=GraphNode(recid=seed_recid, title=seed_recid, is_seed=True, inspire_url=inspire_url),
            sort=sort,
        )


class SeedEdge(GraphModel):
    """シード間の引用（sourceがtargetを参照）."""

    source: str
    target: str
    type: str = "seed-to-seed"


class SeedView(GraphModel):
    """統合結果における各シードの内訳."""

    references: list[str] = Field(default_factory=list)
    cited_by: list[str] = Field(default_factory=list)
    totals: SideCounts = Field(default_factory=SideCounts)
    shown: SideCounts = Field(default_factory=SideCounts)


class MultiSeedGraphResult(GraphModel):
    """複数シードを統合した引用グラフ."""

    seeds: list[GraphNode]
    seed_edges: list[SeedEdge] = Field(default_factory=list)
    references: list[ReferenceEntry] = Field(default_factory=list)
    cited_by: list[ReferenceEntry] = Field(default_factory=list)
    totals: SideCounts = Field(default_factory=SideCounts)
    shown: SideCounts = Field(default_factory=SideCounts)
    sort: SortMode = SortMode.RELEVANCE
    by_seed: dict[str, SeedView] = Field(default_factory=dict)


class MultiSeedCacheSummary(GraphModel):
    """キャッシュのみで統合した際の不足状況."""

    missing_seeds: list[str] = Field(default_factory=list)
    partial_seeds: list[str] = Field(default_factory=list)
    requested: SideCounts = Field(default_factory=SideCounts)


class CachedMultiSeedResult(GraphModel):
    """キャッシュのみで統合した結果."""

    result: MultiSeedGraphResult
    cache: MultiSeedCacheSummary
