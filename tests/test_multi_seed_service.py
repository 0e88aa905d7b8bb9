"""複数シード統合のテスト."""

from collections.abc import Callable
from unittest.mock import patch

import pytest

from conftest import FakeInspire
from inspire_graph.exceptions import NetworkError, NoSeedsError
from inspire_graph.models.graph import GraphNode, OneHopResult, ReferenceEntry, SideCounts, SortMode
from inspire_graph.services.factory import Services
from inspire_graph.services.multi_seed_service import detect_seed_edges, normalize_seeds


def build_two_seeds(fake: FakeInspire) -> None:
    """シード100と200を登録.

    100 -> 1, 2, 200 / 200 -> 2, 3
    301 -> 100, 200 / 302 -> 100
    """
    fake.add("100", citations=10, year=2015)
    fake.add("200", citations=10, year=2016)
    fake.add("1", citations=1000, year=2024)
    fake.add("2", citations=1, year=1990)
    fake.add("3", citations=5, year=2000)
    fake.add("301", citations=3, year=2022)
    fake.add("302", citations=300, year=2023)
    fake.cite("100", "1", "First reference with a long title")
    fake.cite("100", "2", "Shared reference with a long title")
    fake.cite("100", "200", "The second seed paper itself")
    fake.cite("200", "2", "Shared reference with a long title")
    fake.cite("200", "3", "Third reference with a long title")
    fake.cite("301", "100")
    fake.cite("301", "200")
    fake.cite("302", "100")


def recids(entries: list[ReferenceEntry]) -> list[str | None]:
    """recidの並び."""
    return [e.recid for e in entries]


def test_normalize_seeds() -> None:
    """空白除去・空要素除去・重複除去."""
    assert normalize_seeds([" 100 ", "", "200", "100", "  "]) == ["100", "200"]


def test_detect_seed_edges_uses_unfiltered_references() -> None:
    """レビュー除外で落ちた参照もシード間エッジとして検出する."""
    a = OneHopResult(
        center=GraphNode(recid="A", title="A", is_seed=True),
        references_all_recids=["B", "x"],
        references_filtered_recids=["x"],
    )
    b = OneHopResult(center=GraphNode(recid="B", title="B", is_seed=True), references_all_recids=["y"])

    edges = detect_seed_edges([a, b])

    assert [(e.source, e.target, e.type) for e in edges] == [("A", "B", "seed-to-seed")]


class TestFetchMultiSeed:
    """統合取得のテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_merge(self, make_services: Callable[..., Services], fake_inspire: FakeInspire) -> None:
        """重複除去・接続数・シード間エッジ・総数."""
        build_two_seeds(fake_inspire)
        services = make_services()

        result = await services.multi_seed.fetch_multi_seed(["100", " 200", "100"], sort="relevance")
        await services.aclose()

        assert [s.recid for s in result.seeds] == ["100", "200"]
        assert [(e.source, e.target) for e in result.seed_edges] == [("100", "200")]

        # 共有された参考文献は接続数2で先頭
        assert result.references[0].recid == "2"
        assert result.references[0].connection_count == 2
        assert sorted(recids(result.references)) == ["1", "2", "3"]
        assert all(e.connection_count == 1 for e in result.references[1:])

        assert result.cited_by[0].recid == "301"
        assert result.cited_by[0].connection_count == 2
        assert sorted(recids(result.cited_by)) == ["301", "302"]

        # シードは一覧に含めない
        assert "100" not in recids(result.cited_by)
        assert "200" not in recids(result.references)

        # 被引用の総数: {301, 302, 100} からシード間で引用しているシード1件を除く
        assert result.totals == SideCounts(references=3, cited_by=2)
        assert result.shown == SideCounts(references=3, cited_by=2)

        assert result.by_seed["100"].references == ["1", "2"]
        assert sorted(result.by_seed["200"].references) == ["2", "3"]
        assert result.by_seed["200"].cited_by == ["301"]
        assert result.by_seed["200"].totals.cited_by == 2
        assert fake_inspire.count("union") == 1

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_truncated_to_limits(
        self, make_services: Callable[..., Services], fake_inspire: FakeInspire
    ) -> None:
        """統合後に全体として切り詰め, シード別の内訳も合わせる."""
        build_two_seeds(fake_inspire)
        services = make_services()

        result = await services.multi_seed.fetch_multi_seed(
            ["100", "200"], sort="relevance", max_references=1, max_cited_by=1
        )
        await services.aclose()

        assert result.shown == SideCounts(references=1, cited_by=1)
        assert result.by_seed["100"].references == [result.references[0].recid]
        assert result.by_seed["100"].shown.references == 1

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_union_failure_falls_back_to_sum(
        self, make_services: Callable[..., Services], fake_inspire: FakeInspire
    ) -> None:
        """重複なし総数が取れなければシードごとの総数の和を使う."""
        build_two_seeds(fake_inspire)
        fake_inspire.failing.add("union")
        services = make_services()

        result = await services.multi_seed.fetch_multi_seed(["100", "200"])
        await services.aclose()

        # (2 + 2) - 1
        assert result.totals.cited_by == 3

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_duplicate_keeps_higher_citations_and_local_id(
        self, make_services: Callable[..., Services]
    ) -> None:
        """重複は被引用数の大きい方を残し, ローカルアイテムIDを引き継ぐ."""
        services = make_services()
        a = OneHopResult(
            center=GraphNode(recid="A", title="A", is_seed=True),
            references=[ReferenceEntry(recid="x", title="old", citation_count=1, local_item_id=9)],
            references_all_recids=["x"],
        )
        b = OneHopResult(
            center=GraphNode(recid="B", title="B", is_seed=True),
            references=[ReferenceEntry(recid="x", title="new", citation_count=5)],
            references_all_recids=["x"],
        )

        merged = services.multi_seed._merge([a, b], ["A", "B"], SortMode.MOST_CITED, 10, 10, union_total=None)
        await services.aclose()

        assert len(merged.references) == 1
        assert merged.references[0].title == "new"
        assert merged.references[0].local_item_id == 9
        assert merged.references[0].connection_count == 2

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_no_seeds(self, make_services: Callable[..., Services]) -> None:
        """有効なシードがなければNoSeedsError."""
        services = make_services()

        with pytest.raises(NoSeedsError):
            await services.multi_seed.fetch_multi_seed([" ", ""])
        await services.aclose()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_failing_seed_becomes_placeholder(
        self, make_services: Callable[..., Services], fake_inspire: FakeInspire
    ) -> None:
        """1シードの失敗は全体を止めない."""
        build_two_seeds(fake_inspire)
        services = make_services()
        original = services.one_hop.fetch_one_hop

        async def flaky(recid: str, **kwargs: object) -> OneHopResult:
            if recid == "200":
                raise NetworkError("boom")
            return await original(recid, **kwargs)  # type: ignore[arg-type]

        with patch.object(services.one_hop, "fetch_one_hop", side_effect=flaky):
            result = await services.multi_seed.fetch_multi_seed(["100", "200"], sort="mostcited")
        await services.aclose()

        assert [s.recid for s in result.seeds] == ["100", "200"]
        assert result.seeds[1].title == "200"
        assert result.by_seed["200"].references == []
        assert recids(result.references) == ["1", "2"]

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_reviews_only_seed_adds_no_references(
        self, make_services: Callable[..., Services], fake_inspire: FakeInspire
    ) -> None:
        """参考文献がすべてレビューのシードは総数・接続数に寄与しない."""
        fake_inspire.add("100", citations=1)
        fake_inspire.add("200", citations=1)
        fake_inspire.add("1", citations=5)
        fake_inspire.add("7", citations=500, document_type=("review",))
        fake_inspire.add("8", citations=800, document_type=("review",))
        fake_inspire.cite("100", "7", "A long review of flavour physics")
        fake_inspire.cite("100", "8", "Another long review of the field")
        fake_inspire.cite("200", "1", "Ordinary reference with a long title")
        services = make_services()

        result = await services.multi_seed.fetch_multi_seed(["100", "200"])
        await services.aclose()

        assert recids(result.references) == ["1"]
        assert result.totals.references == 1
        assert result.references[0].connection_count == 1

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_legacy_result_without_filtered_recids(
        self, make_services: Callable[..., Services]
    ) -> None:
        """除外後のrecid一覧を持たない旧形式の結果は全参考文献を使う."""
        services = make_services()
        legacy = OneHopResult.model_validate(
            {"center": {"recid": "A", "title": "A", "isSeed": True}, "referencesAllRecids": ["x", "y"]}
        )
        filtered_empty = OneHopResult(
            center=GraphNode(recid="B", title="B", is_seed=True),
            references_all_recids=["z"],
            references_filtered_recids=[],
        )

        merged = services.multi_seed._merge(
            [legacy, filtered_empty], ["A", "B"], SortMode.MOST_CITED, 10, 10, union_total=None
        )
        await services.aclose()

        assert legacy.references_filtered_recids is None
        assert merged.totals.references == 2


class TestCachedMultiSeed:
    """キャッシュのみの統合のテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_nothing_cached(self, make_services: Callable[..., Services]) -> None:
        """どのシードもキャッシュになければNone."""
        services = make_services()

        assert await services.multi_seed.fetch_multi_seed_cached(["100", "200"]) is None
        assert await services.multi_seed.fetch_multi_seed_cached([]) is None
        await services.aclose()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_missing_and_partial_seeds(
        self, make_services: Callable[..., Services], fake_inspire: FakeInspire
    ) -> None:
        """キャッシュのないシードと件数の足りないシードを報告する."""
        build_two_seeds(fake_inspire)
        services = make_services()
        await services.multi_seed.fetch_multi_seed(["100", "200"], sort="mostcited", max_references=1)
        requests = len(fake_inspire.requests)

        cached = await services.multi_seed.fetch_multi_seed_cached(
            ["100", "200", "999"], sort="mostcited", max_references=5
        )
        await services.aclose()

        assert cached is not None
        assert len(fake_inspire.requests) == requests
        assert cached.cache.missing_seeds == ["999"]
        assert cached.cache.partial_seeds == ["100", "200"]
        assert cached.cache.requested.references == 5
        assert [s.recid for s in cached.result.seeds] == ["100", "200", "999"]
