"""pytest設定."""

from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import httpx
import pytest

from inspire_graph.config import CacheConfig, GraphConfig, RateLimitConfig, Settings
from inspire_graph.services.factory import Services, build_services


class FakeClock:
    """手動で進める時計."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        """初期化."""
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        """時刻を進める."""
        self.now += seconds


def literature(
    recid: str,
    title: str | None = None,
    *,
    citations: int | None = 0,
    year: int | None = 2020,
    authors: Iterable[str] = ("Doe, John",),
    document_type: Iterable[str] = ("article",),
    journal: str | None = None,
    arxiv: str | None = None,
    doi: str | None = None,
) -> dict[str, Any]:
    """INSPIREの文献メタデータ."""
    names = list(authors)
    metadata: dict[str, Any] = {
        "control_number": int(recid),
        "titles": [{"title": title if title is not None else f"Paper {recid} about physics"}],
        "authors": [{"full_name": name} for name in names],
        "author_count": len(names),
        "document_type": list(document_type),
    }
    if citations is not None:
        metadata["citation_count"] = citations
        metadata["citation_count_without_self_citations"] = citations
    if year is not None:
        metadata["earliest_date"] = f"{year}-01-15"
    if journal:
        metadata["publication_info"] = [{"journal_title": journal, "journal_volume": "12", "year": year}]
    if arxiv:
        metadata["arxiv_eprints"] = [{"value": arxiv, "categories": ["hep-ph"]}]
    if doi:
        metadata["dois"] = [{"value": doi}]
    return metadata


def reference(recid: str | None, title: str | None = None, **extra: Any) -> dict[str, Any]:
    """metadata.referencesの1要素."""
    item: dict[str, Any] = {"reference": {**extra}}
    if title is not None:
        item["reference"]["title"] = {"title": title}
    if recid is not None:
        item["record"] = {"$ref": f"https://inspirehep.net/api/literature/{recid}"}
    return item


def search_payload(hits: list[dict[str, Any]], total: int | None = None) -> dict[str, Any]:
    """検索レスポンス."""
    return {
        "hits": {
            "total": len(hits) if total is None else total,
            "hits": [{"id": str(m["control_number"]), "metadata": m} for m in hits],
        }
    }


class FakeInspire:
    """INSPIRE APIのインメモリ実装（httpx.MockTransport用）."""

    def __init__(self) -> None:
        """初期化."""
        self.records: dict[str, dict[str, Any]] = {}
        self.references: dict[str, list[dict[str, Any]]] = {}
        self.citations: dict[str, list[str]] = {}
        self.requests: list[httpx.Request] = []
        self.failing: set[str] = set()

    def add(self, recid: str, title: str | None = None, **kwargs: Any) -> dict[str, Any]:
        """論文を登録."""
        self.records[recid] = literature(recid, title, **kwargs)
        return self.records[recid]

    def cite(self, citing: str, cited: str, title: str | None = None) -> None:
        """citingがcitedを参照する関係を登録（参考文献側は最小限の情報のみ）."""
        self.references.setdefault(citing, []).append(reference(cited, title))
        self.citations.setdefault(cited, []).append(citing)

    def count(self, kind: str) -> int:
        """種別ごとのリクエスト数."""
        return sum(1 for request in self.requests if self.kind(request) == kind)

    @staticmethod
    def kind(request: httpx.Request) -> str:
        """リクエストの種別."""
        params = request.url.params
        if request.url.path.rstrip("/").endswith("/literature"):
            query = params.get("q", "")
            if query.startswith("refersto:"):
                return "union" if " OR " in query else "cited_by"
            return "batch"
        if params.get("fields") == "metadata.references":
            return "references"
        return "record"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind(request)
        if kind in self.failing:
            return httpx.Response(500, json={"message": "boom"})

        params = request.url.params
        if kind in ("record", "references"):
            recid = request.url.path.rstrip("/").rsplit("/", 1)[-1]
            if recid not in self.records:
                return httpx.Response(404, json={"message": "not found"})
            if kind == "references":
                return httpx.Response(200, json={"metadata": {"references": self.references.get(recid, [])}})
            return httpx.Response(200, json={"id": recid, "metadata": self.records[recid]})

        query = params.get("q", "")
        if kind == "cited_by":
            recid = query.rsplit(":", 1)[-1]
            citing = [self.records[r] for r in self.citations.get(recid, []) if r in self.records]
            size = int(params.get("size", "10"))
            page = int(params.get("page", "1"))
            return httpx.Response(200, json=search_payload(citing[(page - 1) * size : page * size], len(citing)))
        if kind == "union":
            seeds = [part.rsplit(":", 1)[-1] for part in query.split(" OR ")]
            citing_union = {r for seed in seeds for r in self.citations.get(seed, [])}
            return httpx.Response(200, json=search_payload([], len(citing_union)))

        recids = [part.split(":", 1)[1] for part in query.split(" OR ")]
        hits = [self.records[r] for r in recids if r in self.records]
        return httpx.Response(200, json=search_payload(hits))


@pytest.fixture
def fake_clock() -> FakeClock:
    """テスト用時計."""
    return FakeClock()


@pytest.fixture
def cache_config(tmp_path: Path) -> CacheConfig:
    """一時ディレクトリを使うキャッシュ設定."""
    return CacheConfig(
        custom_dir=str(tmp_path / "cache"),
        data_dir=str(tmp_path / "data"),
        debounce_seconds=0.01,
    )


@pytest.fixture
def test_settings(cache_config: CacheConfig) -> Settings:
    """テスト用設定."""
    return Settings(
        cache=cache_config,
        rate_limit=RateLimitConfig(max_requests=1000, window_seconds=1.0),
        graph=GraphConfig(default_max_per_side=25, cache_ceiling=200),
    )


@pytest.fixture
def fake_inspire() -> FakeInspire:
    """INSPIRE APIのフェイク."""
    return FakeInspire()


@pytest.fixture
def make_services(
    test_settings: Settings, fake_inspire: FakeInspire
) -> Callable[..., Services]:
    """フェイクAPIに接続したサービス一式を作る."""

    def factory(**kwargs: Any) -> Services:
        return build_services(test_settings, transport=httpx.MockTransport(fake_inspire), **kwargs)

    return factory
