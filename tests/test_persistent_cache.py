"""永続キャッシュのテスト."""

import asyncio
import gzip
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import FakeClock
from inspire_graph.config import CacheConfig
from inspire_graph.models.cache import CACHE_VERSION, CacheNamespace
from inspire_graph.services.persistent_cache import CACHE_DIR_NAME, PersistentCache


def write_raw(directory: Path, name: str, payload: dict[str, object], compressed: bool = False) -> Path:
    """キャッシュファイルを直接書き込む."""
    directory.mkdir(parents=True, exist_ok=True)
    data = json.dumps(payload).encode("utf-8")
    if compressed:
        path = directory / f"{name}.json.gz"
        path.write_bytes(gzip.compress(data))
    else:
        path = directory / f"{name}.json"
        path.write_bytes(data)
    return path


def valid_payload(**overrides: object) -> dict[str, object]:
    """正しい形式のエントリ."""
    payload: dict[str, object] = {
        "version": CACHE_VERSION,
        "type": "cited",
        "key": "1",
        "timestamp": 1_700_000_000.0,
        "ttlHours": 24.0,
        "complete": True,
        "data": [{"title": "A", "authors": []}],
        "total": 1,
    }
    payload.update(overrides)
    return payload


class TestKeys:
    """キー生成のテスト."""

    def test_physical_key(self) -> None:
        """名前空間_キー[_バリアント]."""
        assert PersistentCache.physical_key(CacheNamespace.CITED, "123") == "cited_123"
        assert (
            PersistentCache.physical_key(CacheNamespace.GRAPH, "123", "mostrecent_reviews")
            == "graph_123_mostrecentreviews"
        )

    def test_unsafe_characters_replaced(self) -> None:
        """ファイル名に使えない文字は置換される."""
        key = PersistentCache.physical_key(CacheNamespace.CROSSREF, "10.1000/xyz:1")
        assert "/" not in key
        assert ":" not in key
        assert key.startswith("crossref_10.1000_xyz")


class TestReadWrite:
    """読み書きのテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_roundtrip_through_disk(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """flush後は別インスタンスからも読める."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.CITED, "42", [{"title": "X"}], variant="citations_reviews", total=7)

        hit = await cache.get(CacheNamespace.CITED, "42", "citations_reviews")
        assert hit is not None
        assert hit.data == [{"title": "X"}]
        await cache.flush()

        fresh = PersistentCache(cache_config, clock=fake_clock)
        hit = await fresh.get(CacheNamespace.CITED, "42", "citations_reviews")
        assert hit is not None
        assert hit.total == 7
        assert hit.expired is False
        assert await fresh.get(CacheNamespace.CITED, "42", "other") is None

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_compressed_file_written(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """圧縮有効時は.json.gzで保存し, 非圧縮の古いファイルを消す."""
        directory = Path(cache_config.custom_dir or "")
        stale = write_raw(directory, "cited_5", valid_payload(key="5"))
        cache = PersistentCache(cache_config, clock=fake_clock)

        cache.set(CacheNamespace.CITED, "5", [{"title": "new"}])
        await cache.flush()

        assert (directory / "cited_5.json.gz").exists()
        assert not stale.exists()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_plain_file_when_compression_disabled(
        self, cache_config: CacheConfig, fake_clock: FakeClock
    ) -> None:
        """圧縮無効時は.jsonで保存."""
        config = cache_config.model_copy(update={"compression": False})
        cache = PersistentCache(config, clock=fake_clock)

        cache.set(CacheNamespace.AUTHOR, "a", {"name": "Doe"})
        await cache.flush()

        path = Path(config.custom_dir or "") / "author_a.json"
        assert path.exists()
        assert json.loads(path.read_text(encoding="utf-8"))["data"] == {"name": "Doe"}

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_debounced_writes_coalesce(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """同一キーへの連続書き込みは最後の値の1回にまとめられる."""
        cache = PersistentCache(cache_config, clock=fake_clock)

        with patch.object(cache, "_write_file", wraps=cache._write_file) as write:
            for i in range(5):
                cache.set(CacheNamespace.CITED, "9", [{"title": f"v{i}"}])
            await asyncio.sleep(cache_config.debounce_seconds * 10)
            await cache.flush()

        assert write.call_count == 1
        fresh = PersistentCache(cache_config, clock=fake_clock)
        hit = await fresh.get(CacheNamespace.CITED, "9")
        assert hit is not None
        assert hit.data == [{"title": "v4"}]

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_disabled_cache(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """無効時は読み書きしない."""
        config = cache_config.model_copy(update={"enabled": False})
        cache = PersistentCache(config, clock=fake_clock)

        cache.set(CacheNamespace.CITED, "1", [])
        assert await cache.get(CacheNamespace.CITED, "1") is None


class TestExpiry:
    """TTLのテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_expired_entry_is_miss(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """TTL超過はミス, ignore_ttlなら期限切れフラグ付きで返る."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.CITED, "1", [{"title": "A"}])

        fake_clock.advance(25 * 3600)

        assert await cache.get(CacheNamespace.CITED, "1") is None
        stale = await cache.get(CacheNamespace.CITED, "1", ignore_ttl=True)
        assert stale is not None
        assert stale.expired is True
        assert stale.age_hours == pytest.approx(25.0)
        assert await cache.get_age(CacheNamespace.CITED, "1") == pytest.approx(25.0)

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_reference_lists_are_permanent(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """参考文献リストは期限切れにならない."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.REFS, "1", [])

        fake_clock.advance(10_000 * 3600)

        hit = await cache.get(CacheNamespace.REFS, "1")
        assert hit is not None
        assert hit.expired is False

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_author_profile_short_ttl(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """著者プロフィールは2時間で期限切れ."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.AUTHOR_PROFILE, "doe", {"name": "Doe"})

        fake_clock.advance(3 * 3600)

        assert await cache.get(CacheNamespace.AUTHOR_PROFILE, "doe") is None


class TestInvalidFiles:
    """不正ファイルの扱い."""

    @pytest.mark.asyncio  # type: ignore[misc]
    @pytest.mark.parametrize(  # type: ignore[misc]
        "payload",
        [
            valid_payload(version=CACHE_VERSION + 1),
            valid_payload(complete=False),
            valid_payload(data=["not-an-object"]),
            valid_payload(data=[{"title": 5}]),
        ],
    )
    async def test_invalid_entry_deleted(
        self, cache_config: CacheConfig, fake_clock: FakeClock, payload: dict[str, object]
    ) -> None:
        """バージョン違い・不完全・形式不正のファイルはミス扱いで削除."""
        path = write_raw(Path(cache_config.custom_dir or ""), "cited_1", payload)
        cache = PersistentCache(cache_config, clock=fake_clock)

        assert await cache.get(CacheNamespace.CITED, "1") is None
        assert not path.exists()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_unreadable_gzip_deleted(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """解凍できないファイルは削除."""
        directory = Path(cache_config.custom_dir or "")
        directory.mkdir(parents=True)
        path = directory / "cited_1.json.gz"
        path.write_bytes(b"not gzip")
        cache = PersistentCache(cache_config, clock=fake_clock)

        assert await cache.get(CacheNamespace.CITED, "1") is None
        assert not path.exists()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_valid_file_read(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """外部で書かれた正しいファイルは読める."""
        write_raw(Path(cache_config.custom_dir or ""), "cited_1", valid_payload(), compressed=True)
        cache = PersistentCache(cache_config, clock=fake_clock)

        hit = await cache.get(CacheNamespace.CITED, "1")
        assert hit is not None
        assert hit.total == 1


class TestMaintenance:
    """メンテナンス操作のテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_purge_expired(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """期限切れファイルだけを削除."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.CITED, "1", [])
        cache.set(CacheNamespace.REFS, "1", [])
        await cache.flush()

        fake_clock.advance(48 * 3600)
        removed = await cache.purge_expired()

        assert removed == 1
        assert await cache.get(CacheNamespace.REFS, "1") is not None

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_clear_all_and_stats(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """統計と全削除."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.CITED, "1", [])
        cache.set(CacheNamespace.CITED, "2", [])
        await cache.flush()

        stats = await cache.stats()
        assert stats["file_count"] == 2
        assert stats["compressed_count"] == 2
        assert stats["pending_writes"] == 0
        assert stats["directory"] == str(Path(cache_config.custom_dir or ""))

        assert await cache.clear_all() == 2
        assert await cache.get(CacheNamespace.CITED, "1") is None
        assert (await cache.stats())["file_count"] == 0

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_delete(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """キー単位の削除."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        cache.set(CacheNamespace.GRAPH, "1", {}, variant="relevance_reviews")
        await cache.flush()

        await cache.delete(CacheNamespace.GRAPH, "1", "relevance_reviews")

        fresh = PersistentCache(cache_config, clock=fake_clock)
        assert await fresh.get(CacheNamespace.GRAPH, "1", "relevance_reviews") is None


class TestDirectory:
    """ディレクトリ決定のテスト."""

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_falls_back_to_default(self, tmp_path: Path, fake_clock: FakeClock) -> None:
        """指定ディレクトリが使えなければ既定の場所を使う."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        config = CacheConfig(custom_dir=str(blocker / "cache"), data_dir=str(tmp_path / "data"))
        cache = PersistentCache(config, clock=fake_clock)

        directory = await cache.get_directory()

        assert directory == tmp_path / "data" / CACHE_DIR_NAME
        assert directory.is_dir()

    @pytest.mark.asyncio  # type: ignore[misc]
    async def test_reinit_switches_directory(self, cache_config: CacheConfig, fake_clock: FakeClock) -> None:
        """再初期化で新しい設定のディレクトリに切り替わる."""
        cache = PersistentCache(cache_config, clock=fake_clock)
        assert await cache.get_directory() == Path(cache_config.custom_dir or "")

        cache.config = cache_config.model_copy(update={"custom_dir": None})
        directory = await cache.reinit()

        assert directory == Path(cache_config.data_dir) / CACHE_DIR_NAME
