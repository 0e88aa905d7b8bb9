"""インメモリLRUキャッシュ."""

from collections.abc import Hashable
from typing import Any, Generic, TypeVar

from cachetools import LRUCache

from inspire_graph.utils.metrics import MetricsCollector

V = TypeVar("V")


class MemoryCache(Generic[V]):
    """ヒット率を記録するLRUキャッシュ."""

    def __init__(self, maxsize: int, name: str = "memory") -> None:
        """初期化.

        Args:
            maxsize: 最大エントリ数
            name: メトリクス用のティア名
        """
        self.name = name
        self._cache: LRUCache[Hashable, V] = LRUCache(maxsize=maxsize)
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> V | None:
        """取得（最近使用として記録）."""
        value = self._cache.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        MetricsCollector.track_cache_lookup(self.name, value is not None)
        return value

    def set(self, key: Hashable, value: V) -> None:
        """格納."""
        self._cache[key] = value

    def delete(self, key: Hashable) -> None:
        """削除."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """全削除."""
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        """統計情報."""
        lookups = self.hits + self.misses
        return {
            "size": len(self._cache),
            "maxsize": self._cache.maxsize,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
