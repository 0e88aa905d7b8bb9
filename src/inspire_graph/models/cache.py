"""キャッシュエントリのモデル."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# 永続キャッシュのスキーマバージョン
CACHE_VERSION = 1

# 永続（期限なし）を表すTTL
PERMANENT_TTL = -1.0

# 著者プロフィールのTTL（時間）
AUTHOR_PROFILE_TTL_HOURS = 2.0


class CacheNamespace(str, Enum):
    """キャッシュの名前空間."""

    REFS = "refs"
    CITED = "cited"
    AUTHOR = "author"
    AUTHOR_PROFILE = "author_profile"
    CROSSREF = "crossref"
    GRAPH = "graph"

    def default_ttl_hours(self, configured: float) -> float:
        """名前空間ごとのTTL.

        参考文献リストは変化しないため永続扱い.
        """
        if self is CacheNamespace.REFS:
            return PERMANENT_TTL
        if self is CacheNamespace.AUTHOR_PROFILE:
            return AUTHOR_PROFILE_TTL_HOURS
        return configured


class CacheEntry(BaseModel):
    """永続キャッシュの1レコード."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = CACHE_VERSION
    type: CacheNamespace
    key: str
    timestamp: float = Field(..., description="書き込み時刻（UNIX秒）")
    ttl_hours: float = Field(PERMANENT_TTL, alias="ttlHours")
    complete: bool = True
    data: Any
    total: int | None = None

    def age_hours(self, now: float) -> float:
        """経過時間（時間）."""
        return max(0.0, (now - self.timestamp) / 3600.0)

    def is_expired(self, now: float) -> bool:
        """TTL超過かどうか."""
        return self.ttl_hours > 0 and self.age_hours(now) > self.ttl_hours


class CacheHit(BaseModel):
    """キャッシュ参照結果."""

    data: Any
    age_hours: float
    total: int | None = None
    expired: bool = False
