"""エントリの並べ替え."""

import math
from collections.abc import Mapping, Sequence

from inspire_graph.models.graph import ReferenceEntry, SortMode

CITATION_WEIGHT = 0.62
RECENCY_WEIGHT = 0.38
LOCAL_BONUS = 0.03


def relevance_scores(entries: Sequence[ReferenceEntry]) -> list[float]:
    """関連度スコア.

    被引用数の対数正規化と出版年の線形正規化の加重和に,
    ローカルライブラリに存在する場合のボーナスを加える.
    """
    max_cites = max((e.citation_value for e in entries), default=0)
    max_log_cites = math.log1p(max(1, max_cites))

    years = [e.year_value for e in entries if math.isfinite(e.year_value)]
    min_year = min(years) if years else 0.0
    year_range = (max(years) - min_year) if years else 0.0

    scores: list[float] = []
    for entry in entries:
        norm_cites = math.log1p(max(0, entry.citation_value)) / max_log_cites
        year = entry.year_value
        norm_year = (year - min_year) / year_range if year_range > 0 and math.isfinite(year) else 0.0
        bonus = LOCAL_BONUS if entry.local_item_id is not None else 0.0
        scores.append(CITATION_WEIGHT * norm_cites + RECENCY_WEIGHT * norm_year + bonus)
    return scores


def _tie_breaker(entry: ReferenceEntry) -> str:
    return entry.recid or entry.label or entry.title


def sort_entries(
    entries: Sequence[ReferenceEntry],
    mode: SortMode | str = SortMode.MOST_CITED,
    connection_counts: Mapping[str, int] | None = None,
) -> list[ReferenceEntry]:
    """並べ替えた新しいリストを返す.

    Args:
        entries: 対象エントリ
        mode: 並び順
        connection_counts: 複数シード統合時の接続数（relevanceでのみ最優先で使う）

    Returns:
        全順序で並べ替えたリスト
    """
    mode = SortMode(mode)
    items = list(entries)

    if mode is SortMode.RELEVANCE:
        scores = relevance_scores(items)

        def connections(entry: ReferenceEntry) -> int:
            if connection_counts is None or not entry.recid:
                return 1
            return connection_counts.get(entry.recid, 1)

        order = sorted(
            range(len(items)),
            key=lambda i: (
                -connections(items[i]),
                -scores[i],
                -items[i].citation_value,
                -items[i].year_value,
                _tie_breaker(items[i]),
            ),
        )
        return [items[i] for i in order]

    if mode is SortMode.MOST_RECENT:
        return sorted(items, key=lambda e: (-e.year_value, -e.citation_value, _tie_breaker(e)))

    return sorted(items, key=lambda e: (-e.citation_value, -e.year_value, _tie_breaker(e)))


def merge_entry(merged: dict[str, ReferenceEntry], recid: str, entry: ReferenceEntry) -> None:
    """被引用数の大きい方を残し, ローカルアイテムIDは引き継ぐ."""
    existing = merged.get(recid)
    if existing is None:
        merged[recid] = entry.model_copy()
        return
    if entry.citation_value > existing.citation_value:
        better = entry.model_copy()
        if better.local_item_id is None:
            better.local_item_id = existing.local_item_id
        merged[recid] = better
    elif existing.local_item_id is None and entry.local_item_id is not None:
        existing.local_item_id = entry.local_item_id


def dedupe_entries(entries: Sequence[ReferenceEntry]) -> list[ReferenceEntry]:
    """recidで重複をまとめる（初出の位置を保つ, recidのないエントリはそのまま）."""
    merged: dict[str, ReferenceEntry] = {}
    slots: list[str | ReferenceEntry] = []
    for entry in entries:
        if not entry.recid:
            slots.append(entry)
            continue
        if entry.recid not in merged:
            slots.append(entry.recid)
        merge_entry(merged, entry.recid, entry)
    return [merged[slot] if isinstance(slot, str) else slot for slot in slots]
