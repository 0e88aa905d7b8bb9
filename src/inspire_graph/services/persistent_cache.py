"""永続キャッシュサービス.

名前空間・キー・バリアントごとに1つのJSONファイル（gzip圧縮可）として
保存する. 書き込みはキーごとにデバウンスされ, 同一キーへの連続した
書き込みは最後の値の1回の書き込みにまとめられる. キャッシュは最適化に
すぎないため, I/Oエラーはログに記録して握りつぶす.
"""

import asyncio
import gzip
import json
import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from inspire_graph.config import CacheConfig, settings
from inspire_graph.exceptions import CacheCorruption, SchemaMismatch
from inspire_graph.models.cache import CACHE_VERSION, CacheEntry, CacheHit, CacheNamespace
from inspire_graph.services.memory_cache import MemoryCache

logger = structlog.get_logger(__name__)

CACHE_DIR_NAME = "inspire-graph-cache"
JSON_EXT = ".json"
COMPRESSED_EXT = ".json.gz"
WRITE_TEST_FILE = ".inspire-graph-write-test"

# 整合性チェックで検査するエントリ数
INTEGRITY_SAMPLE_SIZE = 3

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


@dataclass
class _PendingWrite:
    entry: CacheEntry
    task: asyncio.Task[None] | None


def _check_integrity(data: Any) -> None:
    """先頭エントリの形式を検査.

    Raises:
        CacheCorruption: 形式が不正な場合
    """
    if data is None:
        raise CacheCorruption("Cache entry has no data")
    if isinstance(data, list):
        for item in data[:INTEGRITY_SAMPLE_SIZE]:
            if not isinstance(item, dict):
                raise CacheCorruption("Cache list entry is not an object")
            if "title" in item and item["title"] is not None and not isinstance(item["title"], str):
                raise CacheCorruption("Cache list entry has invalid title")
            if "authors" in item and not isinstance(item["authors"], list):
                raise CacheCorruption("Cache list entry has invalid authors")


class PersistentCache:
    """バージョン付き・TTL付きのJSONファイルキャッシュ."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """初期化.

        Args:
            config: キャッシュ設定（省略時はグローバル設定）
            clock: 現在時刻（UNIX秒）を返す関数
        """
        self.config = config or settings.cache
        self._clock = clock
        self._directory: Path | None = None
        self._resolved = False
        self._memory: MemoryCache[CacheEntry] = MemoryCache(self.config.memory_size, name="persistent")
        self._pending: dict[str, _PendingWrite] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        """有効かどうか."""
        return self.config.enabled

    # ------------------------------------------------------------------
    # ディレクトリ
    # ------------------------------------------------------------------

    def _default_directory(self) -> Path:
        return Path(self.config.data_dir).expanduser() / CACHE_DIR_NAME

    @staticmethod
    def _probe(directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / WRITE_TEST_FILE
        probe.write_text("test", encoding="utf-8")
        probe.unlink()

    def _resolve_directory(self) -> Path | None:
        """キャッシュディレクトリの決定.

        指定ディレクトリが書き込めない場合は既定の場所を使う.
        どちらも使えなければNone.
        """
        if self._resolved:
            return self._directory

        candidates: list[Path] = []
        if self.config.custom_dir and self.config.custom_dir.strip():
            candidates.append(Path(self.config.custom_dir.strip()).expanduser())
        candidates.append(self._default_directory())

        self._directory = None
        for candidate in candidates:
            try:
                self._probe(candidate)
            except OSError as e:
                logger.warning("Cache directory not writable", directory=str(candidate), error=str(e))
                continue
            self._directory = candidate
            break

        if self._directory is None:
            logger.error("No usable cache directory, persistent cache disabled")
        else:
            logger.debug("Cache directory resolved", directory=str(self._directory))
        self._resolved = True
        return self._directory

    async def get_directory(self) -> Path | None:
        """使用中のキャッシュディレクトリ."""
        return await asyncio.to_thread(self._resolve_directory)

    async def reinit(self) -> Path | None:
        """保留中の書き込みを反映してディレクトリを再決定."""
        await self.flush()
        self._resolved = False
        self._memory.clear()
        return await self.get_directory()

    # ------------------------------------------------------------------
    # キー
    # ------------------------------------------------------------------

    @staticmethod
    def physical_key(namespace: CacheNamespace, key: str, variant: str | None = None) -> str:
        """ファイル名の基部（拡張子なし）."""
        name = f"{namespace.value}_{_UNSAFE_KEY_CHARS.sub('_', key)}"
        if variant:
            name += f"_{_NON_ALNUM.sub('', variant)}"
        return name

    def _paths(self, directory: Path, physical: str) -> tuple[Path, Path]:
        """（圧縮ファイル, 非圧縮ファイル）のパス."""
        return directory / f"{physical}{COMPRESSED_EXT}", directory / f"{physical}{JSON_EXT}"

    # ------------------------------------------------------------------
    # 読み込み
    # ------------------------------------------------------------------

    def _delete_quietly(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete cache file", path=str(path), error=str(e))

    def _parse_file(self, path: Path) -> CacheEntry:
        """ファイルを読み込んで検証.

        Raises:
            CacheCorruption: 読み取り不能・不完全・形式不正の場合
            SchemaMismatch: バージョンが異なる場合
        """
        try:
            raw_bytes = path.read_bytes()
            if path.name.endswith(COMPRESSED_EXT):
                raw_bytes = gzip.decompress(raw_bytes)
            raw = json.loads(raw_bytes.decode("utf-8"))
        except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruption(f"Unreadable cache file: {e}") from e

        if not isinstance(raw, dict):
            raise CacheCorruption("Cache file is not an object")
        if raw.get("version") != CACHE_VERSION:
            raise SchemaMismatch(f"Cache version {raw.get('version')} != {CACHE_VERSION}")
        if raw.get("complete") is not True:
            raise CacheCorruption("Cache entry is incomplete")

        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as e:
            raise CacheCorruption(f"Invalid cache entry: {e.error_count()} errors") from e
        _check_integrity(entry.data)
        return entry

    def _read_entry(self, physical: str) -> CacheEntry | None:
        """ディスクから読み込み（圧縮ファイルを優先）."""
        directory = self._resolve_directory()
        if directory is None:
            return None

        for path in self._paths(directory, physical):
            if not path.exists():
                continue
            try:
                return self._parse_file(path)
            except SchemaMismatch as e:
                logger.debug("Cache schema mismatch, discarding", path=str(path), error=str(e))
                self._delete_quietly(path)
            except CacheCorruption as e:
                logger.warning("Corrupted cache file removed", path=str(path), error=str(e))
                self._delete_quietly(path)
        return None

    def _to_hit(self, entry: CacheEntry, ignore_ttl: bool) -> CacheHit | None:
        now = self._clock()
        expired = entry.is_expired(now)
        if expired and not ignore_ttl:
            return None
        return CacheHit(data=entry.data, age_hours=entry.age_hours(now), total=entry.total, expired=expired)

    async def get(
        self,
        namespace: CacheNamespace,
        key: str,
        variant: str | None = None,
        *,
        ignore_ttl: bool = False,
    ) -> CacheHit | None:
        """キャッシュ参照.

        Args:
            namespace: 名前空間
            key: キー
            variant: バリアント（ソート順など）
            ignore_ttl: 期限切れでも返すかどうか（expired=Trueで返る）

        Returns:
            ヒットした場合はCacheHit, ミスならNone
        """
        if not self.enabled:
            return None

        physical = self.physical_key(namespace, key, variant)
        pending = self._pending.get(physical)
        entry = pending.entry if pending is not None else self._memory.get(physical)

        if entry is None:
            try:
                entry = await asyncio.to_thread(self._read_entry, physical)
            except OSError as e:
                logger.warning("Cache read failed", key=physical, error=str(e))
                entry = None
            if entry is None:
                return None
            self._memory.set(physical, entry)

        return self._to_hit(entry, ignore_ttl)

    async def get_age(
        self, namespace: CacheNamespace, key: str, variant: str | None = None
    ) -> float | None:
        """エントリの経過時間（時間）. 存在しなければNone."""
        hit = await self.get(namespace, key, variant, ignore_ttl=True)
        return hit.age_hours if hit is not None else None

    # ------------------------------------------------------------------
    # 書き込み
    # ------------------------------------------------------------------

    def set(
        self,
        namespace: CacheNamespace,
        key: str,
        data: Any,
        variant: str | None = None,
        total: int | None = None,
    ) -> None:
        """キャッシュ書き込み（デバウンス付き）.

        同じキーへの保留中の書き込みは取り消され, 新しい値で再スケジュールされる.
        """
        if not self.enabled:
            return

        physical = self.physical_key(namespace, key, variant)
        entry = CacheEntry(
            type=namespace,
            key=key,
            timestamp=self._clock(),
            ttl_hours=namespace.default_ttl_hours(self.config.ttl_hours),
            complete=True,
            data=data,
            total=total,
        )
        self._memory.set(physical, entry)

        previous = self._pending.pop(physical, None)
        if previous is not None and previous.task is not None:
            previous.task.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # イベントループ外では即時書き込み
            self._write_quietly(physical, entry)
            return

        task = loop.create_task(self._delayed_write(physical))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._pending[physical] = _PendingWrite(entry=entry, task=task)

    async def _delayed_write(self, physical: str) -> None:
        await asyncio.sleep(self.config.debounce_seconds)
        pending = self._pending.pop(physical, None)
        if pending is not None:
            await asyncio.to_thread(self._write_quietly, physical, pending.entry)

    def _write_quietly(self, physical: str, entry: CacheEntry) -> None:
        try:
            self._write_file(physical, entry)
        except OSError as e:
            logger.warning("Cache write failed", key=physical, error=str(e))

    def _write_file(self, physical: str, entry: CacheEntry) -> None:
        """1エントリをディスクへ書き込み, 別形式の古いファイルを削除."""
        directory = self._resolve_directory()
        if directory is None:
            return

        compressed_path, plain_path = self._paths(directory, physical)
        payload = entry.model_dump_json(by_alias=True).encode("utf-8")
        if self.config.compression:
            target, stale = compressed_path, plain_path
            payload = gzip.compress(payload)
        else:
            target, stale = plain_path, compressed_path

        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, target)
        self._delete_quietly(stale)

    async def flush(self) -> None:
        """保留中の書き込みをすべて即時実行して完了を待つ."""
        pending = list(self._pending.items())
        self._pending.clear()
        for _, item in pending:
            if item.task is not None:
                item.task.cancel()

        in_flight = [task for task in self._tasks if not task.done() and not task.cancelled()]
        in_flight = [task for task in in_flight if all(task is not item.task for _, item in pending)]

        writes = [asyncio.to_thread(self._write_quietly, physical, item.entry) for physical, item in pending]
        await asyncio.gather(*writes, *in_flight, return_exceptions=True)
        if pending:
            logger.debug("Flushed pending cache writes", count=len(pending))

    # ------------------------------------------------------------------
    # メンテナンス
    # ------------------------------------------------------------------

    def _cache_files(self, directory: Path) -> list[Path]:
        return [
            path
            for path in directory.iterdir()
            if path.is_file() and (path.name.endswith(JSON_EXT) or path.name.endswith(COMPRESSED_EXT))
        ]

    async def delete(self, namespace: CacheNamespace, key: str, variant: str | None = None) -> None:
        """エントリ削除."""
        physical = self.physical_key(namespace, key, variant)
        pending = self._pending.pop(physical, None)
        if pending is not None and pending.task is not None:
            pending.task.cancel()
        self._memory.delete(physical)

        def remove() -> None:
            directory = self._resolve_directory()
            if directory is None:
                return
            for path in self._paths(directory, physical):
                self._delete_quietly(path)

        await asyncio.to_thread(remove)

    async def purge_expired(self) -> int:
        """期限切れ・破損ファイルの削除.

        Returns:
            削除したファイル数
        """
        now = self._clock()

        def purge() -> int:
            directory = self._resolve_directory()
            if directory is None:
                return 0
            removed = 0
            for path in self._cache_files(directory):
                try:
                    entry = self._parse_file(path)
                except (CacheCorruption, SchemaMismatch) as e:
                    logger.info("Removing invalid cache file", path=str(path), error=str(e))
                    self._delete_quietly(path)
                    removed += 1
                    continue
                if entry.is_expired(now):
                    self._delete_quietly(path)
                    removed += 1
            return removed

        try:
            removed = await asyncio.to_thread(purge)
        except OSError as e:
            logger.warning("Cache purge failed", error=str(e))
            return 0
        self._memory.clear()
        logger.info("Purged expired cache entries", removed=removed)
        return removed

    async def clear_all(self) -> int:
        """全エントリ削除.

        Returns:
            削除したファイル数
        """
        for item in self._pending.values():
            if item.task is not None:
                item.task.cancel()
        self._pending.clear()
        self._memory.clear()

        def clear() -> int:
            directory = self._resolve_directory()
            if directory is None:
                return 0
            files = self._cache_files(directory)
            for path in files:
                self._delete_quietly(path)
            return len(files)

        try:
            removed = await asyncio.to_thread(clear)
        except OSError as e:
            logger.warning("Cache clear failed", error=str(e))
            return 0
        logger.info("Cleared cache", removed=removed)
        return removed

    async def stats(self) -> dict[str, Any]:
        """キャッシュ統計."""

        def collect() -> dict[str, Any]:
            directory = self._resolve_directory()
            result: dict[str, Any] = {
                "directory": str(directory) if directory else None,
                "file_count": 0,
                "total_size": 0,
                "compressed_count": 0,
                "compressed_size": 0,
            }
            if directory is None:
                return result
            for path in self._cache_files(directory):
                size = path.stat().st_size
                result["file_count"] += 1
                result["total_size"] += size
                if path.name.endswith(COMPRESSED_EXT):
                    result["compressed_count"] += 1
                    result["compressed_size"] += size
            return result

        try:
            result = await asyncio.to_thread(collect)
        except OSError as e:
            logger.warning("Cache stats failed", error=str(e))
            result = {"directory": None, "file_count": 0, "total_size": 0, "compressed_count": 0, "compressed_size": 0}
        result["pending_writes"] = len(self._pending)
        result["memory"] = self._memory.stats()
        return result
