"""ローカルライブラリ（文献管理DB）との照合."""

import asyncio
from collections.abc import Iterable, Mapping
from typing import Protocol

import structlog
from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from inspire_graph.config import LocalLibraryConfig, settings

logger = structlog.get_logger(__name__)

# recidはarchiveLocationフィールドに保存されている
LOOKUP_SQL = text(
    "SELECT itemData.itemID AS item_id, itemDataValues.value AS value "
    "FROM itemData "
    "JOIN itemDataValues ON itemData.valueID = itemDataValues.valueID "
    "JOIN fields ON itemData.fieldID = fields.fieldID "
    "WHERE fields.fieldName = :field_name AND itemDataValues.value IN :values"
).bindparams(bindparam("values", expanding=True))


class LocalLibrary(Protocol):
    """recidからローカルのアイテムIDを引く."""

    async def lookup_many(self, recids: Iterable[str]) -> dict[str, int]:
        """一括照合（見つかったものだけを返す）."""
        ...

    async def lookup(self, recid: str) -> int | None:
        """単一照合."""
        ...


def _unique(recids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(r.strip() for r in recids if r and r.strip()))


class InMemoryLocalLibrary:
    """辞書によるローカルライブラリ."""

    def __init__(self, items: Mapping[str, int] | None = None) -> None:
        """初期化."""
        self.items = dict(items or {})

    async def lookup_many(self, recids: Iterable[str]) -> dict[str, int]:
        """一括照合."""
        return {recid: self.items[recid] for recid in _unique(recids) if recid in self.items}

    async def lookup(self, recid: str) -> int | None:
        """単一照合."""
        return self.items.get(recid.strip())


class SqlLocalLibrary:
    """SQLiteの文献管理DBを参照するローカルライブラリ.

    照合に失敗した場合は警告ログを残して「見つからない」として扱う.
    """

    def __init__(self, config: LocalLibraryConfig | None = None, engine: Engine | None = None) -> None:
        """初期化.

        Args:
            config: ローカルライブラリ設定
            engine: SQLAlchemyエンジン（省略時は設定のパスから生成）
        """
        self.config = config or settings.local_library
        if engine is None:
            url = self.config.url
            engine = create_engine(url) if url else None
        self.engine = engine

    def _query(self, recids: list[str]) -> dict[str, int]:
        found: dict[str, int] = {}
        if self.engine is None:
            return found
        chunk_size = max(1, self.config.chunk_size)
        with self.engine.connect() as conn:
            for start in range(0, len(recids), chunk_size):
                chunk = recids[start : start + chunk_size]
                rows = conn.execute(
                    LOOKUP_SQL, {"field_name": self.config.identifier_field, "values": chunk}
                )
                for row in rows:
                    item_id = int(row.item_id)
                    if item_id > 0:
                        found[str(row.value)] = item_id
        return found

    async def lookup_many(self, recids: Iterable[str]) -> dict[str, int]:
        """一括照合."""
        unique = _unique(recids)
        if not unique or self.engine is None:
            return {}
        try:
            return await asyncio.to_thread(self._query, unique)
        except SQLAlchemyError as e:
            logger.warning("Local library lookup failed", count=len(unique), error=str(e))
            return {}

    async def lookup(self, recid: str) -> int | None:
        """単一照合."""
        return (await self.lookup_many([recid])).get(recid.strip())

    def dispose(self) -> None:
        """接続プールを破棄."""
        if self.engine is not None:
            self.engine.dispose()
