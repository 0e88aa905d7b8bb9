"""サービスの組み立て."""

from dataclasses import dataclass

import httpx
import structlog

from inspire_graph.clients.crossref import CrossRefClient
from inspire_graph.clients.inspire import InspireClient
from inspire_graph.clients.rate_limiter import SlidingWindowRateLimiter
from inspire_graph.config import Settings
from inspire_graph.config import settings as global_settings
from inspire_graph.models.api import LiteratureMetadata
from inspire_graph.services.graph_service import OneHopGraphFetcher
from inspire_graph.services.local_library import InMemoryLocalLibrary, LocalLibrary, SqlLocalLibrary
from inspire_graph.services.memory_cache import MemoryCache
from inspire_graph.services.multi_seed_service import MultiSeedGraphMerger
from inspire_graph.services.persistent_cache import PersistentCache
from inspire_graph.services.references_service import ReferencesService, StaticEnrichmentSettings

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """プロセス共有のサービス一式."""

    settings: Settings
    limiter: SlidingWindowRateLimiter
    cache: PersistentCache
    inspire: InspireClient
    crossref: CrossRefClient
    references: ReferencesService
    local_library: LocalLibrary
    one_hop: OneHopGraphFetcher
    multi_seed: MultiSeedGraphMerger

    async def aclose(self) -> None:
        """保留中のキャッシュ書き込みを反映してクライアントを閉じる."""
        await self.cache.flush()
        await self.inspire.close()
        await self.crossref.close()
        if isinstance(self.local_library, SqlLocalLibrary):
            self.local_library.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    local_library: LocalLibrary | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """設定からサービスを組み立てる.

    Args:
        settings: 設定（省略時はグローバル設定）
        local_library: ローカルライブラリ（省略時は設定のDBパス, なければ空）
        transport: HTTPトランスポート（テスト用）
    """
    settings = settings or global_settings

    inspire_http = None
    crossref_http = None
    if transport is not None:
        inspire_http = httpx.AsyncClient(
            base_url=settings.inspire.api_base,
            headers={"Accept": "application/json"},
            timeout=settings.inspire.timeout,
            transport=transport,
        )
        crossref_http = httpx.AsyncClient(timeout=settings.crossref.timeout, transport=transport)

    if local_library is None:
        if settings.local_library.database_path:
            local_library = SqlLocalLibrary(settings.local_library)
        else:
            local_library = InMemoryLocalLibrary()

    limiter = SlidingWindowRateLimiter(settings.rate_limit)
    cache = PersistentCache(settings.cache)
    inspire = InspireClient(limiter, settings.inspire, http_client=inspire_http)
    crossref = CrossRefClient(settings.crossref, cache=cache, http_client=crossref_http)
    references = ReferencesService(
        inspire,
        StaticEnrichmentSettings(settings.enrichment),
        metadata_cache=MemoryCache[LiteratureMetadata](settings.enrichment.metadata_cache_size, name="metadata"),
        cache=cache,
    )
    one_hop = OneHopGraphFetcher(
        inspire,
        references,
        cache,
        local_library=local_library,
        config=settings.graph,
        inspire_config=settings.inspire,
    )
    multi_seed = MultiSeedGraphMerger(one_hop, inspire, settings.graph)

    logger.debug(
        "Services built",
        rate_limit=settings.rate_limit.max_requests,
        window_seconds=settings.rate_limit.window_seconds,
        cache_enabled=settings.cache.enabled,
    )
    return Services(
        settings=settings,
        limiter=limiter,
        cache=cache,
        inspire=inspire,
        crossref=crossref,
        references=references,
        local_library=local_library,
        one_hop=one_hop,
        multi_seed=multi_seed,
    )
