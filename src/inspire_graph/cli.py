"""inspire-graph CLI."""

import asyncio
import json
import sys
import warnings
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from inspire_graph.config import settings
from inspire_graph.config.environment import load_environment_settings
from inspire_graph.exceptions import InspireGraphException
from inspire_graph.models.graph import SortMode
from inspire_graph.services.factory import Services, build_services
from inspire_graph.services.graph_export import graph_summary, one_hop_to_networkx, to_networkx
from inspire_graph.utils import get_app_info, setup_logging
from inspire_graph.utils.metrics import MetricsCollector

T = TypeVar("T")

SORT_CHOICE = click.Choice([mode.value for mode in SortMode])


def _run(action: Callable[[Services], Awaitable[T]]) -> T:
    """サービスを組み立てて非同期処理を実行し, 終了時に後始末する."""

    async def runner() -> T:
        services = build_services()
        try:
            return await action(services)
        finally:
            await services.aclose()

    try:
        return asyncio.run(runner())
    except InspireGraphException as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2))


@click.group()
def main() -> None:
    """INSPIRE-HEP引用グラフCLI."""
    setup_logging()


@main.command()
def info() -> None:
    """アプリケーション情報表示."""
    for key, value in get_app_info().items():
        click.echo(f"{key}: {value}")


@main.command()
def version() -> None:
    """バージョン表示."""
    click.echo(f"inspire-graph v{settings.version}")


@main.command()
def validate() -> None:
    """設定検証（INSPIRE_GRAPH_ENVの環境設定を読み込む）."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            env_settings = load_environment_settings()
        except InspireGraphException as e:
            click.echo(f"❌ Configuration error: {e}")
            sys.exit(1)

    click.echo(f"✅ Configuration is valid ({env_settings.environment.value})")
    if caught:
        click.echo("\n⚠️  Warnings:")
        for warning in caught:
            click.echo(f"  - {warning.message}")


@main.command("one-hop")
@click.argument("recid")
@click.option("--sort", type=SORT_CHOICE, default=settings.graph.default_sort, show_default=True)
@click.option("--max-references", type=int, default=None, help="Max references to show")
@click.option("--max-cited-by", type=int, default=None, help="Max citing papers to show")
@click.option("--include-reviews", is_flag=True, help="Keep review articles")
@click.option("--force-refresh", is_flag=True, help="Ignore cached graph")
@click.option("--seed-title", default=None, help="Title override for the seed")
@click.option("--cached-only", is_flag=True, help="Never touch the network")
@click.option("--summary", is_flag=True, help="Print graph statistics instead of the full result")
def one_hop(
    recid: str,
    sort: str,
    max_references: int | None,
    max_cited_by: int | None,
    include_reviews: bool,
    force_refresh: bool,
    seed_title: str | None,
    cached_only: bool,
    summary: bool,
) -> None:
    """1論文の参考文献・被引用を取得."""

    async def action(services: Services) -> Any:
        if cached_only:
            return await services.one_hop.get_cached_one_hop(
                recid,
                sort=sort,
                max_references=max_references,
                max_cited_by=max_cited_by,
                include_reviews=include_reviews,
                seed_title=seed_title,
            )
        return await services.one_hop.fetch_one_hop(
            recid,
            sort=sort,
            max_references=max_references,
            max_cited_by=max_cited_by,
            include_reviews=include_reviews,
            force_refresh=force_refresh,
            seed_title=seed_title,
        )

    result = _run(action)
    if result is None:
        click.echo(f"❌ No cached graph for {recid}", err=True)
        sys.exit(1)
    if summary:
        _echo_json(graph_summary(one_hop_to_networkx(result)))
    else:
        _echo_json(result.model_dump(mode="json", by_alias=True))


@main.command()
@click.argument("seeds", nargs=-1, required=True)
@click.option("--sort", type=SORT_CHOICE, default=settings.graph.default_sort, show_default=True)
@click.option("--max-references", type=int, default=None, help="Max merged references")
@click.option("--max-cited-by", type=int, default=None, help="Max merged citing papers")
@click.option("--include-reviews", is_flag=True, help="Keep review articles")
@click.option("--force-refresh", is_flag=True, help="Ignore cached graphs")
@click.option("--cached-only", is_flag=True, help="Merge cached graphs only")
@click.option("--summary", is_flag=True, help="Print graph statistics instead of the full result")
def multi(
    seeds: tuple[str, ...],
    sort: str,
    max_references: int | None,
    max_cited_by: int | None,
    include_reviews: bool,
    force_refresh: bool,
    cached_only: bool,
    summary: bool,
) -> None:
    """複数シードの引用グラフを統合."""

    async def action(services: Services) -> Any:
        if cached_only:
            return await services.multi_seed.fetch_multi_seed_cached(
                seeds,
                sort=sort,
                max_references=max_references,
                max_cited_by=max_cited_by,
                include_reviews=include_reviews,
            )
        return await services.multi_seed.fetch_multi_seed(
            seeds,
            sort=sort,
            max_references=max_references,
            max_cited_by=max_cited_by,
            include_reviews=include_reviews,
            force_refresh=force_refresh,
        )

    result = _run(action)
    if result is None:
        click.echo("❌ No cached graph for any seed", err=True)
        sys.exit(1)
    graph = result.result if cached_only else result
    if summary:
        _echo_json(graph_summary(to_networkx(graph)))
    else:
        _echo_json(result.model_dump(mode="json", by_alias=True))


@main.command()
@click.argument("doi")
def crossref(doi: str) -> None:
    """DOIのCSL-JSONを取得."""

    async def action(services: Services) -> dict[str, Any] | None:
        return await services.crossref.get_csl_json(doi)

    data = _run(action)
    if data is None:
        click.echo(f"❌ No CrossRef record for {doi}", err=True)
        sys.exit(1)
    _echo_json(data)


@main.group()
def cache() -> None:
    """キャッシュ管理."""
    pass


@cache.command("stats")
def cache_stats() -> None:
    """キャッシュ統計."""

    async def action(services: Services) -> dict[str, Any]:
        return await services.cache.stats()

    _echo_json(_run(action))


@cache.command("purge")
def cache_purge() -> None:
    """期限切れエントリ削除."""

    async def action(services: Services) -> int:
        return await services.cache.purge_expired()

    click.echo(f"✅ Purged {_run(action)} cache files")


@cache.command("clear")
@click.confirmation_option(prompt="Delete every cache file?")
def cache_clear() -> None:
    """全エントリ削除."""

    async def action(services: Services) -> int:
        return await services.cache.clear_all()

    click.echo(f"✅ Deleted {_run(action)} cache files")


@cache.command("dir")
def cache_dir() -> None:
    """キャッシュディレクトリ表示."""

    async def action(services: Services) -> Any:
        return await services.cache.get_directory()

    directory = _run(action)
    click.echo(str(directory) if directory is not None else "(cache disabled)")


@main.command()
def limiter() -> None:
    """レートリミッターの状態表示."""

    async def action(services: Services) -> dict[str, Any]:
        return services.limiter.status()

    _echo_json(_run(action))


@main.command()
def metrics() -> None:
    """Prometheusメトリクス出力."""
    click.echo(MetricsCollector.get_metrics().decode("utf-8"), nl=False)


if __name__ == "__main__":
    main()
