"""アプリケーションメトリクス."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# メトリクス定義
HTTP_REQUEST_COUNT = Counter(
    "inspire_graph_http_requests_total",
    "Total outbound HTTP requests",
    ["service", "status"],
)

RATE_LIMITER_WAIT = Histogram(
    "inspire_graph_rate_limiter_wait_seconds",
    "Time spent queued in the rate limiter",
)

RATE_LIMITER_QUEUE = Gauge(
    "inspire_graph_rate_limiter_queue",
    "Requests currently waiting for a rate limiter slot",
)

CACHE_LOOKUP_COUNT = Counter(
    "inspire_graph_cache_lookups_total",
    "Cache lookups by tier and outcome",
    ["tier", "result"],
)


class MetricsCollector:
    """メトリクス収集クラス."""

    @staticmethod
    def track_request(service: str, status: int | str) -> None:
        """外部HTTPリクエスト記録."""
        HTTP_REQUEST_COUNT.labels(service=service, status=str(status)).inc()

    @staticmethod
    def track_admission(wait_seconds: float) -> None:
        """レート制限の待機時間記録."""
        RATE_LIMITER_WAIT.observe(wait_seconds)

    @staticmethod
    def update_queue_size(size: int) -> None:
        """待機キュー長更新."""
        RATE_LIMITER_QUEUE.set(size)

    @staticmethod
    def track_cache_lookup(tier: str, hit: bool) -> None:
        """キャッシュ参照記録."""
        CACHE_LOOKUP_COUNT.labels(tier=tier, result="hit" if hit else "miss").inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Prometheusメトリクス取得."""
        return generate_latest()
