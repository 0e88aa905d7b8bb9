"""スライディングウィンドウ方式のレート制限.

INSPIRE APIへの全リクエストはこのゲートを通る. ウィンドウ内の
リクエスト数が上限に達している間はFIFOで待機し, 古いリクエストが
ウィンドウから外れた時点で順に許可される.
"""

import asyncio
import random
import time
from collections import deque
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt

from inspire_graph.config import RateLimitConfig, settings
from inspire_graph.exceptions import AbortError, AdmissionTimeout, NetworkError
from inspire_graph.utils.cancellation import CancellationToken, run_cancellable
from inspire_graph.utils.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

RETRY_AFTER_HEADER = "Retry-After"


class SlidingWindowRateLimiter:
    """プロセス共有のスライディングウィンドウ・レートリミッター."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """初期化.

        Args:
            config: レート制限設定（省略時はグローバル設定）
            clock: 単調増加する時刻関数（テスト用に差し替え可能）
        """
        self.config = config or settings.rate_limit
        self.max_requests = self.config.max_requests
        self.window_seconds = self.config.window_seconds
        self._clock = clock
        self._timestamps: deque[float] = deque()
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._pump_task: asyncio.Task[None] | None = None
        self._wakeup: asyncio.Event | None = None
        self._active_retries = 0

    # ------------------------------------------------------------------
    # 受付制御
    # ------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        """ウィンドウ外のタイムスタンプを除去."""
        boundary = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= boundary:
            self._timestamps.popleft()

    def _has_capacity(self) -> bool:
        return len(self._timestamps) < self.max_requests

    async def acquire(
        self,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> None:
        """リクエスト枠の取得.

        Args:
            token: キャンセルトークン
            timeout: 待機上限秒数（省略時は設定値, Noneなら無制限）

        Raises:
            AbortError: 待機中にキャンセルされた場合
            AdmissionTimeout: 待機上限を超えた場合
        """
        if token is not None:
            token.raise_if_cancelled()

        now = self._clock()
        self._prune(now)
        if not self._waiters and self._has_capacity():
            self._timestamps.append(now)
            MetricsCollector.track_admission(0.0)
            return

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        MetricsCollector.update_queue_size(len(self._waiters))
        self._ensure_pump()

        remove_callback = token.add_callback(waiter.cancel) if token is not None else None
        wait_limit = timeout if timeout is not None else self.config.max_queue_wait_seconds
        started = now
        try:
            await asyncio.wait_for(waiter, wait_limit)
        except TimeoutError:
            self._discard(waiter)
            logger.warning("Rate limiter admission timed out", waited=wait_limit)
            raise AdmissionTimeout(f"Rate limiter queue wait exceeded {wait_limit}s") from None
        except asyncio.CancelledError:
            self._discard(waiter)
            if token is not None and token.cancelled:
                raise AbortError("Request cancelled while queued") from None
            raise
        finally:
            if remove_callback is not None:
                remove_callback()

        MetricsCollector.track_admission(self._clock() - started)

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        """待機者をキューから除去（枠は消費しない）."""
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        MetricsCollector.update_queue_size(len(self._waiters))

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._wakeup = asyncio.Event()
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self) -> None:
        """キュー先頭から順に枠が空き次第許可する."""
        assert self._wakeup is not None
        try:
            while self._waiters:
                while self._waiters and self._waiters[0].done():
                    self._waiters.popleft()
                if not self._waiters:
                    break

                now = self._clock()
                self._prune(now)
                if self._has_capacity():
                    waiter = self._waiters.popleft()
                    self._timestamps.append(now)
                    waiter.set_result(None)
                    MetricsCollector.update_queue_size(len(self._waiters))
                    continue

                delay = self._timestamps[0] + self.window_seconds - now
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), max(delay, 0.0))
                except TimeoutError:
                    pass
        finally:
            self._pump_task = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """レート制限付きGETリクエスト.

        429応答は枠を取り直して指数バックオフで再試行する. それ以外の
        失敗は再試行しない.

        Raises:
            NetworkError: 通信に失敗した場合
            AbortError: キャンセルされた場合
            AdmissionTimeout: 受付待ちが上限を超えた場合
        """

        async def cancellable_sleep(seconds: float) -> None:
            self._active_retries += 1
            try:
                await run_cancellable(asyncio.sleep(seconds), token)
            finally:
                self._active_retries -= 1

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retry_attempts + 1),
            wait=self._retry_wait,
            retry=retry_if_result(lambda response: response.status_code == 429),
            retry_error_callback=self._give_up,
            before_sleep=self._before_retry,
            sleep=cancellable_sleep,
        )
        return await retrying(self._send, client, url, params, token, timeout)  # type: ignore[no-any-return]

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None,
        token: CancellationToken | None,
        timeout: float | None,
    ) -> httpx.Response:
        await self.acquire(token)
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await run_cancellable(client.get(url, **kwargs), token)
        except httpx.TransportError as e:
            MetricsCollector.track_request("inspire", "error")
            raise NetworkError(f"Request to {url} failed: {e}") from e
        MetricsCollector.track_request("inspire", response.status_code)
        return response

    def backoff_delay(self, retry_count: int) -> float:
        """指数バックオフ待機秒数（±25%のジッタ付き）."""
        delay = self.config.backoff_base_seconds * (2**retry_count)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return float(min(delay + jitter, self.config.backoff_max_seconds))

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        retry_count = retry_state.attempt_number - 1
        response = retry_state.outcome.result() if retry_state.outcome else None
        if response is not None:
            retry_after = response.headers.get(RETRY_AFTER_HEADER)
            if retry_after:
                try:
                    seconds = float(retry_after)
                except ValueError:
                    seconds = 0.0
                if seconds > 0:
                    return min(seconds, self.config.backoff_max_seconds)
        return self.backoff_delay(retry_count)

    def _before_retry(self, retry_state: RetryCallState) -> None:
        logger.info(
            "Rate limited by upstream, retrying",
            attempt=retry_state.attempt_number,
            max_attempts=self.config.max_retry_attempts,
            delay=retry_state.upcoming_sleep,
        )

    def _give_up(self, retry_state: RetryCallState) -> httpx.Response:
        logger.warning("Rate limit retries exhausted", attempts=retry_state.attempt_number)
        return retry_state.outcome.result()  # type: ignore[union-attr,no-any-return]

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """現在のウィンドウ使用状況（ブロックしない）."""
        now = self._clock()
        self._prune(now)
        used = len(self._timestamps)
        reset_in = self._timestamps[0] + self.window_seconds - now if self._timestamps else 0.0
        queued = sum(1 for waiter in self._waiters if not waiter.done())
        return {
            "used": used,
            "remaining": max(0, self.max_requests - used),
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
            "queued": queued,
            "reset_in_seconds": max(0.0, reset_in),
            "reset_time": time.time() + max(0.0, reset_in),
            "is_throttling": queued > 0 or self._active_retries > 0,
        }

    def reset(self) -> None:
        """ウィンドウをクリア."""
        self._timestamps.clear()
        if self._wakeup is not None:
            self._wakeup.set()
        logger.debug("Rate limiter reset")
