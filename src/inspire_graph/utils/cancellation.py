"""キャンセルトークン.

ネットワーク処理に渡す中断シグナル. キャンセルされると待機中の
レート制限キューから外れ, 実行中のHTTPリクエストも中断される.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from inspire_graph.exceptions import AbortError

T = TypeVar("T")


class CancellationToken:
    """中断シグナル."""

    def __init__(self) -> None:
        """初期化."""
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """キャンセル済みかどうか."""
        return self._cancelled

    def cancel(self) -> None:
        """キャンセルを通知."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """キャンセル時のコールバック登録.

        既にキャンセル済みなら即座に呼ぶ.

        Returns:
            登録解除関数
        """
        if self._cancelled:
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        """キャンセル済みならAbortErrorを送出."""
        if self._cancelled:
            raise AbortError("Operation cancelled")

    @classmethod
    def linked(cls, *tokens: "CancellationToken | None") -> "CancellationToken":
        """いずれかがキャンセルされるとキャンセルされるトークンを生成."""
        linked = cls()
        for token in tokens:
            if token is not None:
                token.add_callback(linked.cancel)
        return linked


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """トークンのキャンセルで中断可能な形で実行.

    Raises:
        AbortError: トークンがキャンセルされた場合
    """
    if token is None:
        return await awaitable

    token.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    remove = token.add_callback(task.cancel)
    try:
        return await task
    except asyncio.CancelledError:
        if token.cancelled:
            raise AbortError("Operation cancelled") from None
        raise
    finally:
        remove()
