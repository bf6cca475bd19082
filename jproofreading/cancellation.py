"""校正1回分のキャンセル信号。

`CancellationTokenSource.cancel()` はフラグを立てて登録済みコールバックと待機側を起こすだけで、
同期的なルール適用を割り込み停止はしない。中断は待機点で `ProofreadingCancelled` として伝わる。
"""
from __future__ import annotations
import asyncio
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class ProofreadingCancelled(Exception):
    """ユーザー操作による中止。エラーとしては表示しない。"""


class CancellationToken:
    def __init__(self):
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []
        self._event: asyncio.Event | None = None

    @classmethod
    def none(cls) -> "CancellationToken":
        return cls()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """キャンセル時に呼ばれるコールバックを登録。解除関数を返す。"""
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _unregister():
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        return _unregister

    async def wait(self) -> None:
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ProofreadingCancelled("校正がキャンセルされました")

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("cancellation callback failed")


class CancellationTokenSource:
    def __init__(self):
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token._fire()

    def dispose(self) -> None:
        self.token._callbacks.clear()


__all__ = ["CancellationToken", "CancellationTokenSource", "ProofreadingCancelled"]
