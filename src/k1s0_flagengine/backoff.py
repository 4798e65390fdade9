"""再接続待機のバックオフ"""

from __future__ import annotations

import asyncio
import contextlib
import random
from collections.abc import Callable


class Backoff:
    """指数バックオフ。待機時間は current + U(0, 1) 秒。

    next() を呼ぶたびに current を 2 倍にし、maximum で頭打ちにする。
    reset() で initial に戻す。
    """

    def __init__(
        self,
        initial: float = 0.2,
        maximum: float = 30.0,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._initial = initial
        self._maximum = maximum
        self._jitter = jitter
        self._current = initial

    @property
    def current(self) -> float:
        return self._current

    def next(self) -> float:
        """次の待機秒数を返し、内部の待機時間を進める。"""
        delay = self._current + self._jitter()
        self._current = min(self._current * 2, self._maximum)
        return delay

    def reset(self) -> None:
        self._current = self._initial

    async def wait(self, stop: asyncio.Event | None = None) -> bool:
        """next() 秒だけ待機する。

        Returns:
            stop が待機中にセットされた場合 True
        """
        delay = self.next()
        if stop is None:
            await asyncio.sleep(delay)
            return False
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=delay)
        return stop.is_set()
