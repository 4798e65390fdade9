"""EnvironmentRefresher: asyncio Task ベースの定期リフレッシュ"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

import structlog

from .fetcher import EnvironmentFetcher
from .state import EnvironmentState

logger = structlog.get_logger(__name__)

ErrorHandler = Callable[[Exception], None]


class EnvironmentRefresher:
    """環境ドキュメントを定期的に取得してキャッシュに反映する。"""

    def __init__(
        self,
        state: EnvironmentState,
        fetcher: EnvironmentFetcher,
        refresh_interval: float = 60.0,
        request_timeout: float = 10.0,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._state = state
        self._fetcher = fetcher
        self._refresh_interval = refresh_interval
        self._request_timeout = request_timeout
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """1 回リフレッシュしてから定期リフレッシュタスクを開始する。

        初回の取得に失敗しても例外は送出せず、次の周期で再試行する。
        """
        if self.running:
            return
        self._stop.clear()
        await self.refresh()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """定期リフレッシュタスクを停止する。"""
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def refresh(self) -> bool:
        """環境ドキュメントを 1 回取得する。

        Returns:
            キャッシュを更新した場合 True
        """
        try:
            environment = await asyncio.wait_for(
                self._fetcher.fetch(self._request_timeout),
                timeout=self._request_timeout,
            )
        except Exception as e:
            logger.warning("Failed to refresh environment", error=str(e))
            self._notify_error(e)
            return False

        updated = self._state.set_environment(environment)
        if updated:
            logger.debug(
                "Environment refreshed",
                environment=environment.api_key,
                updated_at=environment.updated_at.isoformat() if environment.updated_at else None,
            )
        return updated

    def _notify_error(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            logger.error("Refresh error handler failed", error=str(e))

    async def _run(self) -> None:
        """リフレッシュループ。"""
        while not self._stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self._refresh_interval)
            if self._stop.is_set():
                return
            await self.refresh()
