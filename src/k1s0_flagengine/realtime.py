"""RealtimeListener: サーバー送信イベントによる即時リフレッシュ

ストリームの各行のうち `data: {"updated_at": <epoch 秒>}` だけを扱う。
キャッシュ済みドキュメントより新しい updated_at を受け取った場合のみ
リフレッシュする。切断と不正なイベントはバックオフ後に再接続する。
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import math
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from .backoff import Backoff
from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .refresher import EnvironmentRefresher
from .state import EnvironmentState

logger = structlog.get_logger(__name__)

_DATA_PREFIX = "data:"


def stream_url(realtime_base_url: str, environment_key: str) -> str:
    """環境のイベントストリーム URL を返す。"""
    base = realtime_base_url if realtime_base_url.endswith("/") else realtime_base_url + "/"
    return f"{base}sse/environments/{environment_key}/stream"


class EventStream(ABC):
    """テキスト行のイベントストリーム。"""

    url: str = ""

    @abstractmethod
    def connect(self) -> contextlib.AbstractAsyncContextManager[AsyncIterator[str]]:
        """接続し、受信した行を返すイテレータを提供するコンテキストマネージャを返す。"""
        ...


class HttpEventStream(EventStream):
    """httpx のストリーミングレスポンスを使ったイベントストリーム。"""

    def __init__(
        self,
        url: str,
        connect_timeout: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        # 受信待ちは無期限
        self._timeout = httpx.Timeout(connect_timeout, read=None)

    @contextlib.asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncIterator[str]]:
        try:
            async with httpx.AsyncClient(headers=self._headers, timeout=self._timeout) as client:
                async with client.stream("GET", self.url) as resp:
                    if resp.status_code != 200:
                        raise FlagEngineError(
                            code=FlagEngineErrorCodes.STREAM_ERROR,
                            message=f"error response connecting to stream: {resp.status_code}",
                        )
                    yield resp.aiter_lines()
        except httpx.HTTPError as e:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.STREAM_ERROR,
                message=f"Failed to read event stream: {e}",
                cause=e,
            ) from e


def parse_updated_at(line: str) -> float | None:
    """イベント行から updated_at を取り出す。

    Returns:
        data 行でない場合、または updated_at が有限の正の数値でない場合は None

    Raises:
        FlagEngineError: data 行の内容が JSON オブジェクトでない場合
    """
    if not line.startswith(_DATA_PREFIX):
        return None
    payload = line[len(_DATA_PREFIX) :].strip()
    try:
        data: Any = json.loads(payload)
    except ValueError as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.MALFORMED_EVENT,
            message=f"Malformed event: {line!r}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise FlagEngineError(
            code=FlagEngineErrorCodes.MALFORMED_EVENT,
            message=f"Malformed event: {line!r}",
        )

    updated_at = data.get("updated_at")
    if isinstance(updated_at, bool) or not isinstance(updated_at, (int, float)):
        return None
    if not math.isfinite(updated_at) or updated_at <= 0:
        return None
    return float(updated_at)


class RealtimeListener:
    """イベントストリームを購読し、環境の更新を検知してリフレッシュする。"""

    def __init__(
        self,
        stream: EventStream,
        state: EnvironmentState,
        refresher: EnvironmentRefresher,
        backoff: Backoff | None = None,
    ) -> None:
        self._stream = stream
        self._state = state
        self._refresher = refresher
        self._backoff = backoff or Backoff()
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._log = logger.bind(worker="realtime", stream=stream.url)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """購読タスクを開始する。"""
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """購読タスクを停止する。"""
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def handle_line(self, line: str) -> bool:
        """1 行を処理する。

        Returns:
            リフレッシュを実行した場合 True
        """
        updated_at = parse_updated_at(line)
        if updated_at is None:
            if line.startswith(_DATA_PREFIX):
                self._log.debug("Discarded event without valid updated_at", message=line)
            return False

        current = self._cached_updated_at()
        if current is not None and updated_at <= current:
            self._log.debug("Environment already up to date", updated_at=updated_at)
            return False
        await self._refresher.refresh()
        return True

    def _cached_updated_at(self) -> float | None:
        environment = self._state.get_environment()
        if environment is None or environment.updated_at is None:
            return None
        return environment.updated_at.timestamp()

    async def _run(self) -> None:
        """接続ループ。"""
        self._log.debug("Connecting to realtime")
        try:
            while not self._stop.is_set():
                try:
                    await self._consume()
                    self._log.info("Realtime stream closed")
                except Exception as e:
                    self._log.error("Realtime stream failed", error=str(e))
                if await self._backoff.wait(self._stop):
                    return
        finally:
            self._log.info("Realtime listener stopped")

    async def _consume(self) -> None:
        async with self._stream.connect() as lines:
            self._log.info("Realtime stream connected")
            self._backoff.reset()
            async for line in lines:
                await self.handle_line(line)
                if self._stop.is_set():
                    return
