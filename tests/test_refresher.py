"""EnvironmentRefresher のユニットテスト"""

import asyncio
from unittest.mock import MagicMock

import pytest
from k1s0_flagengine.exceptions import FlagEngineError, FlagEngineErrorCodes
from k1s0_flagengine.fetcher import EnvironmentFetcher
from k1s0_flagengine.models import EnvironmentModel
from k1s0_flagengine.refresher import EnvironmentRefresher
from k1s0_flagengine.state import EnvironmentState
from structlog.testing import capture_logs


class _StubFetcher(EnvironmentFetcher):
    """呼び出しごとに results の要素を順に返す（例外なら送出する）。"""

    def __init__(self, *results: EnvironmentModel | Exception, delay: float = 0.0) -> None:
        self._results = list(results)
        self._delay = delay
        self.calls = 0
        self.timeouts: list[float | None] = []

    async def fetch(self, timeout: float | None = None) -> EnvironmentModel:
        self.calls += 1
        self.timeouts.append(timeout)
        if self._delay:
            await asyncio.sleep(self._delay)
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_start_refreshes_before_returning(environment: EnvironmentModel) -> None:
    """start から戻った時点でキャッシュが設定されていること。"""
    state = EnvironmentState()
    fetcher = _StubFetcher(environment)
    refresher = EnvironmentRefresher(state, fetcher, refresh_interval=60, request_timeout=3)

    await refresher.start()
    try:
        assert state.get_environment() is environment
        assert refresher.running is True
        assert fetcher.timeouts == [3]
    finally:
        await refresher.stop()
    assert refresher.running is False


@pytest.mark.asyncio
async def test_initial_failure_leaves_cache_empty(environment: EnvironmentModel) -> None:
    """初回取得に失敗してもキャッシュは空のまま開始し、次の周期で取得すること。"""
    state = EnvironmentState()
    error = FlagEngineError(code=FlagEngineErrorCodes.FETCH_ERROR, message="boom")
    fetcher = _StubFetcher(error, environment)
    on_error = MagicMock()
    refresher = EnvironmentRefresher(state, fetcher, refresh_interval=0.01, on_error=on_error)

    await refresher.start()
    try:
        assert state.get_environment() is None
        on_error.assert_called_once_with(error)
        for _ in range(100):
            if state.get_environment() is not None:
                break
            await asyncio.sleep(0.01)
        assert state.get_environment() is environment
    finally:
        await refresher.stop()


@pytest.mark.asyncio
async def test_failure_keeps_previous_environment(environment: EnvironmentModel) -> None:
    """取得失敗時は前回のドキュメントを保持し、警告を出すこと。"""
    state = EnvironmentState()
    fetcher = _StubFetcher(environment, RuntimeError("unavailable"))
    refresher = EnvironmentRefresher(state, fetcher)

    assert await refresher.refresh() is True
    with capture_logs() as logs:
        assert await refresher.refresh() is False

    assert state.get_environment() is environment
    assert any(
        log["log_level"] == "warning" and log["error"] == "unavailable" for log in logs
    )


@pytest.mark.asyncio
async def test_refresh_timeout(environment: EnvironmentModel) -> None:
    """タイムアウトした取得は失敗として扱われること。"""
    state = EnvironmentState()
    on_error = MagicMock()
    fetcher = _StubFetcher(environment, delay=1.0)
    refresher = EnvironmentRefresher(state, fetcher, request_timeout=0.01, on_error=on_error)

    assert await refresher.refresh() is False
    assert state.get_environment() is None
    assert isinstance(on_error.call_args.args[0], TimeoutError)


@pytest.mark.asyncio
async def test_error_handler_failure_is_logged(environment: EnvironmentModel) -> None:
    """エラーフックの例外はループを止めないこと。"""
    state = EnvironmentState()
    fetcher = _StubFetcher(RuntimeError("unavailable"))
    refresher = EnvironmentRefresher(
        state, fetcher, on_error=MagicMock(side_effect=ValueError("hook failed"))
    )
    with capture_logs() as logs:
        assert await refresher.refresh() is False
    assert any(log["log_level"] == "error" for log in logs)


@pytest.mark.asyncio
async def test_periodic_refresh_and_stop(environment: EnvironmentModel) -> None:
    """周期ごとに取得し、stop 後は取得しないこと。"""
    state = EnvironmentState()
    fetcher = _StubFetcher(environment)
    refresher = EnvironmentRefresher(state, fetcher, refresh_interval=0.01)

    await refresher.start()
    await asyncio.sleep(0.1)
    await refresher.stop()
    calls = fetcher.calls
    assert calls >= 3

    await asyncio.sleep(0.05)
    assert fetcher.calls == calls


@pytest.mark.asyncio
async def test_stop_interrupts_long_interval(environment: EnvironmentModel) -> None:
    """長い周期の待機中でも stop が即座に完了すること。"""
    refresher = EnvironmentRefresher(
        EnvironmentState(), _StubFetcher(environment), refresh_interval=3600
    )
    await refresher.start()
    await asyncio.wait_for(refresher.stop(), timeout=1.0)
