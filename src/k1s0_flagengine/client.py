"""LocalEvaluationClient: キャッシュした環境ドキュメントによるフラグ評価"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import structlog

from .backoff import Backoff
from .config import ClientConfig, load_config
from .context import EvaluationResult
from .engine import (
    get_environment_feature_states,
    get_evaluation_result,
    get_identity_feature_states,
)
from .engine import get_identity_segments as resolve_identity_segments
from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .fetcher import EnvironmentFetcher, HttpEnvironmentFetcher, read_environment_from_file
from .flags import DefaultFlagHandler, Flags
from .logger import new_logger
from .mappers import map_context_and_identity_data_to_context
from .models import IdentityModel, SegmentModel
from .realtime import EventStream, HttpEventStream, RealtimeListener, stream_url
from .refresher import EnvironmentRefresher, ErrorHandler
from .state import EnvironmentSnapshot, EnvironmentState

logger = structlog.get_logger(__name__)


class LocalEvaluationClient:
    """環境ドキュメントをローカルにキャッシュしてフラグを評価するクライアント。

    start() で初回取得と定期リフレッシュ（有効ならリアルタイム更新も）を
    開始する。評価系メソッドは同期的で I/O を行わない。
    offline_environment_path が設定されている場合はファイルから読み込み、
    バックグラウンドタスクは起動しない。
    """

    def __init__(
        self,
        config: ClientConfig,
        fetcher: EnvironmentFetcher | None = None,
        event_stream: EventStream | None = None,
        default_flag_handler: DefaultFlagHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._config = config
        self._conventions = config.conventions()
        self._default_flag_handler = default_flag_handler
        self._state = EnvironmentState()
        self._refresher: EnvironmentRefresher | None = None
        self._listener: RealtimeListener | None = None

        if config.is_offline:
            return

        self._refresher = EnvironmentRefresher(
            state=self._state,
            fetcher=fetcher
            or HttpEnvironmentFetcher(
                base_url=config.base_url,
                environment_key=config.environment_key,
                timeout_seconds=config.request_timeout_seconds,
                custom_headers=config.custom_headers,
            ),
            refresh_interval=config.refresh_interval_seconds,
            request_timeout=config.request_timeout_seconds,
            on_error=on_error,
        )
        if config.realtime.enabled:
            self._listener = RealtimeListener(
                stream=event_stream
                or HttpEventStream(
                    stream_url(config.realtime_base_url, config.environment_key),
                    connect_timeout=config.realtime.connect_timeout_seconds,
                ),
                state=self._state,
                refresher=self._refresher,
                backoff=Backoff(
                    initial=config.backoff.initial_seconds,
                    maximum=config.backoff.max_seconds,
                ),
            )

    @classmethod
    def from_config_file(
        cls, base_path: Path | str, env_path: Path | str | None = None, **kwargs: Any
    ) -> LocalEvaluationClient:
        """YAML 設定ファイルからクライアントを生成する。

        log セクションに従ってライブラリのロガーも設定する。
        """
        config = load_config(base_path, env_path)
        new_logger(config.log.level, config.log.format)
        return cls(config, **kwargs)

    @property
    def state(self) -> EnvironmentState:
        return self._state

    async def start(self) -> None:
        """環境ドキュメントを取得し、バックグラウンド更新を開始する。"""
        if self._config.offline_environment_path is not None:
            environment = read_environment_from_file(self._config.offline_environment_path)
            self._state.set_offline_environment(environment)
            logger.info("Offline environment loaded", environment=environment.api_key)
            return

        if self._refresher is not None:
            await self._refresher.start()
        if self._listener is not None:
            await self._listener.start()

    async def stop(self) -> None:
        """バックグラウンド更新を停止する。"""
        if self._listener is not None:
            await self._listener.stop()
        if self._refresher is not None:
            await self._refresher.stop()

    async def __aenter__(self) -> LocalEvaluationClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def update_environment(self) -> bool:
        """環境ドキュメントを即時に再取得する。"""
        if self._refresher is None:
            return False
        return await self._refresher.refresh()

    def get_environment_flags(self) -> Flags:
        """環境デフォルトのフラグ一覧を返す。"""
        environment = self._snapshot().environment
        return Flags.from_feature_states(
            get_environment_feature_states(environment),
            default_flag_handler=self._default_flag_handler,
        )

    def get_identity_flags(
        self, identifier: str, traits: Mapping[str, Any] | None = None
    ) -> Flags:
        """アイデンティティのフラグ一覧を返す。"""
        snapshot = self._snapshot()
        identity = self._identity(snapshot, identifier)
        feature_states = get_identity_feature_states(
            snapshot.environment, identity, traits, self._conventions
        )
        return Flags.from_feature_states(
            feature_states,
            identity_key=identity.hash_key,
            default_flag_handler=self._default_flag_handler,
        )

    def get_identity_segments(
        self, identifier: str, traits: Mapping[str, Any] | None = None
    ) -> list[SegmentModel]:
        """アイデンティティが含まれるセグメントを返す。"""
        snapshot = self._snapshot()
        identity = self._identity(snapshot, identifier)
        return resolve_identity_segments(snapshot.environment, identity, traits, self._conventions)

    def evaluate(
        self, identifier: str | None = None, traits: Mapping[str, Any] | None = None
    ) -> EvaluationResult:
        """評価コンテキスト経由で全フィーチャーを評価する。

        identifier を省略した場合は環境のみのコンテキストで評価する。
        """
        snapshot = self._snapshot()
        ctx = snapshot.evaluation_context
        if ctx is None:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.ENVIRONMENT_NOT_AVAILABLE,
                message="No local environment available",
            )
        if identifier is not None:
            ctx = map_context_and_identity_data_to_context(ctx, identifier, traits)

        result = get_evaluation_result(ctx, self._conventions)
        if snapshot.environment.project.hide_disabled_flags:
            flags = {name: f for name, f in result.flags.items() if f.enabled}
            result = replace(result, flags=flags)
        return result

    def get_flags(
        self, identifier: str | None = None, traits: Mapping[str, Any] | None = None
    ) -> Flags:
        """evaluate() の結果をフラグ一覧として返す。"""
        return Flags.from_evaluation_result(
            self.evaluate(identifier, traits),
            default_flag_handler=self._default_flag_handler,
        )

    def _snapshot(self) -> EnvironmentSnapshot:
        snapshot = self._state.snapshot()
        if snapshot is None:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.ENVIRONMENT_NOT_AVAILABLE,
                message="No local environment available",
            )
        return snapshot

    @staticmethod
    def _identity(snapshot: EnvironmentSnapshot, identifier: str) -> IdentityModel:
        override = snapshot.identity_overrides.get(identifier)
        if override is not None:
            return override
        return IdentityModel(
            identifier=identifier, environment_api_key=snapshot.environment.api_key
        )
