"""環境ドキュメントのキャッシュ

書き込みは新しいスナップショットを組み立ててから参照を差し替える。
読み取り側はロックを取らず、1 回の評価の間は同じスナップショットを使う。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .context import EvaluationContext
from .mappers import map_environment_document_to_context
from .models import EnvironmentModel, IdentityModel


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """ある時点の環境ドキュメントと、そこから導出したインデックス。"""

    environment: EnvironmentModel
    identity_overrides: dict[str, IdentityModel] = field(default_factory=dict)
    evaluation_context: EvaluationContext | None = None

    @classmethod
    def from_environment(cls, environment: EnvironmentModel) -> EnvironmentSnapshot:
        return cls(
            environment=environment,
            identity_overrides={i.identifier: i for i in environment.identity_overrides},
            evaluation_context=map_environment_document_to_context(environment),
        )


class EnvironmentState:
    """現在の環境スナップショットを保持する。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot: EnvironmentSnapshot | None = None
        self._offline = False

    @property
    def is_offline(self) -> bool:
        """オフライン環境が設定済みなら True。以降の更新は無視する。"""
        return self._offline

    def set_environment(self, environment: EnvironmentModel) -> bool:
        """環境ドキュメントを丸ごと置き換える。

        Returns:
            置き換えた場合 True。オフライン環境が設定済みなら False。
        """
        snapshot = EnvironmentSnapshot.from_environment(environment)
        with self._lock:
            if self._offline:
                return False
            self._snapshot = snapshot
        return True

    def set_offline_environment(self, environment: EnvironmentModel) -> None:
        """オフライン環境を設定し、以降の set_environment を無効にする。"""
        snapshot = EnvironmentSnapshot.from_environment(environment)
        with self._lock:
            self._snapshot = snapshot
            self._offline = True

    def snapshot(self) -> EnvironmentSnapshot | None:
        return self._snapshot

    def get_environment(self) -> EnvironmentModel | None:
        snapshot = self._snapshot
        return snapshot.environment if snapshot is not None else None

    def get_identity_override(self, identifier: str) -> IdentityModel | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return snapshot.identity_overrides.get(identifier)
