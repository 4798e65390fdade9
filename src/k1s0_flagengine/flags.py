"""評価結果のフラグ一覧"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .context import EvaluationResult
from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .models import FeatureStateModel

DefaultFlagHandler = Callable[[str], "Flag"]


@dataclass(frozen=True)
class Flag:
    """単一フィーチャーの評価結果。"""

    feature_name: str
    enabled: bool
    value: Any = None
    feature_id: int | None = None
    is_default: bool = False
    reason: str | None = None

    @classmethod
    def from_feature_state(
        cls, feature_state: FeatureStateModel, identity_key: str | None = None
    ) -> Flag:
        return cls(
            feature_name=feature_state.feature.name,
            enabled=feature_state.enabled,
            value=feature_state.get_value(identity_key),
            feature_id=feature_state.feature.id,
        )


@dataclass
class Flags:
    """フラグ一覧。名前で引けないフラグは default_flag_handler に委ねる。"""

    flags: dict[str, Flag] = field(default_factory=dict)
    default_flag_handler: DefaultFlagHandler | None = None

    @classmethod
    def from_feature_states(
        cls,
        feature_states: Iterable[FeatureStateModel],
        identity_key: str | None = None,
        default_flag_handler: DefaultFlagHandler | None = None,
    ) -> Flags:
        flags = {
            fs.feature.name: Flag.from_feature_state(fs, identity_key) for fs in feature_states
        }
        return cls(flags=flags, default_flag_handler=default_flag_handler)

    @classmethod
    def from_evaluation_result(
        cls,
        result: EvaluationResult,
        default_flag_handler: DefaultFlagHandler | None = None,
    ) -> Flags:
        flags: dict[str, Flag] = {}
        for name, flag in result.flags.items():
            flags[name] = Flag(
                feature_name=name,
                enabled=flag.enabled,
                value=flag.value,
                feature_id=int(flag.feature_key) if flag.feature_key.isdigit() else None,
                reason=flag.reason,
            )
        return cls(flags=flags, default_flag_handler=default_flag_handler)

    def all_flags(self) -> list[Flag]:
        return list(self.flags.values())

    def get_flag(self, feature_name: str) -> Flag:
        """フラグを名前で取得する。

        Raises:
            FlagEngineError: フラグが存在せず、default_flag_handler も未設定の場合
        """
        flag = self.flags.get(feature_name)
        if flag is not None:
            return flag
        if self.default_flag_handler is not None:
            return self.default_flag_handler(feature_name)
        raise FlagEngineError(
            code=FlagEngineErrorCodes.FEATURE_NOT_FOUND,
            message=f"Feature not found: {feature_name}",
        )

    def is_feature_enabled(self, feature_name: str) -> bool:
        return self.get_flag(feature_name).enabled

    def get_feature_value(self, feature_name: str) -> Any:
        return self.get_flag(feature_name).value
