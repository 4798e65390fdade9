"""Flags のユニットテスト"""

import pytest
from k1s0_flagengine.context import EvaluationResult, FlagResult
from k1s0_flagengine.exceptions import FlagEngineError, FlagEngineErrorCodes
from k1s0_flagengine.flags import Flag, Flags
from k1s0_flagengine.models import FeatureStateModel


def test_from_feature_states() -> None:
    """フィーチャーステートからフラグ一覧を作ること。"""
    fs = FeatureStateModel.model_validate(
        {"feature": {"id": 3, "name": "banner"}, "enabled": True, "feature_state_value": 42}
    )
    flags = Flags.from_feature_states([fs])

    flag = flags.get_flag("banner")
    assert flag == Flag(feature_name="banner", enabled=True, value=42, feature_id=3)
    assert flags.all_flags() == [flag]


def test_from_evaluation_result() -> None:
    """評価結果からフラグ一覧を作ること。"""
    result = EvaluationResult(
        flags={
            "banner": FlagResult(
                enabled=False, feature_key="3", name="banner", value="x", reason="DEFAULT"
            ),
            "external": FlagResult(enabled=True, feature_key="ext-key", name="external"),
        }
    )
    flags = Flags.from_evaluation_result(result)

    assert flags.is_feature_enabled("banner") is False
    assert flags.get_feature_value("banner") == "x"
    assert flags.get_flag("banner").feature_id == 3
    assert flags.get_flag("banner").reason == "DEFAULT"
    assert flags.get_flag("external").feature_id is None


def test_get_flag_not_found() -> None:
    """存在しないフラグで FlagEngineError(FEATURE_NOT_FOUND) が発生すること。"""
    with pytest.raises(FlagEngineError) as exc_info:
        Flags().is_feature_enabled("missing")
    assert exc_info.value.code == FlagEngineErrorCodes.FEATURE_NOT_FOUND
    assert str(exc_info.value) == "FEATURE_NOT_FOUND: Feature not found: missing"


def test_default_flag_handler() -> None:
    """存在しないフラグは default_flag_handler に委ねること。"""
    flags = Flags(
        default_flag_handler=lambda name: Flag(feature_name=name, enabled=True, is_default=True)
    )
    assert flags.is_feature_enabled("missing") is True
    assert flags.get_flag("missing").is_default is True
