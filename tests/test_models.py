"""環境ドキュメントモデルのユニットテスト"""

from datetime import UTC, datetime
from typing import Any

import pytest
from k1s0_flagengine import hashing
from k1s0_flagengine.models import (
    EnvironmentModel,
    FeatureStateModel,
    IdentityModel,
    MultivariateFeatureStateValueModel,
    SegmentConditionModel,
)


def _multivariate_feature_state() -> FeatureStateModel:
    return FeatureStateModel.model_validate(
        {
            "feature": {"id": 1, "name": "mv_feature", "type": "MULTIVARIATE"},
            "enabled": True,
            "django_id": 10,
            "feature_state_value": "control",
            "multivariate_feature_state_values": [
                {
                    "id": 2,
                    "multivariate_feature_option": {"value": "second"},
                    "percentage_allocation": 30,
                },
                {
                    "id": 1,
                    "multivariate_feature_option": {"value": "first"},
                    "percentage_allocation": 30,
                },
            ],
        }
    )


def test_environment_model_parses_document(environment: EnvironmentModel) -> None:
    """環境ドキュメントの主要フィールドが読み込まれること。"""
    assert environment.project.name == "Test project"
    assert environment.project.organisation is not None
    assert environment.project.segments[0].rules[0].rules[0].conditions[0].property_ == "foo"
    assert environment.identity_overrides[0].identifier == "overridden-id"
    assert environment.updated_at == datetime(2024, 1, 1, tzinfo=UTC)


def test_naive_updated_at_is_utc(environment_document: dict[str, Any]) -> None:
    """タイムゾーンのない updated_at は UTC として扱うこと。"""
    environment_document["updated_at"] = "2023-07-14T16:12:00"
    environment = EnvironmentModel.model_validate(environment_document)
    assert environment.updated_at == datetime(2023, 7, 14, 16, 12, tzinfo=UTC)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("bar", "bar"), (1, "1"), (1.5, "1.5"), (True, "true"), (None, None)],
)
def test_condition_value_is_stringified(raw: Any, expected: str | None) -> None:
    """条件のリテラルは文字列として保持されること。"""
    condition = SegmentConditionModel.model_validate({"operator": "EQUAL", "value": raw})
    assert condition.value == expected


@pytest.mark.parametrize(("percentage", "expected"), [(10.0, "first"), (45.0, "second"), (75.0, "control")])
def test_multivariate_value(monkeypatch: pytest.MonkeyPatch, percentage: float, expected: str) -> None:
    """多変量フィーチャーは ID 順の累積配分で値を選ぶこと。"""
    monkeypatch.setattr(
        hashing, "get_hashed_percentage_for_object_ids", lambda ids, iterations=1: percentage
    )
    fs = _multivariate_feature_state()
    assert fs.get_value("identity-key") == expected
    assert fs.get_value() == "control"


def test_multivariate_value_is_deterministic() -> None:
    """同じアイデンティティには同じ値を返すこと。"""
    fs = _multivariate_feature_state()
    assert fs.get_value("env_user-1") == fs.get_value("env_user-1")


def test_multivariate_priority_from_uuid() -> None:
    """ID がなければ UUID の整数値を優先度に使うこと。"""
    value = MultivariateFeatureStateValueModel.model_validate(
        {
            "multivariate_feature_option": {"value": "x"},
            "mv_fs_value_uuid": "00000000-0000-0000-0000-000000000005",
        }
    )
    assert value.priority == 5
    assert value.key == "00000000-0000-0000-0000-000000000005"


def test_feature_state_key_falls_back_to_uuid() -> None:
    """django_id がなければ featurestate_uuid をキーにすること。"""
    fs = FeatureStateModel.model_validate(
        {"feature": {"id": 1, "name": "f"}, "featurestate_uuid": "abc"}
    )
    assert fs.key == "abc"


def test_is_higher_segment_priority() -> None:
    """priority の小さいセグメントオーバーライドが優先されること。"""

    def fs(priority: int | None) -> FeatureStateModel:
        data: dict[str, Any] = {"feature": {"id": 1, "name": "f"}}
        if priority is not None:
            data["feature_segment"] = {"priority": priority}
        return FeatureStateModel.model_validate(data)

    assert fs(0).is_higher_segment_priority(fs(1)) is True
    assert fs(1).is_higher_segment_priority(fs(0)) is False
    assert fs(1).is_higher_segment_priority(fs(None)) is True
    assert fs(None).is_higher_segment_priority(fs(0)) is False


def test_identity_hash_key() -> None:
    """django_id があればそれを、なければ複合キーをハッシュキーにすること。"""
    assert IdentityModel(identifier="u", environment_api_key="env").hash_key == "env_u"
    assert IdentityModel(identifier="u", environment_api_key="env", django_id=3).hash_key == "3"
