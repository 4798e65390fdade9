"""flagengine テスト共通フィクスチャ"""

from __future__ import annotations

import copy
from typing import Any

import pytest
import structlog
from k1s0_flagengine.context import (
    Condition,
    EnvironmentContext,
    EvaluationContext,
    IdentityContext,
    SegmentContext,
    SegmentRule,
)
from k1s0_flagengine.models import EnvironmentModel

ENVIRONMENT_API_KEY = "B62qaMZNwfiqT76p38ggrQ"
FEATURE_1_NAME = "feature_1"
FEATURE_1_VALUE = "some_value"
FEATURE_1_OVERRIDDEN_VALUE = "some-overridden-value"
OVERRIDDEN_IDENTIFIER = "overridden-id"

ENVIRONMENT_DOCUMENT: dict[str, Any] = {
    "api_key": ENVIRONMENT_API_KEY,
    "project": {
        "name": "Test project",
        "organisation": {
            "feature_analytics": False,
            "name": "Test Org",
            "id": 1,
            "persist_trait_data": True,
            "stop_serving_flags": False,
        },
        "id": 1,
        "hide_disabled_flags": False,
        "segments": [
            {
                "id": 1,
                "name": "Test Segment",
                "feature_states": [],
                "rules": [
                    {
                        "type": "ALL",
                        "conditions": [],
                        "rules": [
                            {
                                "type": "ALL",
                                "rules": [],
                                "conditions": [
                                    {"operator": "EQUAL", "property_": "foo", "value": "bar"}
                                ],
                            }
                        ],
                    }
                ],
            }
        ],
    },
    "id": 1,
    "feature_states": [
        {
            "multivariate_feature_state_values": [],
            "feature_state_value": FEATURE_1_VALUE,
            "django_id": 1,
            "featurestate_uuid": "40eb539d-3713-4720-bbd4-829dbef10d51",
            "feature": {"name": FEATURE_1_NAME, "type": "STANDARD", "id": 1},
            "enabled": True,
        }
    ],
    "identity_overrides": [
        {
            "identifier": OVERRIDDEN_IDENTIFIER,
            "identity_uuid": "0f21cde8-63c5-4e50-baca-87897fa6cd01",
            "environment_api_key": ENVIRONMENT_API_KEY,
            "identity_features": [
                {
                    "feature": {"id": 1, "name": FEATURE_1_NAME, "type": "STANDARD"},
                    "featurestate_uuid": "1bddb9a5-7e59-42c6-9be9-625fa369749f",
                    "feature_state_value": FEATURE_1_OVERRIDDEN_VALUE,
                    "enabled": False,
                    "feature_segment": None,
                }
            ],
        }
    ],
    "updated_at": "2024-01-01T00:00:00+00:00",
}


@pytest.fixture(autouse=True)
def _reset_structlog() -> Any:
    yield
    structlog.reset_defaults()


@pytest.fixture
def environment_document() -> dict[str, Any]:
    return copy.deepcopy(ENVIRONMENT_DOCUMENT)


@pytest.fixture
def environment(environment_document: dict[str, Any]) -> EnvironmentModel:
    return EnvironmentModel.model_validate(environment_document)


def make_context(
    traits: dict[str, Any] | None = None,
    identifier: str | None = "user-1",
    identity_key: str | None = None,
) -> EvaluationContext:
    """テスト用の評価コンテキストを生成する。identifier=None でアイデンティティなし。"""
    identity = None
    if identifier is not None:
        identity = IdentityContext(
            identifier=identifier,
            key=identity_key or f"env-key_{identifier}",
            traits=dict(traits or {}),
        )
    return EvaluationContext(
        environment=EnvironmentContext(key="env-key", name="Environment"),
        identity=identity,
    )


def make_segment(*rules: SegmentRule, key: str = "1", name: str = "segment") -> SegmentContext:
    return SegmentContext(key=key, name=name, rules=tuple(rules))


def rule(type_: str, *conditions: Condition, rules: tuple[SegmentRule, ...] = ()) -> SegmentRule:
    return SegmentRule(type=type_, conditions=tuple(conditions), rules=rules)
