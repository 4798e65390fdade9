"""環境ドキュメントから評価コンテキストへの変換"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from .context import (
    Condition,
    EnvironmentContext,
    EvaluationContext,
    FeatureContext,
    FeatureVariant,
    IdentityContext,
    Operator,
    RuleType,
    SegmentContext,
    SegmentRule,
    TraitValue,
)
from .models import (
    EnvironmentModel,
    FeatureStateModel,
    IdentityModel,
    SegmentModel,
    SegmentRuleModel,
    TraitModel,
)

IDENTITY_OVERRIDES_SEGMENT_NAME = "identity_overrides"

# ドキュメント上の旧表記
_OPERATOR_ALIASES = {"NOT EQUAL": Operator.NOT_EQUAL}


def map_environment_document_to_context(env: EnvironmentModel) -> EvaluationContext:
    """環境ドキュメントをアイデンティティなしの評価コンテキストに変換する。

    フィーチャーは名前、セグメントは ID 文字列をキーにする。アイデンティティ
    オーバーライドは同じオーバーライド内容ごとにまとめ、最優先の合成
    セグメントとして追加する。
    """
    features: dict[str, FeatureContext] = {}
    for fs in env.feature_states:
        fc = map_feature_state_to_feature_context(fs)
        features[fc.name] = fc

    segments: dict[str, SegmentContext] = {}
    for segment in env.project.segments:
        sc = map_segment_to_segment_context(segment)
        segments[sc.key] = sc
    segments.update(_map_identity_overrides_to_segments(env.identity_overrides))

    return EvaluationContext(
        environment=EnvironmentContext(key=env.api_key, name=env.project.name),
        features=features,
        segments=segments,
    )


def map_feature_state_to_feature_context(fs: FeatureStateModel) -> FeatureContext:
    variants = tuple(
        FeatureVariant(
            value=mv.multivariate_feature_option.value,
            weight=mv.percentage_allocation,
            priority=mv.priority,
        )
        for mv in fs.multivariate_feature_state_values
    )
    priority = float(fs.feature_segment.priority) if fs.feature_segment is not None else None
    return FeatureContext(
        key=fs.key,
        feature_key=str(fs.feature.id),
        name=fs.feature.name,
        enabled=fs.enabled,
        value=fs.feature_state_value,
        variants=variants,
        priority=priority,
    )


def map_segment_to_segment_context(segment: SegmentModel) -> SegmentContext:
    return SegmentContext(
        key=str(segment.id),
        name=segment.name,
        rules=tuple(_map_rule(r) for r in segment.rules),
        overrides=tuple(map_feature_state_to_feature_context(fs) for fs in segment.feature_states),
        metadata={"segment_id": segment.id, "source": "API"},
    )


def _map_rule(rule: SegmentRuleModel) -> SegmentRule:
    return SegmentRule(
        type=rule.type,
        conditions=tuple(
            Condition(
                operator=_OPERATOR_ALIASES.get(c.operator, c.operator),
                property=c.property_ or "",
                value=c.value,
            )
            for c in rule.conditions
        ),
        rules=tuple(_map_rule(r) for r in rule.rules),
    )


def _overrides_hash(overrides: list[FeatureStateModel]) -> str:
    text = "".join(
        f"{fs.feature.id}:{fs.feature.name}:{fs.enabled}:{_value_text(fs.feature_state_value)};"
        for fs in overrides
    )
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _value_text(value: Any) -> str:
    return "" if value is None else str(value)


def _map_identity_overrides_to_segments(
    identity_overrides: Iterable[IdentityModel],
) -> dict[str, SegmentContext]:
    identifiers_by_hash: dict[str, list[str]] = {}
    overrides_by_hash: dict[str, list[FeatureStateModel]] = {}

    for identity in identity_overrides:
        if not identity.identity_features:
            continue
        overrides = sorted(identity.identity_features, key=lambda fs: fs.feature.name)
        overrides_hash = _overrides_hash(overrides)
        identifiers_by_hash.setdefault(overrides_hash, []).append(identity.identifier)
        overrides_by_hash[overrides_hash] = overrides

    segments: dict[str, SegmentContext] = {}
    for overrides_hash, identifiers in identifiers_by_hash.items():
        segments[overrides_hash] = SegmentContext(
            # % split を使わないのでキーは空
            key="",
            name=IDENTITY_OVERRIDES_SEGMENT_NAME,
            rules=(
                SegmentRule(
                    type=RuleType.ALL,
                    conditions=(
                        Condition(
                            operator=Operator.IN,
                            property="$.identity.identifier",
                            value=list(identifiers),
                        ),
                    ),
                ),
            ),
            overrides=tuple(
                # アイデンティティオーバーライドは多変量値を持たず、常に最優先
                FeatureContext(
                    key="",
                    feature_key=str(fs.feature.id),
                    name=fs.feature.name,
                    enabled=fs.enabled,
                    value=fs.feature_state_value,
                    priority=float("-inf"),
                )
                for fs in overrides_by_hash[overrides_hash]
            ),
        )
    return segments


def map_context_and_identity_data_to_context(
    context: EvaluationContext,
    identifier: str,
    traits: Mapping[str, Any] | Iterable[TraitModel] | None = None,
    identity_key: str | None = None,
) -> EvaluationContext:
    """コンテキストにアイデンティティ情報を付与した新しいコンテキストを返す。

    identity_key を省略した場合は "<環境キー>_<identifier>" を使う。
    """
    environment_key = context.environment.key or context.environment.name
    identity = IdentityContext(
        identifier=identifier,
        key=identity_key or f"{environment_key}_{identifier}",
        traits=map_traits(traits),
    )
    return replace(context, identity=identity)


def map_traits(traits: Mapping[str, Any] | Iterable[TraitModel] | None) -> dict[str, TraitValue]:
    """trait を評価用の値に変換する。None と空文字列は未設定扱い。"""
    if traits is None:
        return {}
    if isinstance(traits, Mapping):
        items = traits.items()
    else:
        items = ((t.trait_key, t.trait_value) for t in traits)

    result: dict[str, TraitValue] = {}
    for key, raw in items:
        value = convert_trait_value(raw)
        if value is not None:
            result[key] = value
    return result


def convert_trait_value(value: Any) -> TraitValue:
    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if value == "":
            return None
        if value == "true":
            return True
        if value == "false":
            return False
        try:
            if "_" not in value and value == value.strip():
                return float(value)
        except ValueError:
            pass
        return value
    text = str(value)
    return text or None
