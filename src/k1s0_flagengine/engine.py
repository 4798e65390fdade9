"""フィーチャーステートの解決

評価コンテキストを入力とする get_evaluation_result と、環境ドキュメントと
アイデンティティを入力とする get_*_feature_state(s) の 2 系統を提供する。
セグメント判定はどちらも evaluator の同じ実装を使う。
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from . import hashing
from .context import (
    EnvironmentContext,
    EvaluationContext,
    EvaluationResult,
    FeatureContext,
    FeatureVariant,
    FlagResult,
    SegmentContext,
    SegmentResult,
)
from .conventions import DEFAULT_CONVENTIONS, EvaluationConventions
from .evaluator import is_context_in_segment
from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .mappers import (
    map_context_and_identity_data_to_context,
    map_segment_to_segment_context,
)
from .models import EnvironmentModel, FeatureStateModel, IdentityModel, SegmentModel, TraitModel

Traits = Mapping[str, Any] | Iterable[TraitModel] | None


def get_evaluation_result(
    ctx: EvaluationContext,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> EvaluationResult:
    """コンテキストに含まれる全フィーチャーを評価する。

    一致したセグメントのオーバーライドのうち priority が最も小さいもの
    （同値なら後勝ち）を採用し、なければ環境デフォルトを多変量選択して返す。
    """
    segment_results: list[SegmentResult] = []
    matched: list[SegmentContext] = []
    for key in sorted(ctx.segments):
        segment = ctx.segments[key]
        if not is_context_in_segment(ctx, segment, conventions):
            continue
        segment_results.append(
            SegmentResult(key=segment.key, name=segment.name, metadata=segment.metadata)
        )
        matched.append(segment)

    identity_key = ctx.identity.key if ctx.identity is not None else None
    flags: dict[str, FlagResult] = {}
    for name, feature in ctx.features.items():
        best: FeatureContext | None = None
        best_priority = math.inf
        segment_name = ""
        for segment in matched:
            for override in segment.overrides:
                if override.name != name:
                    continue
                priority = override.priority if override.priority is not None else math.inf
                if priority <= best_priority:
                    best, best_priority, segment_name = override, priority, segment.name

        if best is not None:
            flags[name] = FlagResult(
                enabled=best.enabled,
                feature_key=feature.feature_key,
                name=name,
                value=best.value,
                reason=f"TARGETING_MATCH; segment={segment_name}",
            )
        else:
            flags[name] = _default_flag_result(name, feature, identity_key)

    return EvaluationResult(flags=flags, segments=segment_results)


def _default_flag_result(
    name: str, feature: FeatureContext, identity_key: str | None
) -> FlagResult:
    value = feature.value
    reason = "DEFAULT"
    if feature.variants and identity_key is not None and feature.key:
        percentage = hashing.get_hashed_percentage_for_object_ids([feature.key, identity_key])
        variant = select_variant(feature.variants, percentage)
        if variant is not None:
            value = variant.value
            reason = f"SPLIT; weight={variant.weight:.0f}"
    return FlagResult(
        enabled=feature.enabled,
        feature_key=feature.feature_key,
        name=name,
        value=value,
        reason=reason,
    )


def select_variant(
    variants: Sequence[FeatureVariant], percentage: float
) -> FeatureVariant | None:
    """累積ウェイトの範囲 [start, start + weight) に percentage を含む候補を返す。

    候補は priority の昇順（未指定は末尾、同値は宣言順）で走査する。
    どの範囲にも入らなければ None（control 値を使う）。
    """
    ordered = sorted(
        variants, key=lambda v: (v.priority is None, v.priority if v.priority is not None else 0)
    )
    start = 0.0
    for variant in ordered:
        limit = start + variant.weight
        if start <= percentage < limit:
            return variant
        start = limit
    return None


def get_environment_feature_states(env: EnvironmentModel) -> list[FeatureStateModel]:
    """環境デフォルトのフィーチャーステートを返す。"""
    if env.project.hide_disabled_flags:
        return [fs for fs in env.feature_states if fs.enabled]
    return list(env.feature_states)


def get_environment_feature_state(env: EnvironmentModel, feature_name: str) -> FeatureStateModel:
    for fs in env.feature_states:
        if fs.feature.name == feature_name:
            return fs
    raise FlagEngineError(
        code=FlagEngineErrorCodes.FEATURE_NOT_FOUND,
        message=f"Feature not found: {feature_name}",
    )


def get_identity_feature_states(
    env: EnvironmentModel,
    identity: IdentityModel,
    traits: Traits = None,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> list[FeatureStateModel]:
    """アイデンティティのフィーチャーステートを解決する。

    環境デフォルト -> 一致したセグメント（ドキュメント順） -> アイデンティティ
    オーバーライドの順に上書きする。アイデンティティオーバーライドは環境に
    存在するフィーチャーのみを上書きする。
    """
    feature_states = _identity_feature_states_by_id(env, identity, traits, conventions)
    states = list(feature_states.values())
    if env.project.hide_disabled_flags:
        return [fs for fs in states if fs.enabled]
    return states


def get_identity_feature_state(
    env: EnvironmentModel,
    identity: IdentityModel,
    feature_name: str,
    traits: Traits = None,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> FeatureStateModel:
    feature_states = _identity_feature_states_by_id(env, identity, traits, conventions)
    for fs in feature_states.values():
        if fs.feature.name == feature_name:
            return fs
    raise FlagEngineError(
        code=FlagEngineErrorCodes.FEATURE_NOT_FOUND,
        message=f"Feature not found: {feature_name}",
    )


def get_identity_segments(
    env: EnvironmentModel,
    identity: IdentityModel,
    traits: Traits = None,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> list[SegmentModel]:
    """アイデンティティが含まれるセグメントをドキュメント順に返す。"""
    ctx = _identity_context(env, identity, traits)
    return [
        segment
        for segment in env.project.segments
        if is_context_in_segment(ctx, map_segment_to_segment_context(segment), conventions)
    ]


def is_identity_in_segment(
    identity: IdentityModel,
    segment: SegmentModel,
    traits: Traits = None,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> bool:
    """アイデンティティがセグメントに含まれるか判定する。"""
    ctx = map_context_and_identity_data_to_context(
        EvaluationContext(
            environment=EnvironmentContext(
                key=identity.environment_api_key, name=identity.environment_api_key
            )
        ),
        identity.identifier,
        _effective_traits(identity, traits),
        identity_key=identity.hash_key,
    )
    return is_context_in_segment(ctx, map_segment_to_segment_context(segment), conventions)


def _identity_feature_states_by_id(
    env: EnvironmentModel,
    identity: IdentityModel,
    traits: Traits,
    conventions: EvaluationConventions,
) -> dict[int, FeatureStateModel]:
    feature_states = {fs.feature.id: fs for fs in env.feature_states}

    for segment in get_identity_segments(env, identity, traits, conventions):
        for fs in segment.feature_states:
            existing = feature_states.get(fs.feature.id)
            if existing is not None and existing.is_higher_segment_priority(fs):
                continue
            feature_states[fs.feature.id] = fs

    for fs in identity.identity_features:
        if fs.feature.id in feature_states:
            feature_states[fs.feature.id] = fs

    return feature_states


def _identity_context(
    env: EnvironmentModel, identity: IdentityModel, traits: Traits
) -> EvaluationContext:
    base = EvaluationContext(
        environment=EnvironmentContext(key=env.api_key, name=env.project.name)
    )
    return map_context_and_identity_data_to_context(
        base,
        identity.identifier,
        _effective_traits(identity, traits),
        identity_key=identity.hash_key,
    )


def _effective_traits(identity: IdentityModel, traits: Traits) -> Traits:
    # 明示的に渡された trait がアイデンティティの保存済み trait より優先
    if traits:
        return traits
    return identity.identity_traits
