"""セグメント・ルール・条件の評価

評価中の不正な値（パースできないリテラル、不正な正規表現やセマンティック
バージョン等）はすべて「不一致」として扱い、例外を送出しない。
"""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from functools import lru_cache
from typing import Any

import semver
import structlog
from jsonpath_ng import parse as parse_jsonpath

from . import hashing
from .context import Condition, EvaluationContext, Operator, RuleType, SegmentContext, SegmentRule
from .conventions import DEFAULT_CONVENTIONS, EvaluationConventions

logger = structlog.get_logger(__name__)

_SEMVER_SUFFIX = ":semver"
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_TRUE_LITERALS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_LITERALS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def is_context_in_segment(
    ctx: EvaluationContext,
    segment: SegmentContext,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> bool:
    """コンテキストがセグメントに含まれるか判定する。ルールが空なら常に False。"""
    if not segment.rules:
        return False
    return all(
        context_matches_rule(ctx, rule, segment.key, conventions) for rule in segment.rules
    )


def context_matches_rule(
    ctx: EvaluationContext,
    rule: SegmentRule,
    segment_key: str,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> bool:
    """ルール自身の条件と、ネストしたすべてのルールが一致すれば True。"""
    if not _matches_conditions_by_rule_type(ctx, rule, segment_key, conventions):
        return False
    return all(
        context_matches_rule(ctx, nested, segment_key, conventions) for nested in rule.rules
    )


def _matches_conditions_by_rule_type(
    ctx: EvaluationContext,
    rule: SegmentRule,
    segment_key: str,
    conventions: EvaluationConventions,
) -> bool:
    if not rule.conditions:
        if rule.type == RuleType.ALL:
            return conventions.empty_all_rule_matches
        return rule.type == RuleType.NONE

    if rule.type == RuleType.ALL:
        return all(
            context_matches_condition(ctx, c, segment_key, conventions) for c in rule.conditions
        )
    if rule.type == RuleType.ANY:
        return any(
            context_matches_condition(ctx, c, segment_key, conventions) for c in rule.conditions
        )
    if rule.type == RuleType.NONE:
        return not any(
            context_matches_condition(ctx, c, segment_key, conventions) for c in rule.conditions
        )
    return False


def context_matches_condition(
    ctx: EvaluationContext,
    condition: Condition,
    segment_key: str,
    conventions: EvaluationConventions = DEFAULT_CONVENTIONS,
) -> bool:
    """単一条件を評価する。"""
    context_value = get_context_value(ctx, condition.property) if condition.property else None

    if condition.operator == Operator.PERCENTAGE_SPLIT:
        return _match_percentage_split(ctx, condition, segment_key, context_value, conventions)
    if condition.operator == Operator.IN:
        return _match_in(condition, context_value)
    if condition.operator == Operator.IS_NOT_SET:
        return context_value is None
    if condition.operator == Operator.IS_SET:
        return context_value is not None

    if context_value is not None and isinstance(condition.value, str):
        return parse_and_match(condition.operator, to_string(context_value), condition.value)
    return False


def get_context_value(ctx: EvaluationContext, property_: str) -> Any:
    """条件のプロパティに対応する値を解決する。

    "$." で始まる場合はコンテキストに対する JSONPath として評価し、
    プリミティブ値が得られなければ同名の trait にフォールバックする。
    """
    if property_.startswith("$."):
        value = _resolve_path(ctx, property_)
        if value is not None and _is_primitive(value):
            return value

    if ctx.identity is not None:
        return ctx.identity.traits.get(property_)
    return None


@lru_cache(maxsize=256)
def _compile_path(expression: str) -> Any:
    try:
        return parse_jsonpath(expression)
    except Exception as e:
        logger.debug("invalid context path", path=expression, error=str(e))
        return None


def _resolve_path(ctx: EvaluationContext, expression: str) -> Any:
    path = _compile_path(expression)
    if path is None:
        return None
    matches = path.find(ctx.path_document)
    if not matches:
        return None
    return matches[0].value


def _is_primitive(value: Any) -> bool:
    return isinstance(value, (str, bool, int, float))


def to_string(value: Any) -> str:
    """コンテキスト値を比較用の文字列に変換する。"""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


def _format_float(value: float) -> str:
    # 指数表記を使わない最短表現（12.0 -> "12"、1e-07 -> "0.0000001"）
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _match_percentage_split(
    ctx: EvaluationContext,
    condition: Condition,
    segment_key: str,
    context_value: Any,
    conventions: EvaluationConventions,
) -> bool:
    if context_value is not None:
        object_ids = [segment_key, to_string(context_value)]
    elif ctx.identity is not None:
        object_ids = [segment_key, ctx.identity.key]
    else:
        return False

    if not isinstance(condition.value, str):
        return False
    threshold = _parse_float(condition.value)
    # しきい値 0 以下は比較方向によらず一致しない
    if threshold is None or threshold <= 0:
        return False
    hashed = hashing.get_hashed_percentage_for_object_ids(object_ids)
    return conventions.percentage_matches(hashed, threshold)


def _match_in(condition: Condition, context_value: Any) -> bool:
    if context_value is None or condition.value is None:
        return False
    trait_value = to_string(context_value)

    if isinstance(condition.value, list):
        return trait_value in condition.value

    try:
        values = json.loads(condition.value)
    except ValueError:
        values = None
    if isinstance(values, list) and all(isinstance(v, str) for v in values):
        return trait_value in values
    return trait_value in condition.value.split(",")


def parse_and_match(operator: str, trait_value: str, condition_value: str) -> bool:
    """文字列化した両辺を型推論して比較する。

    MODULO / REGEX / CONTAINS / NOT_CONTAINS を先に処理し、次に ":semver"
    接尾辞、続いて bool -> int -> float の順で両辺がパースできる型で比較する。
    いずれにも当てはまらなければ文字列として比較する。
    """
    if operator == Operator.MODULO:
        return _match_modulo(trait_value, condition_value)
    if operator == Operator.REGEX:
        return _match_regex(trait_value, condition_value)
    if operator == Operator.CONTAINS:
        return condition_value in trait_value
    if operator == Operator.NOT_CONTAINS:
        return condition_value not in trait_value

    if condition_value.endswith(_SEMVER_SUFFIX):
        return _match_semver(operator, trait_value, condition_value[: -len(_SEMVER_SUFFIX)])

    b1, b2 = _parse_bool(trait_value), _parse_bool(condition_value)
    if b1 is not None and b2 is not None:
        if operator == Operator.EQUAL:
            return b1 == b2
        if operator == Operator.NOT_EQUAL:
            return b1 != b2
        return False

    i1, i2 = _parse_int(trait_value), _parse_int(condition_value)
    if i1 is not None and i2 is not None:
        return _compare(operator, i1, i2)

    f1, f2 = _parse_float(trait_value), _parse_float(condition_value)
    if f1 is not None and f2 is not None:
        return _compare(operator, f1, f2)

    return _compare(operator, trait_value, condition_value)


def _compare(operator: str, v1: Any, v2: Any) -> bool:
    if operator == Operator.EQUAL:
        return v1 == v2
    if operator == Operator.NOT_EQUAL:
        return v1 != v2
    if operator == Operator.GREATER_THAN:
        return v1 > v2
    if operator == Operator.GREATER_THAN_INCLUSIVE:
        return v1 >= v2
    if operator == Operator.LESS_THAN:
        return v1 < v2
    if operator == Operator.LESS_THAN_INCLUSIVE:
        return v1 <= v2
    return False


def _match_regex(trait_value: str, pattern: str) -> bool:
    try:
        return re.search(pattern, trait_value) is not None
    except re.error:
        return False


def _match_modulo(trait_value: str, condition_value: str) -> bool:
    parts = condition_value.split("|")
    if len(parts) != 2:
        return False
    divisor = _parse_float(parts[0])
    remainder = _parse_float(parts[1])
    value = _parse_float(trait_value)
    if divisor is None or remainder is None or value is None:
        return False
    try:
        return math.fmod(value, divisor) == remainder
    except ValueError:
        return False


def _match_semver(operator: str, trait_value: str, condition_version: str) -> bool:
    try:
        expected = semver.Version.parse(condition_version)
        actual = semver.Version.parse(trait_value)
    except (ValueError, TypeError):
        return False
    return _compare(operator, actual.compare(expected), 0)


def _parse_bool(value: str) -> bool | None:
    if value in _TRUE_LITERALS:
        return True
    if value in _FALSE_LITERALS:
        return False
    return None


def _parse_int(value: str) -> int | None:
    if not _INT_PATTERN.fullmatch(value):
        return None
    parsed = int(value)
    if parsed < _INT64_MIN or parsed > _INT64_MAX:
        return None
    return parsed


def _parse_float(value: str) -> float | None:
    if not value or not value.isascii() or value != value.strip() or "_" in value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
