"""評価コンテキストと評価結果のデータモデル"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from functools import cached_property
from typing import Any

TraitValue = bool | int | float | str | None


class RuleType(StrEnum):
    """セグメントルールの量化子。"""

    ALL = "ALL"
    ANY = "ANY"
    NONE = "NONE"


class Operator(StrEnum):
    """条件演算子。"""

    EQUAL = "EQUAL"
    NOT_EQUAL = "NOT_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_INCLUSIVE = "GREATER_THAN_INCLUSIVE"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_INCLUSIVE = "LESS_THAN_INCLUSIVE"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    IN = "IN"
    REGEX = "REGEX"
    MODULO = "MODULO"
    PERCENTAGE_SPLIT = "PERCENTAGE_SPLIT"
    IS_SET = "IS_SET"
    IS_NOT_SET = "IS_NOT_SET"


@dataclass(frozen=True)
class EnvironmentContext:
    """環境コンテキスト。"""

    key: str
    name: str


@dataclass(frozen=True)
class IdentityContext:
    """アイデンティティコンテキスト。

    key はパーセンテージ分割と多変量選択のハッシュに使う。
    """

    identifier: str
    key: str
    traits: dict[str, TraitValue] = field(default_factory=dict)


@dataclass(frozen=True)
class FeatureVariant:
    """多変量フィーチャーの候補値。weight はパーセント値。"""

    value: Any
    weight: float
    priority: int | None = None


@dataclass(frozen=True)
class FeatureContext:
    """フィーチャーコンテキスト。value は環境デフォルト（多変量の場合は control 値）。"""

    key: str
    feature_key: str
    name: str
    enabled: bool
    value: Any = None
    variants: tuple[FeatureVariant, ...] = ()
    priority: float | None = None


@dataclass(frozen=True)
class Condition:
    """セグメントルールの条件。value は文字列または文字列リスト。"""

    operator: str
    property: str = ""
    value: str | list[str] | None = None


@dataclass(frozen=True)
class SegmentRule:
    """セグメントルール（再帰的なツリー）。"""

    type: str
    conditions: tuple[Condition, ...] = ()
    rules: tuple[SegmentRule, ...] = ()


@dataclass(frozen=True)
class SegmentContext:
    """セグメントコンテキスト。"""

    key: str
    name: str
    rules: tuple[SegmentRule, ...] = ()
    overrides: tuple[FeatureContext, ...] = ()
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class EvaluationContext:
    """フラグ評価コンテキスト。1 回の評価の間は変更しない。"""

    environment: EnvironmentContext
    identity: IdentityContext | None = None
    features: dict[str, FeatureContext] = field(default_factory=dict)
    segments: dict[str, SegmentContext] = field(default_factory=dict)

    @cached_property
    def path_document(self) -> dict[str, Any]:
        """JSONPath 解決用の辞書表現。"""
        document: dict[str, Any] = {
            "environment": {
                "key": self.environment.key,
                "name": self.environment.name,
            },
        }
        if self.identity is not None:
            document["identity"] = {
                "identifier": self.identity.identifier,
                "key": self.identity.key,
                "traits": dict(self.identity.traits),
            }
        return document


@dataclass(frozen=True)
class FlagResult:
    """フラグ評価結果。"""

    enabled: bool
    feature_key: str
    name: str
    value: Any = None
    reason: str | None = None


@dataclass(frozen=True)
class SegmentResult:
    """一致したセグメント。"""

    key: str
    name: str
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class EvaluationResult:
    """評価結果全体。"""

    flags: dict[str, FlagResult] = field(default_factory=dict)
    segments: list[SegmentResult] = field(default_factory=list)
