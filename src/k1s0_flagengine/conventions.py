"""評価エンジンの振る舞いを切り替える設定値"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class PercentageSplitComparison(StrEnum):
    """PERCENTAGE_SPLIT 条件でハッシュ値としきい値を比較する方向。"""

    # hash <= threshold で一致
    INCLUSIVE = "inclusive"
    # hash < threshold で一致
    EXCLUSIVE = "exclusive"


@dataclass(frozen=True)
class EvaluationConventions:
    """エンジン実装間で解釈が分かれる箇所の設定。

    percentage_split_comparison: しきい値の比較方向
    empty_all_rule_matches: 条件を持たない ALL ルールを一致とみなすか
    """

    percentage_split_comparison: PercentageSplitComparison = (
        PercentageSplitComparison.INCLUSIVE
    )
    empty_all_rule_matches: bool = True

    def percentage_matches(self, hashed: float, threshold: float) -> bool:
        if self.percentage_split_comparison == PercentageSplitComparison.EXCLUSIVE:
            return hashed < threshold
        return hashed <= threshold


DEFAULT_CONVENTIONS = EvaluationConventions()
