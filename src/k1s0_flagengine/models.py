"""環境ドキュメントのデータモデル（pydantic BaseModel）"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import hashing

# UUID しか持たない多変量値の優先度の既定値
_WEAKEST_PRIORITY = 2**63 - 1


class _DocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class FeatureModel(_DocumentModel):
    """フィーチャー定義。"""

    id: int
    name: str
    type: str = "STANDARD"


class FeatureSegmentModel(_DocumentModel):
    """セグメントオーバーライドの優先度。小さいほど優先。"""

    priority: int = 0


class MultivariateFeatureOptionModel(_DocumentModel):
    id: int | None = None
    value: Any = None


class MultivariateFeatureStateValueModel(_DocumentModel):
    """多変量フィーチャーの配分。"""

    id: int | None = None
    multivariate_feature_option: MultivariateFeatureOptionModel
    percentage_allocation: float = 0.0
    mv_fs_value_uuid: str = ""

    @property
    def key(self) -> str:
        if self.id is not None:
            return str(self.id)
        return self.mv_fs_value_uuid

    @property
    def priority(self) -> int:
        """ID、なければ UUID の整数値を優先度として返す。"""
        if self.id is not None:
            return self.id
        if self.mv_fs_value_uuid:
            try:
                return uuid.UUID(self.mv_fs_value_uuid).int
            except ValueError:
                pass
        return _WEAKEST_PRIORITY


class FeatureStateModel(_DocumentModel):
    """フィーチャーステート。環境デフォルト、セグメント、アイデンティティで共通。"""

    feature: FeatureModel
    enabled: bool = False
    django_id: int | None = None
    featurestate_uuid: str = ""
    feature_segment: FeatureSegmentModel | None = None
    feature_state_value: Any = None
    multivariate_feature_state_values: list[MultivariateFeatureStateValueModel] = Field(
        default_factory=list
    )

    @property
    def key(self) -> str:
        """多変量選択のハッシュに使うキー。"""
        if self.django_id:
            return str(self.django_id)
        return self.featurestate_uuid

    def get_value(self, identity_key: str | None = None) -> Any:
        """アイデンティティに応じた値を返す。多変量でなければ生の値。"""
        if identity_key and self.multivariate_feature_state_values:
            return self._multivariate_value(identity_key)
        return self.feature_state_value

    def is_higher_segment_priority(self, other: FeatureStateModel) -> bool:
        """other より優先度の高いセグメントオーバーライドなら True。"""
        if self.feature_segment is None:
            return False
        if other.feature_segment is None:
            return True
        return self.feature_segment.priority < other.feature_segment.priority

    def _multivariate_value(self, identity_key: str) -> Any:
        percentage = hashing.get_hashed_percentage_for_object_ids([self.key, identity_key])
        start = 0.0
        for mv in sorted(self.multivariate_feature_state_values, key=lambda v: v.priority):
            limit = start + mv.percentage_allocation
            if start <= percentage < limit:
                return mv.multivariate_feature_option.value
            start = limit
        return self.feature_state_value


class SegmentConditionModel(_DocumentModel):
    operator: str
    property_: str | None = None
    value: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, v: Any) -> str | None:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)


class SegmentRuleModel(_DocumentModel):
    type: str
    rules: list[SegmentRuleModel] = Field(default_factory=list)
    conditions: list[SegmentConditionModel] = Field(default_factory=list)


class SegmentModel(_DocumentModel):
    """セグメント定義。"""

    id: int
    name: str
    rules: list[SegmentRuleModel] = Field(default_factory=list)
    feature_states: list[FeatureStateModel] = Field(default_factory=list)


class OrganisationModel(_DocumentModel):
    id: int
    name: str
    feature_analytics: bool = False
    stop_serving_flags: bool = False
    persist_trait_data: bool = True


class ProjectModel(_DocumentModel):
    """プロジェクト。hide_disabled_flags が真なら無効なフラグを返さない。"""

    id: int
    name: str
    hide_disabled_flags: bool = False
    organisation: OrganisationModel | None = None
    segments: list[SegmentModel] = Field(default_factory=list)


class TraitModel(_DocumentModel):
    trait_key: str
    trait_value: Any = None


class IdentityModel(_DocumentModel):
    """アイデンティティ。環境ドキュメントではオーバーライドの保持に使う。"""

    identifier: str
    environment_api_key: str = ""
    django_id: int | None = None
    identity_uuid: str = ""
    identity_traits: list[TraitModel] = Field(default_factory=list)
    identity_features: list[FeatureStateModel] = Field(default_factory=list)

    @property
    def composite_key(self) -> str:
        return f"{self.environment_api_key}_{self.identifier}"

    @property
    def hash_key(self) -> str:
        """多変量選択とパーセンテージ分割に使うキー。"""
        if self.django_id:
            return str(self.django_id)
        return self.composite_key


class EnvironmentModel(_DocumentModel):
    """環境ドキュメント。リフレッシュごとに丸ごと置き換える。"""

    id: int
    api_key: str
    project: ProjectModel
    feature_states: list[FeatureStateModel] = Field(default_factory=list)
    identity_overrides: list[IdentityModel] = Field(default_factory=list)
    updated_at: datetime | None = None

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v
