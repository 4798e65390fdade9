"""クライアント設定（pydantic BaseModel）と YAML 読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .conventions import EvaluationConventions, PercentageSplitComparison
from .exceptions import FlagEngineError, FlagEngineErrorCodes


class RealtimeSection(BaseModel):
    """リアルタイム更新設定。base_url を省略した場合は ClientConfig.base_url を使う。"""

    enabled: bool = False
    base_url: str = ""
    connect_timeout_seconds: float = Field(default=10.0, gt=0)


class EvaluationSection(BaseModel):
    """評価エンジンの解釈設定。"""

    percentage_split_comparison: PercentageSplitComparison = PercentageSplitComparison.INCLUSIVE
    empty_all_rule_matches: bool = True


class BackoffSection(BaseModel):
    """再接続バックオフ設定。"""

    initial_seconds: float = Field(default=0.2, gt=0)
    max_seconds: float = Field(default=30.0, gt=0)


class LogSection(BaseModel):
    """ログ設定。LocalEvaluationClient.from_config_file で適用する。"""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class ClientConfig(BaseModel):
    """ローカル評価クライアントの設定。"""

    environment_key: str = ""
    base_url: str = ""
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    refresh_interval_seconds: float = Field(default=60.0, gt=0)
    custom_headers: dict[str, str] = Field(default_factory=dict)
    offline_environment_path: Path | None = None
    realtime: RealtimeSection = Field(default_factory=RealtimeSection)
    evaluation: EvaluationSection = Field(default_factory=EvaluationSection)
    backoff: BackoffSection = Field(default_factory=BackoffSection)
    log: LogSection = Field(default_factory=LogSection)

    @model_validator(mode="after")
    def _check_remote_settings(self) -> ClientConfig:
        if self.offline_environment_path is None:
            if not self.environment_key:
                raise ValueError("environment_key is required unless offline_environment_path is set")
            if not self.base_url:
                raise ValueError("base_url is required unless offline_environment_path is set")
        return self

    @property
    def is_offline(self) -> bool:
        return self.offline_environment_path is not None

    @property
    def realtime_base_url(self) -> str:
        return self.realtime.base_url or self.base_url

    def conventions(self) -> EvaluationConventions:
        return EvaluationConventions(
            percentage_split_comparison=self.evaluation.percentage_split_comparison,
            empty_all_rule_matches=self.evaluation.empty_all_rule_matches,
        )


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """環境別設定を base に重ねた新しい辞書を返す。

    セクション（辞書）は再帰的にマージし、それ以外の値は置換する。
    override 側で null を指定したキーは削除され、既定値に戻る
    （例: 環境別ファイルで offline_environment_path を無効化する）。
    """
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = value
    return result


def _read_config_file(path: Path) -> dict[str, Any]:
    """設定ファイルを 1 つ読み込む。

    相対パスの offline_environment_path はそのファイルのディレクトリ基準で解決する。
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FlagEngineError(
            code=FlagEngineErrorCodes.VALIDATION,
            message=f"Config file must contain a mapping: {path}",
        )

    offline_path = data.get("offline_environment_path")
    if isinstance(offline_path, str) and not Path(offline_path).is_absolute():
        data["offline_environment_path"] = str(path.parent / offline_path)
    return data


def load_config(base_path: Path | str, env_path: Path | str | None = None) -> ClientConfig:
    """設定ファイルを読み込んで ClientConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_config_file(Path(base_path))
    if env_path is not None and Path(env_path).exists():
        data = merge_config(data, _read_config_file(Path(env_path)))
    try:
        return ClientConfig.model_validate(data)
    except ValidationError as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
