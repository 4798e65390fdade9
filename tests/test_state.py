"""EnvironmentState のユニットテスト"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any

from conftest import OVERRIDDEN_IDENTIFIER
from k1s0_flagengine.models import EnvironmentModel
from k1s0_flagengine.state import EnvironmentState


def _environment(document: dict[str, Any], api_key: str, identifier: str) -> EnvironmentModel:
    data = {**document, "api_key": api_key}
    data["identity_overrides"] = [
        {**document["identity_overrides"][0], "identifier": identifier, "environment_api_key": api_key}
    ]
    return EnvironmentModel.model_validate(data)


def test_empty_state() -> None:
    """初期状態ではドキュメントもオーバーライドもないこと。"""
    state = EnvironmentState()
    assert state.get_environment() is None
    assert state.get_identity_override("anyone") is None
    assert state.snapshot() is None
    assert state.is_offline is False


def test_set_environment_builds_index(environment: EnvironmentModel) -> None:
    """設定したドキュメントからオーバーライドのインデックスとコンテキストが作られること。"""
    state = EnvironmentState()
    assert state.set_environment(environment) is True

    assert state.get_environment() is environment
    override = state.get_identity_override(OVERRIDDEN_IDENTIFIER)
    assert override is not None
    assert override.identity_features[0].feature_state_value == "some-overridden-value"
    snapshot = state.snapshot()
    assert snapshot is not None
    assert snapshot.evaluation_context is not None
    assert "feature_1" in snapshot.evaluation_context.features


def test_set_environment_replaces_overrides(environment_document: dict[str, Any]) -> None:
    """置き換え後は古いオーバーライドが参照できないこと。"""
    state = EnvironmentState()
    state.set_environment(_environment(environment_document, "key-a", "user-a"))
    state.set_environment(_environment(environment_document, "key-b", "user-b"))

    assert state.get_identity_override("user-a") is None
    assert state.get_identity_override("user-b") is not None


def test_offline_environment_ignores_updates(
    environment: EnvironmentModel, environment_document: dict[str, Any]
) -> None:
    """オフライン環境の設定後は set_environment が無視されること。"""
    state = EnvironmentState()
    state.set_offline_environment(environment)

    assert state.is_offline is True
    assert state.set_environment(_environment(environment_document, "other", "user-x")) is False
    assert state.get_environment() is environment


def test_concurrent_set_and_get_are_consistent(environment_document: dict[str, Any]) -> None:
    """並行する更新と読み取りで、ドキュメントとインデックスの組が崩れないこと。"""
    environments = [
        _environment(environment_document, f"key-{i}", f"user-{i}") for i in range(10)
    ]
    state = EnvironmentState()
    state.set_environment(environments[0])

    def writer(i: int) -> None:
        for _ in range(200):
            state.set_environment(environments[i % len(environments)])

    def reader(_: int) -> list[str]:
        errors: list[str] = []
        for _ in range(500):
            snapshot = state.snapshot()
            assert snapshot is not None
            api_key = snapshot.environment.api_key
            (identifier,) = snapshot.identity_overrides
            if identifier != api_key.replace("key-", "user-"):
                errors.append(f"{api_key}/{identifier}")
            ctx = snapshot.evaluation_context
            if ctx is None or ctx.environment.key != api_key:
                errors.append(f"context mismatch for {api_key}")
        return errors

    with ThreadPoolExecutor(max_workers=8) as pool:
        writes = [pool.submit(writer, i) for i in range(4)]
        reads = [pool.submit(reader, i) for i in range(4)]
        for w in writes:
            w.result()
        results = [r.result() for r in reads]

    assert all(not errors for errors in results)
