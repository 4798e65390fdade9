"""環境ドキュメントの取得"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .models import EnvironmentModel

ENVIRONMENT_DOCUMENT_PATH = "environment-document/"
ENVIRONMENT_KEY_HEADER = "X-Environment-Key"


class EnvironmentFetcher(ABC):
    """環境ドキュメント取得の抽象基底クラス。"""

    @abstractmethod
    async def fetch(self, timeout: float | None = None) -> EnvironmentModel:
        """最新の環境ドキュメントを取得する。"""
        ...


class HttpEnvironmentFetcher(EnvironmentFetcher):
    """httpx を使った環境ドキュメント取得。"""

    def __init__(
        self,
        base_url: str,
        environment_key: str,
        timeout_seconds: float = 10.0,
        custom_headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        headers: dict[str, str] = {"Accept": "application/json"}
        headers.update(custom_headers or {})
        headers[ENVIRONMENT_KEY_HEADER] = environment_key
        self._headers = headers

    def _make_client(self, timeout: float | None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=timeout if timeout is not None else self._timeout_seconds,
        )

    def _handle_error(self, resp: httpx.Response) -> None:
        if resp.status_code >= 400:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.FETCH_ERROR,
                message=f"fetch environment: HTTP {resp.status_code}: {resp.text}",
            )

    async def fetch(self, timeout: float | None = None) -> EnvironmentModel:
        try:
            async with self._make_client(timeout) as client:
                resp = await client.get(ENVIRONMENT_DOCUMENT_PATH)
            self._handle_error(resp)
            data: dict[str, Any] = resp.json()
            return EnvironmentModel.model_validate(data)
        except FlagEngineError:
            raise
        except ValidationError as e:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.INVALID_DOCUMENT,
                message=f"Invalid environment document: {e}",
                cause=e,
            ) from e
        except Exception as e:
            raise FlagEngineError(
                code=FlagEngineErrorCodes.FETCH_ERROR,
                message=f"Failed to fetch environment document: {e}",
                cause=e,
            ) from e


class FileEnvironmentFetcher(EnvironmentFetcher):
    """ローカルの JSON ファイルから環境ドキュメントを読み込む。"""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    async def fetch(self, timeout: float | None = None) -> EnvironmentModel:
        return read_environment_from_file(self._path)


def read_environment_from_file(path: Path | str) -> EnvironmentModel:
    """JSON ファイルの環境ドキュメントを読み込む。"""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.READ_FILE,
            message=f"Failed to read environment file: {path}",
            cause=e,
        ) from e
    try:
        return EnvironmentModel.model_validate(json.loads(text))
    except (ValueError, ValidationError) as e:
        raise FlagEngineError(
            code=FlagEngineErrorCodes.INVALID_DOCUMENT,
            message=f"Invalid environment document: {path}: {e}",
            cause=e,
        ) from e
