"""flagengine ライブラリの例外型定義"""

from __future__ import annotations


class FlagEngineError(Exception):
    """flagengine ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FlagEngineErrorCodes:
    """FlagEngineError のエラーコード定数。"""

    ENVIRONMENT_NOT_AVAILABLE: str = "ENVIRONMENT_NOT_AVAILABLE"
    FEATURE_NOT_FOUND: str = "FEATURE_NOT_FOUND"
    FETCH_ERROR: str = "FETCH_ERROR"
    INVALID_DOCUMENT: str = "INVALID_DOCUMENT"
    STREAM_ERROR: str = "STREAM_ERROR"
    MALFORMED_EVENT: str = "MALFORMED_EVENT"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"
