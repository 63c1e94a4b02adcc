"""featureflag ライブラリの例外型定義"""

from __future__ import annotations


class FeatureFlagError(Exception):
    """featureflag ライブラリのエラー基底クラス。"""

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


class FeatureFlagErrorCodes:
    """エラーコード定数。"""

    CONNECTION_ERROR: str = "CONNECTION_ERROR"
    CONFIG_ERROR: str = "CONFIG_ERROR"
    HTTP_ERROR: str = "HTTP_ERROR"
    PARSE_ERROR: str = "PARSE_ERROR"
