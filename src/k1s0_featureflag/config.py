"""フラグクライアント設定（pydantic BaseModel）"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes

DEFAULT_API_HOST = "api.mixpanel.com"
EU_API_HOST = "api-eu.mixpanel.com"

CONFIG_SECTION = "featureflag"


class FlagsConfig(BaseModel):
    """ローカル・リモート共通の接続設定。"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_token: str = Field(min_length=1)
    api_host: str = Field(default=DEFAULT_API_HOST, min_length=1)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def base_url(self) -> str:
        """スキーム付きの API ベース URL。"""
        if "://" in self.api_host:
            return self.api_host.rstrip("/")
        return f"https://{self.api_host.rstrip('/')}"


class LocalFlagsConfig(FlagsConfig):
    """ローカル評価クライアント設定。"""

    enable_polling: bool = True
    polling_interval_seconds: float = Field(default=60.0, gt=0)


class RemoteFlagsConfig(FlagsConfig):
    """リモート評価クライアント設定。"""


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージして新しい辞書を返す。"""
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config root must be a mapping: {path}",
        )
    return data


def build_config(
    data: dict[str, Any], kind: Literal["local", "remote"] = "local"
) -> LocalFlagsConfig | RemoteFlagsConfig:
    """辞書から設定モデルを生成する。

    Raises:
        FeatureFlagError: 検証に失敗した場合 (CONFIG_ERROR)
    """
    model: type[FlagsConfig] = LocalFlagsConfig if kind == "local" else RemoteFlagsConfig
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e


def load_config(
    path: Path,
    kind: Literal["local", "remote"] = "local",
    env_path: Path | None = None,
) -> LocalFlagsConfig | RemoteFlagsConfig:
    """YAML の featureflag セクションを読み込んで設定を返す。

    env_path: 環境別設定ファイル（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    section = data.get(CONFIG_SECTION, {})
    if not isinstance(section, dict):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"'{CONFIG_SECTION}' section must be a mapping: {path}",
        )
    return build_config(section, kind)
