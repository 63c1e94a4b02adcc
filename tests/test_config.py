"""クライアント設定のユニットテスト"""

from pathlib import Path

import pytest
from k1s0_featureflag import (
    DEFAULT_API_HOST,
    EU_API_HOST,
    FeatureFlagError,
    FeatureFlagErrorCodes,
    LocalFlagsConfig,
    RemoteFlagsConfig,
    build_config,
    load_config,
)
from k1s0_featureflag.config import deep_merge
from pydantic import ValidationError


def test_local_config_defaults() -> None:
    """LocalFlagsConfig のデフォルト値。"""
    config = LocalFlagsConfig(project_token="tok")
    assert config.api_host == DEFAULT_API_HOST
    assert config.request_timeout_seconds == 10.0
    assert config.enable_polling is True
    assert config.polling_interval_seconds == 60.0
    assert config.base_url == "https://api.mixpanel.com"


def test_eu_host_and_explicit_scheme() -> None:
    assert RemoteFlagsConfig(project_token="tok", api_host=EU_API_HOST).base_url == (
        "https://api-eu.mixpanel.com"
    )
    config = RemoteFlagsConfig(project_token="tok", api_host="http://127.0.0.1:8080/")
    assert config.base_url == "http://127.0.0.1:8080"


def test_config_is_frozen() -> None:
    config = LocalFlagsConfig(project_token="tok")
    with pytest.raises(ValidationError):
        config.project_token = "other"  # type: ignore[misc]


@pytest.mark.parametrize(
    "values",
    [
        {"project_token": ""},
        {"project_token": "tok", "request_timeout_seconds": 0},
        {"project_token": "tok", "polling_interval_seconds": -1},
        {"project_token": "tok", "unknown_option": True},
    ],
)
def test_invalid_values_rejected(values: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        LocalFlagsConfig(**values)  # type: ignore[arg-type]


def test_build_config_kinds() -> None:
    local = build_config({"project_token": "tok", "enable_polling": False})
    assert isinstance(local, LocalFlagsConfig)
    assert local.enable_polling is False
    remote = build_config({"project_token": "tok"}, kind="remote")
    assert isinstance(remote, RemoteFlagsConfig)


def test_build_config_validation_error() -> None:
    """検証失敗で FeatureFlagError(CONFIG_ERROR) が発生すること。"""
    with pytest.raises(FeatureFlagError) as exc_info:
        build_config({"project_token": "tok", "enable_polling": True}, kind="remote")
    assert exc_info.value.code == FeatureFlagErrorCodes.CONFIG_ERROR


def test_deep_merge() -> None:
    base = {"featureflag": {"project_token": "tok", "api_host": "a"}, "other": 1}
    override = {"featureflag": {"api_host": "b"}}
    assert deep_merge(base, override) == {
        "featureflag": {"project_token": "tok", "api_host": "b"},
        "other": 1,
    }
    assert base["featureflag"]["api_host"] == "a"


def test_load_config(tmp_path: Path) -> None:
    """featureflag セクションの読み込み。"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "featureflag:\n  project_token: tok\n  polling_interval_seconds: 5\n"
    )
    config = load_config(config_file)
    assert isinstance(config, LocalFlagsConfig)
    assert config.project_token == "tok"
    assert config.polling_interval_seconds == 5.0


def test_load_config_with_env_override(tmp_path: Path) -> None:
    """環境別設定のマージ確認。"""
    base_file = tmp_path / "base.yaml"
    base_file.write_text("featureflag:\n  project_token: tok\n  request_timeout_seconds: 10\n")
    env_file = tmp_path / "eu.yaml"
    env_file.write_text("featureflag:\n  api_host: api-eu.mixpanel.com\n")
    config = load_config(base_file, kind="remote", env_path=env_file)
    assert config.api_host == EU_API_HOST
    assert config.request_timeout_seconds == 10.0


def test_load_config_env_not_exists(tmp_path: Path) -> None:
    base_file = tmp_path / "base.yaml"
    base_file.write_text("featureflag:\n  project_token: tok\n")
    config = load_config(base_file, env_path=tmp_path / "nonexistent.yaml")
    assert config.api_host == DEFAULT_API_HOST


@pytest.mark.parametrize(
    "content",
    [
        "featureflag: {invalid: yaml: content:\n",
        "- just\n- a list\n",
        "featureflag: nope\n",
        "featureflag:\n  api_host: x\n",
    ],
)
def test_load_config_errors(tmp_path: Path, content: str) -> None:
    """不正な設定ファイルで CONFIG_ERROR が発生すること。"""
    bad_file = tmp_path / "bad.yaml"
    bad_file.write_text(content)
    with pytest.raises(FeatureFlagError) as exc_info:
        load_config(bad_file)
    assert exc_info.value.code == FeatureFlagErrorCodes.CONFIG_ERROR


def test_load_config_file_not_found(tmp_path: Path) -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        load_config(tmp_path / "missing.yaml")
    assert exc_info.value.code == FeatureFlagErrorCodes.CONFIG_ERROR
