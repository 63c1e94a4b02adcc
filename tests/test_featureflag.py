"""featureflag ライブラリのユニットテスト"""

from typing import Any

import pytest
from k1s0_featureflag import (
    EvaluationContext,
    ExperimentationFlag,
    FeatureFlagError,
    FeatureFlagErrorCodes,
    InMemoryFeatureFlagClient,
    Rollout,
    RuleSet,
    SelectedVariant,
    Variant,
    VariantOverride,
)
from k1s0_featureflag.exposure import build_exposure_properties, send_exposure

CTX = EvaluationContext("user-1")


def make_flag(key: str, value: Any, percentage: float = 1.0) -> ExperimentationFlag:
    return ExperimentationFlag(
        key=key,
        ruleset=RuleSet(
            variants=(Variant("on", value=value, split=1.0),),
            rollouts=(Rollout(percentage, variant_override=VariantOverride("on")),),
        ),
    )


def test_evaluate_enabled_flag() -> None:
    """有効フラグの評価。"""
    client = InMemoryFeatureFlagClient()
    client.set_flag(make_flag("feature-a", True))
    result = client.get_variant("feature-a", SelectedVariant(False), CTX)
    assert result.variant_key == "on"
    assert result.variant_value is True


def test_evaluate_disabled_flag() -> None:
    """0% ロールアウトのフラグは fallback。"""
    client = InMemoryFeatureFlagClient()
    client.set_flag(make_flag("feature-b", True, percentage=0.0))
    assert client.is_enabled("feature-b", CTX) is False


def test_evaluate_nonexistent_flag_returns_fallback() -> None:
    """存在しないフラグは fallback。"""
    client = InMemoryFeatureFlagClient()
    fallback: SelectedVariant[str] = SelectedVariant("default")
    assert client.get_variant("no-such-flag", fallback, CTX) is fallback


def test_is_enabled_requires_boolean_true() -> None:
    """is_enabled は値が True の場合のみ True。"""
    client = InMemoryFeatureFlagClient()
    client.set_flag(make_flag("on-flag", True))
    client.set_flag(make_flag("truthy-flag", "yes"))
    assert client.is_enabled("on-flag", CTX) is True
    assert client.is_enabled("truthy-flag", CTX) is False


def test_get_variant_value() -> None:
    client = InMemoryFeatureFlagClient()
    client.set_flag(make_flag("color", "blue"))
    assert client.get_variant_value("color", "red", CTX) == "blue"
    assert client.get_variant_value("missing", "red", CTX) == "red"


def test_set_flag_and_retrieve() -> None:
    """set_flag 後に get_flag で取得。"""
    client = InMemoryFeatureFlagClient()
    assert client.get_flag("dynamic") is None
    client.set_flag(make_flag("dynamic", True))
    flag = client.get_flag("dynamic")
    assert flag is not None
    assert flag.key == "dynamic"


def test_set_definitions_replaces_flags() -> None:
    client = InMemoryFeatureFlagClient()
    client.set_flag(make_flag("old", True))
    client.set_definitions(
        {
            "flags": [
                {
                    "key": "new",
                    "ruleset": {
                        "variants": [{"key": "on", "value": True, "split": 1.0}],
                        "rollout": [{"rollout_percentage": 1.0}],
                    },
                }
            ]
        }
    )
    assert client.get_flag("old") is None
    assert client.is_enabled("new", CTX) is True


def test_set_definitions_malformed() -> None:
    client = InMemoryFeatureFlagClient()
    with pytest.raises(FeatureFlagError) as exc_info:
        client.set_definitions({"flags": "nope"})
    assert exc_info.value.code == FeatureFlagErrorCodes.PARSE_ERROR


def test_error_string_contains_code() -> None:
    err = FeatureFlagError(code=FeatureFlagErrorCodes.HTTP_ERROR, message="HTTP 503")
    assert str(err) == "HTTP_ERROR: HTTP 503"


def test_build_exposure_properties() -> None:
    properties = build_exposure_properties("flag", "on", "local", is_qa_tester=False)
    assert properties == {
        "Experiment name": "flag",
        "Variant name": "on",
        "$experiment_type": "feature_flag",
        "Flag evaluation mode": "local",
        "$is_qa_tester": False,
    }


class FailingTracker:
    def track(self, distinct_id: str, event_name: str, properties: dict[str, Any]) -> None:
        raise RuntimeError("tracker down")


def test_send_exposure_swallows_tracker_errors() -> None:
    """トラッカーの失敗は呼び出し元に伝播しないこと。"""
    send_exposure(FailingTracker(), "user-1", {"Experiment name": "flag"})
    send_exposure(None, "user-1", {})
