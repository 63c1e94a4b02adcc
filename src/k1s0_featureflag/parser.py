"""フラグ定義ドキュメントのパーサー"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import (
    DISTINCT_ID,
    ExperimentationFlag,
    Rollout,
    RuleSet,
    Variant,
    VariantOverride,
)

logger = logging.getLogger(__name__)


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        logger.warning("Invalid UUID for experiment_id", extra={"experiment_id": value})
        return None


def _parse_variant(data: Mapping[str, Any]) -> Variant:
    return Variant(
        key=str(data.get("key", "")),
        value=data.get("value"),
        is_control=bool(data.get("is_control", False)),
        split=float(data.get("split") or 0.0),
    )


def _parse_rollout(data: Mapping[str, Any]) -> Rollout:
    variant_override = None
    override_data = data.get("variant_override")
    if isinstance(override_data, Mapping) and override_data.get("key"):
        variant_override = VariantOverride(key=str(override_data["key"]))

    legacy = data.get("runtime_evaluation_definition")
    splits = data.get("variant_splits")
    return Rollout(
        rollout_percentage=float(data.get("rollout_percentage") or 0.0),
        runtime_evaluation_rule=data.get("runtime_evaluation_rule"),
        legacy_runtime_evaluation_definition=legacy if isinstance(legacy, Mapping) else None,
        variant_override=variant_override,
        variant_splits=(
            {str(k): float(v or 0.0) for k, v in splits.items()}
            if isinstance(splits, Mapping)
            else None
        ),
    )


def parse_ruleset(data: Mapping[str, Any] | None) -> RuleSet:
    """ruleset オブジェクトを RuleSet に変換する。"""
    if not data:
        return RuleSet()
    variants = sorted(
        (_parse_variant(v) for v in data.get("variants") or []),
        key=lambda v: v.key,
    )
    rollouts = [_parse_rollout(r) for r in data.get("rollout") or []]

    test_overrides = None
    test_data = data.get("test")
    if isinstance(test_data, Mapping) and isinstance(test_data.get("users"), Mapping):
        test_overrides = {str(k): str(v) for k, v in test_data["users"].items()}

    return RuleSet(
        variants=tuple(variants),
        rollouts=tuple(rollouts),
        test_user_overrides=test_overrides,
    )


def parse_flag(data: Mapping[str, Any]) -> ExperimentationFlag:
    """flags 配列の 1 要素を ExperimentationFlag に変換する。"""
    is_active = data.get("is_experiment_active")
    return ExperimentationFlag(
        key=str(data.get("key", "")),
        ruleset=parse_ruleset(data.get("ruleset")),
        id=str(data.get("id", "")),
        name=str(data.get("name", "")),
        status=str(data.get("status", "")),
        project_id=int(data.get("project_id") or 0),
        context=str(data.get("context") or DISTINCT_ID),
        experiment_id=_parse_uuid(data.get("experiment_id")),
        is_experiment_active=bool(is_active) if is_active is not None else None,
    )


def parse_definitions(payload: Any) -> dict[str, ExperimentationFlag]:
    """定義ドキュメント全体をフラグキーごとの辞書に変換する。

    Raises:
        FeatureFlagError: ドキュメントの形式が不正な場合 (PARSE_ERROR)
    """
    if not isinstance(payload, Mapping):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_ERROR,
            message=f"definitions must be an object, got {type(payload).__name__}",
        )
    flags = payload.get("flags")
    if flags is None:
        return {}
    if not isinstance(flags, list):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_ERROR,
            message="'flags' must be an array",
        )
    try:
        definitions: dict[str, ExperimentationFlag] = {}
        for flag_data in flags:
            flag = parse_flag(flag_data)
            definitions[flag.key] = flag
        return definitions
    except (AttributeError, TypeError, ValueError) as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_ERROR,
            message=f"Failed to parse flag definitions: {e}",
            cause=e,
        ) from e
