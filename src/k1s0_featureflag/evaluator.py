"""ローカル評価の決定関数

副作用を持たない純粋関数として実装しており、同一の RuleSet に対して
複数スレッドから同時に呼び出せる。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, TypeVar

from .hashing import rollout_hash, to_float32, variant_hash
from .models import (
    DISTINCT_ID,
    EvaluationContext,
    ExperimentationFlag,
    Rollout,
    RuleSet,
    SelectedVariant,
    Variant,
)
from .rules import matches, matches_legacy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def select_by_split(entries: Iterable[tuple[Any, float]], hash_value: float) -> Any:
    """累積分割を順に辿り、hash_value < 累積値 となる最初の要素を返す。

    累積和と比較は単精度で行う。境界ちょうどの値は次の要素に属する。
    丸め誤差で選ばれなかった場合は最後の要素を返す。
    """
    hash_value = to_float32(hash_value)
    cumulative = 0.0
    last = None
    for item, split in entries:
        cumulative = to_float32(cumulative + to_float32(split))
        last = item
        if hash_value < cumulative:
            return item
    return last


def identity_string(value: Any) -> str:
    """バケット割り当てキーの文字列表現。真偽値は小文字の true / false。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def matches_targeting(rollout: Rollout, context: EvaluationContext) -> bool:
    """ロールアウトのターゲティング条件を判定する。条件が無ければ常に一致。"""
    if rollout.runtime_evaluation_rule is not None:
        return matches(rollout.runtime_evaluation_rule, context.custom_properties)
    if rollout.legacy_runtime_evaluation_definition:
        return matches_legacy(
            rollout.legacy_runtime_evaluation_definition, context.custom_properties
        )
    return True


def _resolve_variant(
    ruleset: RuleSet, rollout: Rollout, bucketing_key: str
) -> Variant | None:
    if rollout.variant_override is not None:
        return ruleset.find_variant(rollout.variant_override.key)
    hash_value = variant_hash(bucketing_key)
    if rollout.variant_splits:
        key = select_by_split(rollout.variant_splits.items(), hash_value)
        return ruleset.find_variant(key) if key is not None else None
    return select_by_split(((v, v.split) for v in ruleset.variants), hash_value)


def _selected(
    variant: Variant, flag: ExperimentationFlag | None, is_qa_tester: bool
) -> SelectedVariant[Any]:
    return SelectedVariant(
        variant_value=variant.value,
        variant_key=variant.key,
        experiment_id=flag.experiment_id if flag else None,
        is_experiment_active=flag.is_experiment_active if flag else None,
        is_qa_tester=is_qa_tester,
    )


def evaluate(
    definition: ExperimentationFlag | RuleSet | None,
    context: EvaluationContext,
    flag_key: str,
    fallback: SelectedVariant[T],
) -> SelectedVariant[T]:
    """ルールセットとコンテキストからバリアントを決定する。

    決定できない場合（未知のフラグ、ロールアウト不一致など）は fallback を
    そのまま返す。

    Raises:
        ValueError: flag_key が空の場合
    """
    if not flag_key:
        raise ValueError("flag_key cannot be empty")
    if definition is None:
        return fallback

    if isinstance(definition, ExperimentationFlag):
        flag: ExperimentationFlag | None = definition
        ruleset = definition.ruleset
        context_property = definition.context
    else:
        flag = None
        ruleset = definition
        context_property = DISTINCT_ID

    identity = context.get_property(context_property)
    if identity is None:
        logger.warning(
            "Bucketing property not found in context",
            extra={"flag_key": flag_key, "property": context_property},
        )
        return fallback

    if ruleset.test_user_overrides:
        override_key = ruleset.test_user_overrides.get(context.distinct_id)
        if override_key is not None:
            variant = ruleset.find_variant(override_key)
            if variant is not None:
                return _selected(variant, flag, is_qa_tester=True)

    bucketing_key = identity_string(identity) + flag_key
    bucket = to_float32(rollout_hash(bucketing_key))
    for rollout in ruleset.rollouts:
        if not matches_targeting(rollout, context):
            continue
        if bucket >= to_float32(rollout.rollout_percentage):
            continue
        variant = _resolve_variant(ruleset, rollout, bucketing_key)
        if variant is None:
            logger.warning(
                "Rollout selected but no variant resolved",
                extra={"flag_key": flag_key},
            )
            return fallback
        return _selected(variant, flag, is_qa_tester=False)

    return fallback
