"""featureflag データモデル

すべてのモデルは構築後に変更できない。定義の更新はスナップショット全体の
置き換えで行う。
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DISTINCT_ID = "distinct_id"
CUSTOM_PROPERTIES = "custom_properties"


def _check_ratio(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1: {value}")


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if mapping is None:
        return None
    return MappingProxyType(dict(mapping))


def freeze_json(value: Any) -> Any:
    """JSON 値を読み取り専用に変換する。オブジェクトは MappingProxyType、配列は tuple。"""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_json(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(freeze_json(v) for v in value)
    return value


@dataclass(frozen=True)
class Variant:
    """実験の 1 アーム。"""

    key: str
    value: Any = None
    is_control: bool = False
    split: float = 0.0

    def __post_init__(self) -> None:
        _check_ratio("split", self.split)
        object.__setattr__(self, "value", freeze_json(self.value))


@dataclass(frozen=True)
class VariantOverride:
    """分割を無視して選択するバリアント。"""

    key: str


@dataclass(frozen=True)
class Rollout:
    """ロールアウトの 1 段。

    rollout_percentage でユーザーを絞り込み、任意のターゲティング条件と
    バリアント選択方法を持つ。
    """

    rollout_percentage: float
    runtime_evaluation_rule: Any = None
    legacy_runtime_evaluation_definition: Mapping[str, Any] | None = None
    variant_override: VariantOverride | None = None
    variant_splits: Mapping[str, float] | None = None

    def __post_init__(self) -> None:
        _check_ratio("rollout_percentage", self.rollout_percentage)
        object.__setattr__(
            self, "runtime_evaluation_rule", freeze_json(self.runtime_evaluation_rule)
        )
        object.__setattr__(
            self,
            "legacy_runtime_evaluation_definition",
            _freeze(self.legacy_runtime_evaluation_definition),
        )
        object.__setattr__(self, "variant_splits", _freeze(self.variant_splits))

    @property
    def has_runtime_evaluation(self) -> bool:
        return self.runtime_evaluation_rule is not None or bool(
            self.legacy_runtime_evaluation_definition
        )

    @property
    def has_variant_override(self) -> bool:
        return self.variant_override is not None

    @property
    def has_variant_splits(self) -> bool:
        return bool(self.variant_splits)


@dataclass(frozen=True)
class RuleSet:
    """1 つのフラグの設定全体。rollouts は順序どおりに評価される。"""

    variants: tuple[Variant, ...] = ()
    rollouts: tuple[Rollout, ...] = ()
    test_user_overrides: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "variants", tuple(self.variants))
        object.__setattr__(self, "rollouts", tuple(self.rollouts))
        object.__setattr__(self, "test_user_overrides", _freeze(self.test_user_overrides))

    @property
    def has_test_user_overrides(self) -> bool:
        return bool(self.test_user_overrides)

    def find_variant(self, key: str) -> Variant | None:
        """キーでバリアントを検索する。"""
        for variant in self.variants:
            if variant.key == key:
                return variant
        return None


@dataclass(frozen=True)
class ExperimentationFlag:
    """ルールセットとフラグのメタデータ。

    context はバケット割り当てに使うプロパティ名（既定は distinct_id）。
    """

    key: str
    ruleset: RuleSet = field(default_factory=RuleSet)
    id: str = ""
    name: str = ""
    status: str = ""
    project_id: int = 0
    context: str = DISTINCT_ID
    experiment_id: uuid.UUID | None = None
    is_experiment_active: bool | None = None


@dataclass(frozen=True)
class EvaluationContext:
    """フラグ評価コンテキスト。呼び出しごとに渡され、保持されない。"""

    distinct_id: str
    custom_properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.distinct_id is None:
            raise ValueError("distinct_id cannot be None")
        object.__setattr__(self, "custom_properties", _freeze(self.custom_properties))

    def get_property(self, name: str) -> Any:
        """バケット割り当てキーとなるプロパティ値を返す。"""
        if name == DISTINCT_ID:
            return self.distinct_id
        return self.custom_properties.get(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            DISTINCT_ID: self.distinct_id,
            CUSTOM_PROPERTIES: dict(self.custom_properties),
        }


@dataclass(frozen=True)
class SelectedVariant(Generic[T]):
    """フラグ評価結果。

    variant_key が None の場合はフォールバック値が返されたことを示す。
    これはエラーではない。
    """

    variant_value: T | None = None
    variant_key: str | None = None
    experiment_id: uuid.UUID | None = None
    is_experiment_active: bool | None = None
    is_qa_tester: bool | None = None

    @property
    def success(self) -> bool:
        return self.variant_key is not None

    @property
    def is_fallback(self) -> bool:
        return self.variant_key is None
