"""InMemoryFeatureFlagClient 実装"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from .client import BaseFlagsClient
from .config import LocalFlagsConfig
from .evaluator import evaluate
from .models import EvaluationContext, ExperimentationFlag, SelectedVariant
from .parser import parse_definitions

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryFeatureFlagClient(BaseFlagsClient):
    """テスト用インメモリフィーチャーフラグクライアント。

    ネットワークを使わず、設定したフラグ定義をローカル評価と同じ規則で評価する。
    """

    evaluation_mode = "local"

    def __init__(self) -> None:
        super().__init__(LocalFlagsConfig(project_token="in-memory", enable_polling=False))
        self._flags: dict[str, ExperimentationFlag] = {}

    @property
    def logger(self) -> logging.Logger:
        return logger

    def set_flag(self, flag: ExperimentationFlag) -> None:
        """フラグを設定する。"""
        flags = dict(self._flags)
        flags[flag.key] = flag
        self._flags = flags

    def set_definitions(self, payload: Any) -> None:
        """定義ドキュメントでフラグ全体を置き換える。"""
        self._flags = parse_definitions(payload)

    def get_flag(self, flag_key: str) -> ExperimentationFlag | None:
        return self._flags.get(flag_key)

    def get_variant(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]:
        self._check_flag_key(flag_key)
        return evaluate(self._flags.get(flag_key), context, flag_key, fallback)
