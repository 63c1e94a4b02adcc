"""フラグクライアントのプロトコルと共通実装"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from importlib import metadata
from typing import Any, Protocol, TypeVar

import httpx

from .config import FlagsConfig
from .exposure import ExposureTracker
from .models import EvaluationContext, SelectedVariant
from .tracing import generate_traceparent

T = TypeVar("T")

LIB_NAME = "python"


def _lib_version() -> str:
    try:
        return metadata.version("k1s0-featureflag")
    except metadata.PackageNotFoundError:
        return "0.0.0"


class FlagsClientProtocol(Protocol):
    """フィーチャーフラグクライアントプロトコル。"""

    def get_variant(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]: ...

    def get_variant_value(
        self, flag_key: str, fallback_value: T, context: EvaluationContext
    ) -> T: ...

    def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool: ...


class BaseFlagsClient(ABC):
    """ローカル・リモート評価クライアントの共通基底クラス。"""

    evaluation_mode: str = ""

    def __init__(
        self,
        config: FlagsConfig,
        exposure_tracker: ExposureTracker | None = None,
    ) -> None:
        self._config = config
        self._exposure_tracker = exposure_tracker
        self._lib_version = _lib_version()

    @property
    def config(self) -> FlagsConfig:
        return self._config

    @property
    @abstractmethod
    def logger(self) -> logging.Logger: ...

    def _request_headers(self) -> dict[str, str]:
        """リクエストごとに新しい traceparent を付与したヘッダー。"""
        return {
            "Content-Type": "application/json",
            "X-Scheme": "https",
            "X-Forwarded-Proto": "https",
            "traceparent": generate_traceparent(),
        }

    def _base_params(self) -> dict[str, str]:
        return {
            "mp_lib": LIB_NAME,
            "lib_version": self._lib_version,
            "token": self._config.project_token,
        }

    def _make_sync_client(self, transport: httpx.BaseTransport | None = None) -> httpx.Client:
        return httpx.Client(
            base_url=self._config.base_url,
            auth=(self._config.project_token, ""),
            timeout=self._config.request_timeout_seconds,
            transport=transport,
        )

    def _make_async_client(
        self, transport: httpx.AsyncBaseTransport | None = None
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            auth=(self._config.project_token, ""),
            timeout=self._config.request_timeout_seconds,
            transport=transport,
        )

    @staticmethod
    def _check_flag_key(flag_key: str) -> None:
        if not flag_key or not isinstance(flag_key, str):
            raise ValueError("flag_key must be a non-empty string")

    @abstractmethod
    def get_variant(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]:
        """フラグを評価してバリアントを返す。決定できなければ fallback を返す。"""
        ...

    def get_variant_value(
        self, flag_key: str, fallback_value: T, context: EvaluationContext
    ) -> T:
        """フラグを評価してバリアント値を返す。"""
        result = self.get_variant(flag_key, SelectedVariant(fallback_value), context)
        return result.variant_value  # type: ignore[return-value]

    def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool:
        """バリアント値が厳密に True の場合のみ True を返す。"""
        result: SelectedVariant[Any] = self.get_variant(
            flag_key, SelectedVariant(False), context
        )
        return result.variant_value is True
