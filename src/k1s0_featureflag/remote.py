"""RemoteFlagsClient: 評価をリモートサービスに委譲するクライアント"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx

from .client import BaseFlagsClient
from .config import RemoteFlagsConfig
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .exposure import ExposureTracker, build_exposure_properties, send_exposure
from .models import EvaluationContext, SelectedVariant

logger = logging.getLogger(__name__)

T = TypeVar("T")

FLAGS_PATH = "/flags"


def _now_iso8601() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        logger.warning("Invalid UUID for experiment_id", extra={"experiment_id": value})
        return None


def _optional_bool(data: Mapping[str, Any], key: str) -> bool | None:
    value = data.get(key)
    return bool(value) if value is not None else None


class RemoteFlagsClient(BaseFlagsClient):
    """1 回の評価ごとにタイムアウト付きのリクエストを送るクライアント。

    タイムアウト・通信エラー・不正なレスポンスは fallback として扱い、
    呼び出し元には例外を送出しない。
    """

    evaluation_mode = "remote"

    def __init__(
        self,
        config: RemoteFlagsConfig,
        exposure_tracker: ExposureTracker | None = None,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, exposure_tracker)
        self._transport = transport
        self._async_transport = async_transport

    @property
    def logger(self) -> logging.Logger:
        return logger

    def _params(self, flag_key: str, context: EvaluationContext) -> dict[str, str]:
        params = self._base_params()
        params["flag_key"] = flag_key
        params["context"] = json.dumps(context.to_dict(), separators=(",", ":"))
        return params

    def _parse_response(
        self, resp: httpx.Response, flag_key: str
    ) -> SelectedVariant[Any] | None:
        """レスポンスから選択結果を取り出す。フラグが無い・未割り当てなら None。

        Raises:
            FeatureFlagError: HTTP エラーまたは不正なレスポンスの場合
        """
        if resp.status_code >= 400:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"get_variant({flag_key}): HTTP {resp.status_code}: {resp.text}",
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.PARSE_ERROR,
                message=f"Invalid JSON in flags response: {e}",
                cause=e,
            ) from e
        if not isinstance(data, Mapping):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.PARSE_ERROR,
                message="flags response must be an object",
            )
        flags = data.get("flags")
        if not isinstance(flags, Mapping) or flag_key not in flags:
            logger.warning("Flag not found in response", extra={"flag_key": flag_key})
            return None
        flag_data = flags[flag_key]
        if not isinstance(flag_data, Mapping):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.PARSE_ERROR,
                message=f"flag entry must be an object: {flag_key}",
            )
        variant_key = flag_data.get("variant_key")
        if variant_key is None:
            return None
        return SelectedVariant(
            variant_value=flag_data.get("variant_value"),
            variant_key=str(variant_key),
            experiment_id=_parse_uuid(flag_data.get("experiment_id")),
            is_experiment_active=_optional_bool(flag_data, "is_experiment_active"),
            is_qa_tester=_optional_bool(flag_data, "is_qa_tester"),
        )

    def _track(
        self,
        context: EvaluationContext,
        flag_key: str,
        result: SelectedVariant[Any],
        started_at: str,
    ) -> None:
        if result.variant_key is None:
            return
        properties = build_exposure_properties(
            flag_key,
            result.variant_key,
            self.evaluation_mode,
            result.experiment_id,
            result.is_experiment_active,
            result.is_qa_tester,
        )
        properties["Variant fetch start time"] = started_at
        properties["Variant fetch complete time"] = _now_iso8601()
        send_exposure(self._exposure_tracker, context.distinct_id, properties)

    def get_variant(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]:
        self._check_flag_key(flag_key)
        started_at = _now_iso8601()
        try:
            with self._make_sync_client(self._transport) as client:
                resp = client.get(
                    FLAGS_PATH,
                    params=self._params(flag_key, context),
                    headers=self._request_headers(),
                )
            result = self._parse_response(resp, flag_key)
        except (httpx.HTTPError, FeatureFlagError) as e:
            logger.warning(
                "Error evaluating flag remotely",
                extra={"flag_key": flag_key, "error": str(e)},
            )
            return fallback
        if result is None:
            return fallback
        if report_exposure:
            self._track(context, flag_key, result, started_at)
        return result  # type: ignore[return-value]

    async def get_variant_async(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]:
        """get_variant の非同期版。"""
        self._check_flag_key(flag_key)
        started_at = _now_iso8601()
        try:
            async with self._make_async_client(self._async_transport) as client:
                resp = await client.get(
                    FLAGS_PATH,
                    params=self._params(flag_key, context),
                    headers=self._request_headers(),
                )
            result = self._parse_response(resp, flag_key)
        except (httpx.HTTPError, FeatureFlagError) as e:
            logger.warning(
                "Error evaluating flag remotely",
                extra={"flag_key": flag_key, "error": str(e)},
            )
            return fallback
        if result is None:
            return fallback
        if report_exposure:
            self._track(context, flag_key, result, started_at)
        return result  # type: ignore[return-value]

    async def get_variant_value_async(
        self, flag_key: str, fallback_value: T, context: EvaluationContext
    ) -> T:
        result = await self.get_variant_async(flag_key, SelectedVariant(fallback_value), context)
        return result.variant_value  # type: ignore[return-value]

    async def is_enabled_async(self, flag_key: str, context: EvaluationContext) -> bool:
        result: SelectedVariant[Any] = await self.get_variant_async(
            flag_key, SelectedVariant(False), context
        )
        return result.variant_value is True
