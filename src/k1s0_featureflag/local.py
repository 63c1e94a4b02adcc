"""LocalFlagsClient: キャッシュした定義をローカルで評価するクライアント"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Protocol, TypeVar

import httpx

from .client import BaseFlagsClient
from .config import LocalFlagsConfig
from .evaluator import evaluate
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .exposure import ExposureTracker, build_exposure_properties, send_exposure
from .models import EvaluationContext, ExperimentationFlag, SelectedVariant
from .parser import parse_definitions

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFINITIONS_PATH = "/flags/definitions"


class ClientState(StrEnum):
    """ローカルクライアントの状態。READY は以降のフェッチ失敗でも維持される。"""

    NOT_STARTED = "NOT_STARTED"
    POLLING_NOT_READY = "POLLING_NOT_READY"
    READY = "READY"


class DefinitionsFetcher(Protocol):
    """フラグ定義ドキュメントを取得するプロトコル。"""

    def fetch_definitions(self) -> Any: ...


class LocalFlagsClient(BaseFlagsClient):
    """フラグ定義をポーリングで取得し、ローカルで評価するクライアント。

    評価はメモリ上のスナップショットを読むだけで、ネットワーク I/O を待たない。
    スナップショットは新しい辞書への参照の差し替えで公開されるため、
    読み取り側にロックは不要。
    """

    evaluation_mode = "local"

    def __init__(
        self,
        config: LocalFlagsConfig,
        fetcher: DefinitionsFetcher | None = None,
        exposure_tracker: ExposureTracker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(config, exposure_tracker)
        self._local_config = config
        self._fetcher = fetcher
        self._transport = transport
        self._definitions: Mapping[str, ExperimentationFlag] = MappingProxyType({})
        self._state = ClientState.NOT_STARTED
        self._closed = False
        self._lifecycle_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._polling_started = False

    @property
    def logger(self) -> logging.Logger:
        return logger

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def definitions(self) -> Mapping[str, ExperimentationFlag]:
        """現在公開されているスナップショット。"""
        return self._definitions

    def are_flags_ready(self) -> bool:
        """一度でもフェッチに成功していれば True。"""
        return self._state == ClientState.READY

    # --- polling ---

    def start_polling_for_definitions(self) -> None:
        """初回フェッチを行い、設定が有効ならバックグラウンドポーリングを開始する。

        ポーリング中に再度呼んでも何もしない。refresh() 済みのクライアントや
        stop_polling_for_definitions() 後のクライアントでも開始できる。
        """
        with self._lifecycle_lock:
            if self._closed:
                logger.warning("Cannot start polling: client is closed")
                return
            if self._polling_started:
                return
            self._polling_started = True
            if self._state == ClientState.NOT_STARTED:
                self._state = ClientState.POLLING_NOT_READY

        self.refresh()

        if not self._local_config.enable_polling:
            return
        with self._lifecycle_lock:
            if self._closed or not self._polling_started or self._thread is not None:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._poll_loop,
                args=(self._stop_event,),
                name="k1s0-featureflag-poller",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Started polling for flag definitions",
            extra={"interval_seconds": self._local_config.polling_interval_seconds},
        )

    def _poll_loop(self, stop_event: threading.Event) -> None:
        interval = self._local_config.polling_interval_seconds
        while not stop_event.wait(interval):
            self.refresh()

    def refresh(self) -> bool:
        """定義を 1 回取得してスナップショットを差し替える。

        失敗時は直前のスナップショットを保持し、False を返す。
        """
        if self._closed:
            return False
        with self._refresh_lock:
            try:
                payload = self._fetch_payload()
                definitions = parse_definitions(payload)
            except Exception as e:
                logger.warning(
                    "Failed to fetch flag definitions",
                    extra={"error": str(e)},
                )
                return False
            if self._closed:
                return False
            self._definitions = MappingProxyType(definitions)
            self._state = ClientState.READY
        logger.debug(
            "Fetched flag definitions",
            extra={"count": len(definitions)},
        )
        return True

    def _fetch_payload(self) -> Any:
        if self._fetcher is not None:
            return self._fetcher.fetch_definitions()
        return self.fetch_definitions()

    def fetch_definitions(self) -> Any:
        """定義エンドポイントから JSON ドキュメントを取得する。

        Raises:
            FeatureFlagError: 通信失敗、HTTP エラー、JSON 不正の場合
        """
        try:
            with self._make_sync_client(self._transport) as client:
                resp = client.get(
                    DEFINITIONS_PATH,
                    params=self._base_params(),
                    headers=self._request_headers(),
                )
        except httpx.HTTPError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.CONNECTION_ERROR,
                message=f"Failed to fetch flag definitions: {e}",
                cause=e,
            ) from e
        if resp.status_code >= 400:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"fetch_definitions: HTTP {resp.status_code}: {resp.text}",
            )
        try:
            return resp.json()
        except ValueError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.PARSE_ERROR,
                message=f"Invalid JSON in flag definitions: {e}",
                cause=e,
            ) from e

    def stop_polling_for_definitions(self) -> None:
        """ポーリングを停止し、実行中の取得が終わるまで待つ。"""
        with self._lifecycle_lock:
            thread = self._thread
            self._thread = None
            self._polling_started = False
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
            logger.info("Stopped polling for flag definitions")

    def close(self) -> None:
        """ポーリングを停止する。複数回呼んでも安全。

        close 後も最後のスナップショットで評価を続けられる。
        """
        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
        self.stop_polling_for_definitions()

    def __enter__(self) -> LocalFlagsClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- evaluation ---

    def get_variant(
        self,
        flag_key: str,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool = True,
    ) -> SelectedVariant[T]:
        self._check_flag_key(flag_key)
        started = time.monotonic()
        if not self.are_flags_ready():
            return fallback
        flag = self._definitions.get(flag_key)
        if flag is None:
            logger.warning("Flag not found", extra={"flag_key": flag_key})
            return fallback
        return self._evaluate_flag(flag_key, flag, fallback, context, report_exposure, started)

    def get_all_variants(
        self, context: EvaluationContext, report_exposure: bool = True
    ) -> list[SelectedVariant[Any]]:
        """全フラグを同一スナップショットで評価し、選択されたものだけを返す。"""
        results: list[SelectedVariant[Any]] = []
        if not self.are_flags_ready():
            return results
        for flag_key, flag in self._definitions.items():
            fallback: SelectedVariant[Any] = SelectedVariant(None)
            result = self._evaluate_flag(
                flag_key, flag, fallback, context, report_exposure, time.monotonic()
            )
            if result.success:
                results.append(result)
        return results

    def _evaluate_flag(
        self,
        flag_key: str,
        flag: ExperimentationFlag,
        fallback: SelectedVariant[T],
        context: EvaluationContext,
        report_exposure: bool,
        started: float,
    ) -> SelectedVariant[T]:
        try:
            result = evaluate(flag, context, flag_key, fallback)
        except Exception as e:
            logger.warning(
                "Error evaluating flag",
                extra={"flag_key": flag_key, "error": str(e)},
            )
            return fallback

        if report_exposure and result is not fallback and result.variant_key is not None:
            properties = build_exposure_properties(
                flag_key,
                result.variant_key,
                self.evaluation_mode,
                result.experiment_id,
                result.is_experiment_active,
                result.is_qa_tester,
            )
            properties["Variant fetch latency (ms)"] = int((time.monotonic() - started) * 1000)
            send_exposure(self._exposure_tracker, context.distinct_id, properties)
        return result
