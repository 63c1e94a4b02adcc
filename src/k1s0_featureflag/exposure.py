"""露出イベント（$experiment_started）の送信"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)

EXPOSURE_EVENT = "$experiment_started"


class ExposureTracker(Protocol):
    """露出イベントを送信するプロトコル。配送処理は実装側の責務。"""

    def track(self, distinct_id: str, event_name: str, properties: dict[str, Any]) -> None: ...


def build_exposure_properties(
    flag_key: str,
    variant_key: str,
    evaluation_mode: str,
    experiment_id: uuid.UUID | None = None,
    is_experiment_active: bool | None = None,
    is_qa_tester: bool | None = None,
) -> dict[str, Any]:
    """露出イベントの共通プロパティを組み立てる。"""
    properties: dict[str, Any] = {
        "Experiment name": flag_key,
        "Variant name": variant_key,
        "$experiment_type": "feature_flag",
        "Flag evaluation mode": evaluation_mode,
    }
    if experiment_id is not None:
        properties["$experiment_id"] = str(experiment_id)
    if is_experiment_active is not None:
        properties["$is_experiment_active"] = is_experiment_active
    if is_qa_tester is not None:
        properties["$is_qa_tester"] = is_qa_tester
    return properties


def send_exposure(
    tracker: ExposureTracker | None,
    distinct_id: str | None,
    properties: dict[str, Any],
) -> None:
    """露出イベントを送信する。送信失敗は呼び出し元に伝播しない。"""
    if tracker is None or not distinct_id:
        return
    try:
        tracker.track(distinct_id, EXPOSURE_EVENT, properties)
        logger.debug(
            "Tracked exposure event",
            extra={
                "flag_key": properties.get("Experiment name"),
                "variant_key": properties.get("Variant name"),
            },
        )
    except Exception as e:
        logger.warning(
            "Failed to track exposure event",
            extra={"flag_key": properties.get("Experiment name"), "error": str(e)},
        )
