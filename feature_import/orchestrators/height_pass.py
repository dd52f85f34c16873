"""Out-of-band height transformation for already imported layers.

Features whose height needs the geodesy service keep their source
position and height in their attributes (see ``source_*`` keys).  This
module re-runs the conversion later from those preserved values:

- ``initialize_height_transformation`` opens a tracked batch and marks
  the layer's eligible features ``pending``;
- ``process_layer_heights`` converts pending features chunk by chunk,
  marking them ``processing`` and then ``complete`` or ``failed``;
- ``cancel_height_transformation`` stops a running batch; features not
  yet converted stay ``pending``;
- ``reset_height_transformation`` clears derived heights back to ``pending``;
- ``get_height_transformation_status`` and ``height_mode_distribution``
  report on a layer.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

from feature_import.activities.transform_height import (
    HeightRequest,
    derive_height_mode,
    preserved_source_coordinates,
)
from feature_import.core.constants import HeightMode, HeightStatus
from feature_import.core.exceptions import ContractError
from feature_import.models.result import HeightPassStatus
from feature_import.orchestrators.progress import KIND_HEIGHT_TRANSFORMATION

if TYPE_CHECKING:
    import threading

    from feature_import.activities.transform_height import HeightResult, HeightTransformer
    from feature_import.models.feature import StoredFeature
    from feature_import.orchestrators.progress import JobProgressTracker, JobRecord
    from feature_import.store.base import FeatureStore

logger = logging.getLogger("feature_import.orchestrators.height_pass")

DEFAULT_CHUNK_SIZE = 100

_ELIGIBLE_STATUSES = frozenset({HeightStatus.PENDING, HeightStatus.PROCESSING, HeightStatus.FAILED})


def _require_layer(store: FeatureStore, layer_id: str) -> None:
    if not store.has_layer(layer_id):
        msg = f"Unknown layer: {layer_id!r}"
        raise ContractError(msg, stage="height_pass", code="LAYER_NOT_FOUND")


def _with_height(
    feature: StoredFeature,
    status: HeightStatus,
    *,
    value: float | None = None,
    error: str | None = None,
) -> StoredFeature:
    return dataclasses.replace(
        feature,
        base_elevation_ellipsoidal=value,
        height_transformation_status=status,
        height_error=error,
        height_mode=derive_height_mode(
            status, object_height=feature.object_height, preserved=True
        ),
    )


def initialize_height_transformation(
    layer_id: str,
    *,
    store: FeatureStore,
    tracker: JobProgressTracker,
) -> str:
    """Open a height-transformation batch for a layer.

    Eligible features are those with preserved source coordinates whose
    height is not ``complete``; they are all set to ``pending``.

    Returns:
        The batch identifier (a tracker job id).

    Raises:
        ContractError: If the layer is unknown or has no eligible features.
    """
    _require_layer(store, layer_id)
    eligible = [
        f
        for f in store.features_by_layer(layer_id)
        if f.height_transformation_status in _ELIGIBLE_STATUSES
        and preserved_source_coordinates(f.attributes) is not None
    ]
    if not eligible:
        msg = f"Layer {layer_id!r} has no features awaiting height transformation"
        raise ContractError(msg, stage="height_pass", code="NO_FEATURES_TO_TRANSFORM")

    batch_id = tracker.create(len(eligible), kind=KIND_HEIGHT_TRANSFORMATION, layer_id=layer_id)
    for feature in eligible:
        store.update_feature(_with_height(feature, HeightStatus.PENDING))

    logger.info(
        "height pass initialized | layer=%s | batch=%s | features=%d",
        layer_id,
        batch_id,
        len(eligible),
    )
    return batch_id


def _apply_result(feature: StoredFeature, result: HeightResult) -> StoredFeature:
    if not result.submitted:
        return _with_height(feature, HeightStatus.PENDING)
    if result.ok:
        return _with_height(feature, HeightStatus.COMPLETE, value=result.value)
    return _with_height(
        feature,
        HeightStatus.FAILED,
        error=str(result.error) if result.error else "height transformation failed",
    )


def _require_batch(layer_id: str, batch_id: str, tracker: JobProgressTracker) -> JobRecord:
    record = tracker.get(batch_id)
    if record.layer_id != layer_id or record.kind != KIND_HEIGHT_TRANSFORMATION:
        msg = f"Batch {batch_id!r} is not a height transformation batch of layer {layer_id!r}"
        raise ContractError(msg, stage="height_pass", code="BATCH_MISMATCH")
    return record


def process_layer_heights(
    layer_id: str,
    batch_id: str,
    *,
    store: FeatureStore,
    tracker: JobProgressTracker,
    transformer: HeightTransformer,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Convert a layer's pending heights through the geodesy service.

    Processing stops before the next chunk once *cancel_event* (by
    default the batch's own event on *tracker*) is set.  Build
    *transformer* with the same event so that calls already queued are
    not started either.

    Returns:
        Summary dict with ``batch_id``, ``status``, ``complete``,
        ``failed`` and ``pending`` counts for this run.

    Raises:
        ContractError: If the layer is unknown, *batch_id* does not belong
            to it, or *chunk_size* is not positive.
    """
    _require_layer(store, layer_id)
    record = _require_batch(layer_id, batch_id, tracker)
    if chunk_size <= 0:
        msg = f"chunk_size must be > 0, got {chunk_size}"
        raise ContractError(msg, stage="height_pass", code="INVALID_REQUEST")
    if cancel_event is None:
        cancel_event = tracker.cancel_event(batch_id)

    pending = [
        f
        for f in store.features_by_layer(layer_id)
        if f.height_transformation_status is HeightStatus.PENDING
    ]
    complete = record.imported_count
    failed = record.failed_count
    still_pending = 0
    reached = 0

    for start in range(0, len(pending), chunk_size):
        if cancel_event.is_set():
            break
        chunk = pending[start : start + chunk_size]
        reached = start + len(chunk)
        requests = []
        for feature in chunk:
            triple = preserved_source_coordinates(feature.attributes)
            if triple is None:
                continue
            store.update_feature(_with_height(feature, HeightStatus.PROCESSING))
            requests.append(HeightRequest(feature.feature_id, *triple))

        results = transformer.transform_many(requests)
        for request in requests:
            updated = _apply_result(store.get_feature(request.key), results[request.key])
            store.update_feature(updated)
            if updated.height_transformation_status is HeightStatus.COMPLETE:
                complete += 1
            elif updated.height_transformation_status is HeightStatus.FAILED:
                failed += 1
            else:
                still_pending += 1

        record = tracker.update(batch_id, complete, failed)

    still_pending += len(pending) - reached
    if cancel_event.is_set():
        record = tracker.get(batch_id)

    logger.info(
        "height pass processed | layer=%s | batch=%s | status=%s | complete=%d | failed=%d "
        "| pending=%d | conversions=%d | cache_hits=%d | delta_hits=%d",
        layer_id,
        batch_id,
        record.status,
        complete,
        failed,
        still_pending,
        transformer.calls_made,
        transformer.cache_hits,
        transformer.delta_hits,
    )
    return {
        "batch_id": batch_id,
        "status": str(record.status),
        "complete": complete,
        "failed": failed,
        "pending": still_pending,
    }


def cancel_height_transformation(
    layer_id: str,
    batch_id: str,
    *,
    store: FeatureStore,
    tracker: JobProgressTracker,
    reason: str = "",
) -> JobRecord:
    """Cancel a layer's height-transformation batch.

    A running ``process_layer_heights`` for the batch starts no further
    geodesy calls; its unconverted features stay ``pending`` and can be
    picked up by a new batch.

    Returns:
        The batch record afterwards (``cancelled``, or its earlier
        terminal status if it had already finished).

    Raises:
        ContractError: If the layer is unknown or *batch_id* does not
            belong to it.
    """
    _require_layer(store, layer_id)
    _require_batch(layer_id, batch_id, tracker)
    record = tracker.cancel(batch_id, reason=reason)
    logger.info(
        "height pass cancel requested | layer=%s | batch=%s | status=%s",
        layer_id,
        batch_id,
        record.status,
    )
    return record


def reset_height_transformation(layer_id: str, *, store: FeatureStore) -> int:
    """Clear derived heights of features with preserved source coordinates.

    Returns:
        Number of features reset to ``pending``.
    """
    _require_layer(store, layer_id)
    count = 0
    for feature in store.features_by_layer(layer_id):
        if preserved_source_coordinates(feature.attributes) is None:
            continue
        store.update_feature(_with_height(feature, HeightStatus.PENDING))
        count += 1
    logger.info("height pass reset | layer=%s | features=%d", layer_id, count)
    return count


def get_height_transformation_status(
    layer_id: str,
    *,
    store: FeatureStore,
    tracker: JobProgressTracker,
) -> HeightPassStatus:
    """Return the latest batch and per-status feature counts of a layer."""
    _require_layer(store, layer_id)
    features = store.features_by_layer(layer_id)
    counts = Counter(str(f.height_transformation_status) for f in features)
    batch = tracker.latest_for_layer(layer_id, kind=KIND_HEIGHT_TRANSFORMATION)
    return HeightPassStatus(
        layer_id=layer_id,
        batch=batch.to_dict() if batch else None,
        feature_counts={str(s): counts.get(str(s), 0) for s in HeightStatus},
        total_features=len(features),
    )


def height_mode_distribution(layer_id: str, *, store: FeatureStore) -> dict[str, int]:
    """Return the number of features per height mode of a layer."""
    _require_layer(store, layer_id)
    counts = Counter(str(f.height_mode) for f in store.features_by_layer(layer_id))
    return {str(mode): counts.get(str(mode), 0) for mode in HeightMode}
