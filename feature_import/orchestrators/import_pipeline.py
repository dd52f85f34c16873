"""Batch orchestrator for feature imports.

Drives one import job end to end:

1. Create the job, the output collection, and its layer.
2. Split the features into fixed-size batches and, strictly in order,
   run each feature through validate → reproject and resolve height →
   plan the datum conversion.
3. Send the batch's external height conversions through the bounded
   worker pool of the ``HeightTransformer``.
4. Persist the batch's features in input order, fold each outcome into
   the ``ImportJob`` and report progress to the tracker.

A per-feature error never leaves its feature: it becomes a
``FeatureOutcome`` and a diagnostic entry.  The only job-level failure
is importing nothing while attempting something, in which case the
collection and everything in it is deleted and ``JobAbortedError`` is
raised.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from feature_import.activities.reproject import epsg_code, reproject
from feature_import.activities.resolve_height import HeightResolution, resolve_height
from feature_import.activities.transform_height import (
    HeightRequest,
    HeightResult,
    HeightTransformer,
    derive_height_mode,
    plan_height_transformation,
    representative_point,
    source_coordinate_attributes,
)
from feature_import.activities.validate_geometry import validate_geometry
from feature_import.core.config import ImportConfig
from feature_import.core.constants import HeightStatus, JobStatus
from feature_import.core.exceptions import (
    FeatureStoreError,
    GeometryParseError,
    GeometryRepairError,
    JobAbortedError,
    ReprojectionError,
)
from feature_import.models.datum import default_registry
from feature_import.models.feature import RawFeature, StoredFeature, ValidatedGeometry
from feature_import.models.job import FeatureOutcome, ImportJob
from feature_import.models.payloads import coerce_import_request
from feature_import.models.result import ImportResult
from feature_import.orchestrators.progress import KIND_IMPORT
from feature_import.providers.factory import geodesy_config_from, get_geodesy_service

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

    from feature_import.models.datum import VerticalDatumRegistry
    from feature_import.orchestrators.progress import JobProgressTracker
    from feature_import.providers.base import GeodesyService
    from feature_import.store.base import FeatureStore

logger = logging.getLogger("feature_import.orchestrators.import_pipeline")


@dataclass(slots=True)
class _JobContext:
    """Per-job collaborators and request options."""

    store: FeatureStore
    config: ImportConfig
    registry: VerticalDatumRegistry
    cancel_event: threading.Event
    source_crs: str
    target_crs: str
    layer_id: str = ""
    height_attribute: str | None = None
    object_height_attribute: str | None = None
    defer_heights: bool = False
    use_height_delta: bool = False
    service: GeodesyService | None = None
    transformer: HeightTransformer | None = None
    owns_service: bool = False

    def get_transformer(self) -> HeightTransformer:
        if self.transformer is None:
            if self.service is None:
                self.service = get_geodesy_service(
                    self.config.geodesy_provider, geodesy_config_from(self.config)
                )
                self.owns_service = True
            self.transformer = HeightTransformer.from_config(
                self.config,
                self.service,
                cancel_event=self.cancel_event,
                use_delta=self.use_height_delta,
            )
        return self.transformer

    def close(self) -> None:
        if self.owns_service and self.service is not None:
            self.service.close()


@dataclass(slots=True)
class _PreparedFeature:
    """A feature that passed geometry processing, awaiting persistence."""

    index: int
    validated: ValidatedGeometry
    footprint: BaseGeometry
    attributes: dict[str, Any]
    resolution: HeightResolution
    height: dict[str, Any]
    request: HeightRequest | None = None
    notices: list[str] = field(default_factory=list)


def _height_fields(
    status: HeightStatus,
    resolution: HeightResolution,
    *,
    value: float | None = None,
    error: str | None = None,
    preserved: bool = False,
    datum_source: str | None = None,
) -> dict[str, Any]:
    """Keyword arguments for the height columns of a ``StoredFeature``."""
    return {
        "base_elevation_ellipsoidal": value if status is HeightStatus.COMPLETE else None,
        "object_height": resolution.object_height,
        "height_mode": derive_height_mode(
            status, object_height=resolution.object_height, preserved=preserved
        ),
        "height_source": resolution.height.source if resolution.height else None,
        "vertical_datum_source": datum_source,
        "height_transformation_status": status,
        "height_error": error if status is HeightStatus.FAILED else None,
    }


# ---------------------------------------------------------------------------
# Per-feature processing
# ---------------------------------------------------------------------------


def _prepare_feature(item: Any, index: int, ctx: _JobContext) -> FeatureOutcome | _PreparedFeature:
    """Run the CPU-bound steps for one feature.

    Returns a final ``FeatureOutcome`` for skipped and failed features,
    and a ``_PreparedFeature`` for features that will be persisted.
    """
    try:
        feature = RawFeature.from_dict(item, index=index, crs=ctx.source_crs)
    except TypeError as exc:
        return FeatureOutcome.skipped(index, GeometryParseError(str(exc)))

    if feature.geometry is None:
        return FeatureOutcome.skipped(index, notices=(f"feature {index}: no geometry, skipped",))

    try:
        validated = validate_geometry(feature.geometry)
    except GeometryParseError as exc:
        logger.warning("feature skipped | index=%d | error=%s", index, exc)
        return FeatureOutcome.skipped(index, exc)
    except GeometryRepairError as exc:
        logger.warning(
            "feature failed | index=%d | stage=%s | reason=%s", index, exc.stage, exc.invalid_reason
        )
        return FeatureOutcome.failed(index, exc)

    notices: list[str] = []
    if validated.was_repaired:
        notices.append(
            f"feature {index}: geometry repaired by {validated.repair_method} "
            f"({validated.invalid_reason})"
        )
    elif validated.was_cleaned:
        notices.append(f"feature {index}: duplicate vertices removed")

    try:
        footprint = reproject(validated.geometry, ctx.source_crs, ctx.target_crs)
    except ReprojectionError as exc:
        logger.warning("feature failed | index=%d | stage=%s | error=%s", index, exc.stage, exc)
        return FeatureOutcome.failed(index, exc, notices=tuple(notices), validated=validated)

    resolution = resolve_height(
        validated.source_geometry,
        feature.properties,
        height_attribute=ctx.height_attribute,
        object_height_attribute=ctx.object_height_attribute,
    )
    notices.extend(f"feature {index}: {n}" for n in resolution.notices)
    attributes = dict(feature.properties)
    prepared = _PreparedFeature(
        index=index,
        validated=validated,
        footprint=footprint,
        attributes=attributes,
        resolution=resolution,
        height=_height_fields(HeightStatus.NOT_REQUIRED, resolution),
        notices=notices,
    )
    if resolution.height is None:
        return prepared

    height = resolution.height.value
    plan = plan_height_transformation(height, ctx.source_crs, ctx.registry)
    if not plan.needs_service:
        if plan.status is HeightStatus.FAILED:
            notices.append(f"feature {index}: height not converted: {plan.error}")
        prepared.height = _height_fields(
            plan.status,
            resolution,
            value=plan.value,
            error=plan.error,
            datum_source=plan.datum_source,
        )
        return prepared

    easting, northing = representative_point(validated.source_geometry)
    attributes.update(source_coordinate_attributes(easting, northing, height, ctx.source_crs))
    prepared.height = _height_fields(
        HeightStatus.PENDING, resolution, preserved=True, datum_source=plan.datum_source
    )
    if not ctx.defer_heights and not ctx.cancel_event.is_set():
        prepared.request = HeightRequest(index, easting, northing, height)
    return prepared


def _apply_height_result(prepared: _PreparedFeature, result: HeightResult | None) -> None:
    datum_source = prepared.height["vertical_datum_source"]
    if result is None or not result.submitted:
        prepared.notices.append(f"feature {prepared.index}: height transformation not submitted")
        return
    if result.ok:
        prepared.height = _height_fields(
            HeightStatus.COMPLETE,
            prepared.resolution,
            value=result.value,
            preserved=True,
            datum_source=datum_source,
        )
        return
    error = str(result.error) if result.error else "height transformation failed"
    prepared.notices.append(f"feature {prepared.index}: height transformation failed: {error}")
    prepared.height = _height_fields(
        HeightStatus.FAILED,
        prepared.resolution,
        error=error,
        preserved=True,
        datum_source=datum_source,
    )


def _persist(prepared: _PreparedFeature, ctx: _JobContext) -> FeatureOutcome:
    notices = tuple(prepared.notices)
    try:
        stored = ctx.store.insert_feature(
            StoredFeature(
                layer_id=ctx.layer_id,
                geometry=prepared.footprint,
                feature_index=prepared.index,
                attributes=prepared.attributes,
                **prepared.height,
            )
        )
    except FeatureStoreError as exc:
        logger.warning("feature failed | index=%d | stage=%s | error=%s", prepared.index, exc.stage, exc)
        return FeatureOutcome.failed(
            prepared.index, exc, notices=notices, validated=prepared.validated
        )
    return FeatureOutcome.imported(
        prepared.index, stored, notices=notices, validated=prepared.validated
    )


def process_batch(batch: list[Any], offset: int, ctx: _JobContext) -> list[FeatureOutcome]:
    """Process one batch; return one outcome per feature, in input order."""
    items = [_prepare_feature(item, offset + i, ctx) for i, item in enumerate(batch)]

    requests = [i.request for i in items if isinstance(i, _PreparedFeature) and i.request]
    results: dict[Any, HeightResult] = {}
    if requests:
        results = ctx.get_transformer().transform_many(requests)

    outcomes: list[FeatureOutcome] = []
    for item in items:
        if isinstance(item, FeatureOutcome):
            outcomes.append(item)
            continue
        if item.request is not None:
            _apply_height_result(item, results.get(item.index))
        outcomes.append(_persist(item, ctx))
    return outcomes


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


def _must_abort(job: ImportJob) -> bool:
    return job.imported_count == 0 and job.attempted_count > 0


def _datum_notice(source_crs: str, registry: VerticalDatumRegistry) -> str:
    code = epsg_code(source_crs)
    datum = registry.lookup(code)
    if datum is None:
        return f"no vertical datum known for {source_crs}; resolved heights cannot be converted"
    if code == datum.epsg_code:
        return f"vertical datum {datum.name} ({datum.transformation_method})"
    return (
        f"vertical datum {datum.name} ({datum.transformation_method}) "
        f"inferred from EPSG:{code}"
    )


def _abort(job: ImportJob, ctx: _JobContext, tracker: JobProgressTracker) -> JobAbortedError:
    message = (
        f"No features imported: {job.failed_count} failed, {job.skipped_count} skipped "
        f"of {job.total_features}"
    )
    if job.collection_id:
        ctx.store.delete_collection(job.collection_id)
    job.collection_id = ""
    job.layer_id = ""
    job.notice(message)
    tracker.update(
        job.job_id,
        job.imported_count,
        job.failed_count,
        skipped_count=job.skipped_count,
        metadata={"error": message, "code": JobAbortedError.default_code},
    )
    job.status = JobStatus.FAILED
    logger.error("import aborted | job=%s | %s", job.job_id, message)
    return JobAbortedError(message, job_id=job.job_id, debug_info=job.debug_info())


def import_features(
    request: dict[str, Any],
    *,
    store: FeatureStore,
    tracker: JobProgressTracker,
    config: ImportConfig | None = None,
    registry: VerticalDatumRegistry | None = None,
    service: GeodesyService | None = None,
    cancel_event: threading.Event | None = None,
) -> ImportResult:
    """Run an import job.

    Args:
        request: The import request (see ``models.payloads.ImportRequest``).
        store: Destination data store.
        tracker: Job progress tracker.
        config: Import configuration; defaults to ``ImportConfig()``.
        registry: Vertical datum table; defaults to the built-in one.
        service: Geodesy service; created from *config* on first use when omitted.
        cancel_event: Once set, no further geodesy calls are submitted.

    Returns:
        The job summary.

    Raises:
        ContractError: If the request is malformed (nothing is created).
        JobAbortedError: If features were attempted but none was imported.
    """
    config = config or ImportConfig()
    req = coerce_import_request(request, config)
    features = req["features"]
    batch_size = req["batch_size"]
    total = len(features)
    batch_count = math.ceil(total / batch_size)

    ctx = _JobContext(
        store=store,
        config=config,
        registry=registry or default_registry(),
        cancel_event=cancel_event or threading.Event(),
        source_crs=req["source_reference_frame_id"],
        target_crs=req["target_reference_frame_id"],
        height_attribute=req.get("height_attribute_hint"),
        object_height_attribute=req.get("object_height_attribute"),
        defer_heights=req.get("defer_height_transformation", False),
        use_height_delta=req.get("use_height_delta", False),
        service=service,
    )

    job = ImportJob(job_id=tracker.create(total, kind=KIND_IMPORT), total_features=total)
    logger.info(
        "import started | job=%s | layer=%s | features=%d | batch_size=%d | source=%s | target=%s",
        job.job_id,
        req["target_layer_name"],
        total,
        batch_size,
        ctx.source_crs,
        ctx.target_crs,
    )

    try:
        job.collection_id = store.create_collection(req.get("collection_name", req["target_layer_name"]))
        job.layer_id = ctx.layer_id = store.create_layer(job.collection_id, req["target_layer_name"])
        tracker.attach_layer(job.job_id, job.layer_id)
        job.notice(
            f"import plan: {total} features in {batch_count} batch(es) of {batch_size}; "
            f"{ctx.source_crs} -> {ctx.target_crs}"
            + ("; height transformation deferred" if ctx.defer_heights else "")
        )
        job.notice(_datum_notice(ctx.source_crs, ctx.registry))
        job.status = JobStatus.PROCESSING

        for number, offset in enumerate(range(0, total, batch_size), start=1):
            batch = features[offset : offset + batch_size]
            job.notice(f"batch {number}/{batch_count}: features {offset}-{offset + len(batch) - 1}")
            for outcome in process_batch(batch, offset, ctx):
                job.record(outcome)
            job.batches_processed += 1
            logger.info(
                "batch done | job=%s | batch=%d/%d | imported=%d | failed=%d | skipped=%d",
                job.job_id,
                number,
                batch_count,
                job.imported_count,
                job.failed_count,
                job.skipped_count,
            )
            if number == batch_count and _must_abort(job):
                break
            tracker.update(
                job.job_id, job.imported_count, job.failed_count, skipped_count=job.skipped_count
            )

        if _must_abort(job):
            raise _abort(job, ctx, tracker)
        if total == 0:
            tracker.update(job.job_id, 0, 0)
    except JobAbortedError:
        raise
    except Exception as exc:
        logger.exception("import failed | job=%s", job.job_id)
        if job.collection_id:
            store.delete_collection(job.collection_id)
            job.collection_id = job.layer_id = ""
        tracker.update(
            job.job_id,
            job.imported_count,
            job.failed_count,
            skipped_count=job.skipped_count,
            metadata={"error": str(exc)},
        )
        raise
    finally:
        ctx.close()

    job.status = tracker.get(job.job_id).status
    if ctx.transformer is not None:
        logger.info(
            "geodesy usage | job=%s | conversions=%d | cache_hits=%d | delta_hits=%d",
            job.job_id,
            ctx.transformer.calls_made,
            ctx.transformer.cache_hits,
            ctx.transformer.delta_hits,
        )
    logger.info(
        "import finished | job=%s | status=%s | imported=%d | failed=%d | skipped=%d",
        job.job_id,
        job.status,
        job.imported_count,
        job.failed_count,
        job.skipped_count,
    )
    return ImportResult.from_job(job)
