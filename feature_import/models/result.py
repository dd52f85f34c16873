"""Pydantic result models returned to callers.

``ImportResult`` is the job summary produced by the batch orchestrator:
count-consistent, with enough diagnostics to explain every feature that
was not imported by its index.  ``HeightPassStatus`` describes the
state of a layer's out-of-band height transformation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from feature_import.models.job import ImportJob

SCHEMA_VERSION = "feature-import-result-v1"


class FeatureError(BaseModel):
    """One per-feature diagnostic entry.

    Attributes:
        index: Position of the feature in the request array.
        category: Error category (``validation``, ``permanent``, ...).
        code: Machine-readable error code.
        stage: Pipeline stage that produced the error.
        message: Human-readable description.
        detail: Extra diagnosis, e.g. the geometry's original invalidity reason.
        retryable: Whether the failure was transient.
    """

    index: int
    category: str = ""
    code: str = ""
    stage: str = ""
    message: str = ""
    detail: str = ""
    retryable: bool = False


class DebugInfo(BaseModel):
    """Structured diagnostics for an import job."""

    total_features: int = 0
    batches_processed: int = 0
    repaired_count: int = 0
    cleaned_count: int = 0
    notices: list[str] = Field(default_factory=list)
    feature_errors: list[FeatureError] = Field(default_factory=list)


class ImportResult(BaseModel):
    """Summary of a finished import job.

    Attributes:
        schema_version: Schema identifier for forward compatibility.
        job_id: Tracker identifier of the job.
        status: Terminal job status.
        collection_id: Created collection (empty if the job was aborted).
        layer_id: Created layer (empty if the job was aborted).
        imported_count: Features persisted.
        failed_count: Features that failed processing.
        skipped_count: Features with missing or undecodable geometry.
        debug_info: Notices and per-feature errors.
    """

    schema_version: str = Field(default=SCHEMA_VERSION, alias="$schema")
    job_id: str = ""
    status: str = ""
    collection_id: str = ""
    layer_id: str = ""
    imported_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    debug_info: DebugInfo = Field(default_factory=DebugInfo)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_job(cls, job: ImportJob) -> ImportResult:
        """Build the result from a job aggregate."""
        return cls(
            job_id=job.job_id,
            status=str(job.status),
            collection_id=job.collection_id,
            layer_id=job.layer_id,
            imported_count=job.imported_count,
            failed_count=job.failed_count,
            skipped_count=job.skipped_count,
            debug_info=DebugInfo.model_validate(job.debug_info()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain JSON-compatible dict."""
        return self.model_dump(by_alias=True)


class HeightPassStatus(BaseModel):
    """Height-transformation state of a layer.

    Attributes:
        layer_id: The layer.
        batch: Latest tracked height-pass batch, or ``None`` if never run.
        feature_counts: Height status name to number of features.
        total_features: Features in the layer.
    """

    layer_id: str
    batch: dict[str, Any] | None = None
    feature_counts: dict[str, int] = Field(default_factory=dict)
    total_features: int = 0

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
