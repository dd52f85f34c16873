"""Import job aggregate and per-feature outcomes.

``ImportJob`` is the accumulator threaded through every batch: it owns
the counters and the diagnostics lists, and nothing else mutates them.
Each processed feature produces exactly one ``FeatureOutcome`` and
``ImportJob.record`` increments exactly one counter for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from feature_import.core.constants import FeatureOutcomeKind, JobStatus

if TYPE_CHECKING:
    from feature_import.core.exceptions import PipelineError
    from feature_import.models.feature import StoredFeature, ValidatedGeometry


@dataclass(frozen=True, slots=True)
class FeatureOutcome:
    """Result of processing a single feature.

    Attributes:
        index: Position of the feature in the request array.
        kind: Which job counter this outcome increments.
        feature: The stored row for imported features.
        error: Diagnostic entry for failed or unparseable features.
        notices: Informational notices raised while processing.
        validated: The validated geometry, when validation succeeded.
    """

    index: int
    kind: FeatureOutcomeKind
    feature: StoredFeature | None = None
    error: dict[str, Any] | None = None
    notices: tuple[str, ...] = ()
    validated: ValidatedGeometry | None = None

    @classmethod
    def imported(
        cls,
        index: int,
        feature: StoredFeature,
        *,
        notices: tuple[str, ...] = (),
        validated: ValidatedGeometry | None = None,
    ) -> FeatureOutcome:
        return cls(
            index=index,
            kind=FeatureOutcomeKind.IMPORTED,
            feature=feature,
            notices=notices,
            validated=validated,
        )

    @classmethod
    def failed(
        cls,
        index: int,
        exc: PipelineError,
        *,
        notices: tuple[str, ...] = (),
        validated: ValidatedGeometry | None = None,
    ) -> FeatureOutcome:
        return cls(
            index=index,
            kind=FeatureOutcomeKind.FAILED,
            error=feature_error_entry(index, exc),
            notices=notices,
            validated=validated,
        )

    @classmethod
    def skipped(
        cls,
        index: int,
        exc: PipelineError | None = None,
        *,
        notices: tuple[str, ...] = (),
    ) -> FeatureOutcome:
        return cls(
            index=index,
            kind=FeatureOutcomeKind.SKIPPED,
            error=feature_error_entry(index, exc) if exc is not None else None,
            notices=notices,
        )


def feature_error_entry(index: int, exc: PipelineError) -> dict[str, Any]:
    """Build the diagnostic entry for a feature that was not imported.

    ``detail`` carries the geometry's original invalidity reason for
    repair failures, and the failing step for height errors.
    """
    entry: dict[str, Any] = {"index": index, **exc.to_error_dict()}
    detail = getattr(exc, "invalid_reason", "") or getattr(exc, "step", "")
    entry["detail"] = detail
    return entry


@dataclass(slots=True)
class ImportJob:
    """One invocation of the import pipeline.

    Attributes:
        job_id: Tracker-assigned identifier.
        total_features: Length of the input feature array.
        collection_id: Output collection, once created.
        layer_id: Output layer, once created.
        status: Lifecycle state.
        imported_count: Features persisted.
        failed_count: Features that could not be persisted.
        skipped_count: Features with missing or undecodable geometry.
        repaired_count: Imported features whose geometry was repaired.
        cleaned_count: Imported features with duplicate vertices removed.
        batches_processed: Batches completed so far.
        notices: Ordered informational notices.
        feature_errors: Ordered per-feature diagnostic entries.
    """

    job_id: str
    total_features: int
    collection_id: str = ""
    layer_id: str = ""
    status: JobStatus = JobStatus.STARTED
    imported_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    repaired_count: int = 0
    cleaned_count: int = 0
    batches_processed: int = 0
    notices: list[str] = field(default_factory=list)
    feature_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return self.imported_count + self.failed_count + self.skipped_count

    @property
    def attempted_count(self) -> int:
        """Features that reached processing (i.e. were not skipped)."""
        return self.imported_count + self.failed_count

    def notice(self, message: str) -> None:
        self.notices.append(message)

    def record(self, outcome: FeatureOutcome) -> None:
        """Fold one feature outcome into the counters and diagnostics."""
        if outcome.kind is FeatureOutcomeKind.IMPORTED:
            self.imported_count += 1
            if outcome.validated is not None:
                if outcome.validated.was_repaired:
                    self.repaired_count += 1
                elif outcome.validated.was_cleaned:
                    self.cleaned_count += 1
        elif outcome.kind is FeatureOutcomeKind.FAILED:
            self.failed_count += 1
        else:
            self.skipped_count += 1

        self.notices.extend(outcome.notices)
        if outcome.error is not None:
            self.feature_errors.append(outcome.error)

    def debug_info(self) -> dict[str, Any]:
        """Return the structured diagnostics block of the job result."""
        return {
            "total_features": self.total_features,
            "batches_processed": self.batches_processed,
            "repaired_count": self.repaired_count,
            "cleaned_count": self.cleaned_count,
            "notices": list(self.notices),
            "feature_errors": [dict(e) for e in self.feature_errors],
        }
