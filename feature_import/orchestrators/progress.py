"""Job progress tracker.

Records job-level state and feature counts so that a caller (or an
operator) can observe a running import or height pass and tell where a
finished one ended up.

Status rules:
- ``completed`` once ``imported + failed + skipped >= total``;
- ``failed`` when an update's metadata carries an ``error``;
- ``processing`` otherwise;
- ``cancelled`` once ``cancel`` is called on a running job;
- ``completed``, ``failed`` and ``cancelled`` are terminal: later updates
  are ignored, so an out-of-order batch signal can never revert a
  finished job.

The tracker keeps at most ``max_history`` jobs.  When a new job would
exceed that, the oldest finished jobs are forgotten; running jobs are
never evicted.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from feature_import.core.constants import JobStatus
from feature_import.core.exceptions import ContractError

logger = logging.getLogger("feature_import.orchestrators.progress")

KIND_IMPORT = "import"
KIND_HEIGHT_TRANSFORMATION = "height_transformation"

DEFAULT_MAX_HISTORY = 1000


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class JobRecord:
    """Tracked state of one job.

    Attributes:
        job_id: Identifier returned by ``create``.
        kind: ``"import"`` or ``"height_transformation"``.
        layer_id: Layer the job works on, when known.
        total_features: Features the job will process.
        status: Lifecycle state.
        imported_count: Features done (imported, or converted for height passes).
        failed_count: Features that failed.
        skipped_count: Features skipped before processing.
        metadata: Merged metadata from all updates.
        created_at: ISO 8601 creation timestamp.
        updated_at: ISO 8601 timestamp of the last applied update.
    """

    job_id: str
    kind: str
    total_features: int
    layer_id: str = ""
    status: JobStatus = JobStatus.STARTED
    imported_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["status"] = str(self.status)
        return data


class JobProgressTracker:
    """Thread-safe, in-process registry of ``JobRecord`` objects.

    Args:
        max_history: Jobs kept before the oldest finished ones are evicted.
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        if max_history < 1:
            msg = f"max_history must be >= 1, got {max_history}"
            raise ValueError(msg)
        self._max_history = max_history
        self._lock = threading.Lock()
        self._records: dict[str, JobRecord] = {}
        self._order: list[str] = []
        self._cancel_events: dict[str, threading.Event] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def create(self, total_features: int, *, kind: str = KIND_IMPORT, layer_id: str = "") -> str:
        """Register a new job and return its identifier."""
        if total_features < 0:
            msg = f"total_features must be >= 0, got {total_features}"
            raise ContractError(msg, stage="progress", code="INVALID_JOB")
        job_id = uuid.uuid4().hex
        with self._lock:
            self._records[job_id] = JobRecord(
                job_id=job_id, kind=kind, total_features=total_features, layer_id=layer_id
            )
            self._order.append(job_id)
            self._cancel_events[job_id] = threading.Event()
            self._evict_finished()
        logger.info("job created | job=%s | kind=%s | total=%d", job_id, kind, total_features)
        return job_id

    def cancel(self, job_id: str, *, reason: str = "") -> JobRecord:
        """Mark a running job ``cancelled`` and set its cancel event.

        Cancelling a finished job changes nothing.

        Returns:
            A copy of the record afterwards.

        Raises:
            ContractError: If *job_id* is unknown.
        """
        with self._lock:
            record = self._record(job_id)
            if record.status.is_terminal:
                logger.info("cancel ignored for finished job | job=%s | status=%s", job_id, record.status)
                return dataclasses.replace(record, metadata=dict(record.metadata))

            self._cancel_events[job_id].set()
            record.status = JobStatus.CANCELLED
            record.updated_at = _now()
            record.metadata["cancelled_at"] = record.updated_at
            if reason:
                record.metadata["cancel_reason"] = reason
            logger.warning("job cancelled | job=%s | kind=%s", job_id, record.kind)
            return dataclasses.replace(record, metadata=dict(record.metadata))

    def cancel_event(self, job_id: str) -> threading.Event:
        """Return the event that ``cancel`` sets for *job_id*.

        Raises:
            ContractError: If *job_id* is unknown.
        """
        with self._lock:
            self._record(job_id)
            return self._cancel_events[job_id]

    def _evict_finished(self) -> None:
        excess = len(self._order) - self._max_history
        if excess <= 0:
            return
        evicted = [
            job_id for job_id in self._order if self._records[job_id].status.is_terminal
        ][:excess]
        for job_id in evicted:
            del self._records[job_id]
            del self._cancel_events[job_id]
        if evicted:
            gone = set(evicted)
            self._order = [job_id for job_id in self._order if job_id not in gone]
            logger.debug("evicted finished jobs | count=%d | kept=%d", len(evicted), len(self._order))

    def attach_layer(self, job_id: str, layer_id: str) -> None:
        with self._lock:
            self._record(job_id).layer_id = layer_id

    def update(
        self,
        job_id: str,
        imported_count: int,
        failed_count: int,
        *,
        skipped_count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> JobRecord:
        """Apply new counts and recompute the status.

        Returns:
            A copy of the record after the update.

        Raises:
            ContractError: If *job_id* is unknown.
        """
        with self._lock:
            record = self._record(job_id)
            if record.status.is_terminal:
                logger.debug(
                    "ignoring update for finished job | job=%s | status=%s", job_id, record.status
                )
                return dataclasses.replace(record, metadata=dict(record.metadata))

            record.imported_count = imported_count
            record.failed_count = failed_count
            record.skipped_count = skipped_count
            if metadata:
                record.metadata.update(metadata)
            record.updated_at = _now()

            if metadata and metadata.get("error"):
                record.status = JobStatus.FAILED
            elif imported_count + failed_count + skipped_count >= record.total_features:
                record.status = JobStatus.COMPLETED
            else:
                record.status = JobStatus.PROCESSING

            logger.info(
                "job progress | job=%s | status=%s | imported=%d | failed=%d | skipped=%d | total=%d",
                job_id,
                record.status,
                imported_count,
                failed_count,
                skipped_count,
                record.total_features,
            )
            return dataclasses.replace(record, metadata=dict(record.metadata))

    def get(self, job_id: str) -> JobRecord:
        """Return a copy of the record for *job_id*.

        Raises:
            ContractError: If *job_id* is unknown.
        """
        with self._lock:
            record = self._record(job_id)
            return dataclasses.replace(record, metadata=dict(record.metadata))

    def latest_for_layer(self, layer_id: str, *, kind: str) -> JobRecord | None:
        """Return the most recently created job of *kind* for *layer_id*."""
        with self._lock:
            for job_id in reversed(self._order):
                record = self._records[job_id]
                if record.layer_id == layer_id and record.kind == kind:
                    return dataclasses.replace(record, metadata=dict(record.metadata))
        return None

    def _record(self, job_id: str) -> JobRecord:
        record = self._records.get(job_id)
        if record is None:
            msg = f"Unknown job: {job_id!r}"
            raise ContractError(msg, stage="progress", code="JOB_NOT_FOUND")
        return record
