"""Unified pipeline exception taxonomy.

Provides a shared base exception hierarchy for every pipeline stage.
Every domain exception inherits from ``PipelineError`` and carries
structured context fields that enable consistent retry decisions,
per-feature diagnostics, and operator logging.

Taxonomy categories
-------------------
- ``ValidationError``   — input/geometry violations, never retryable.
- ``TransientError``    — temporary failures (network, throttle), retryable.
- ``PermanentError``    — unrecoverable domain failures, not retryable.
- ``ContractError``     — request/payload shape violations, never retryable.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for job diagnostics and logging.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (e.g. ``"validate_geometry"``, ``"transform_height"``).
        code: Machine-readable error code (e.g. ``"GEOMETRY_INVALID"``).
        retryable: Whether the caller may retry the operation.
        correlation_id: Job/request correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(PipelineError):
    """Request or payload shape violation. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Per-feature errors
# ---------------------------------------------------------------------------


class GeometryParseError(ValidationError):
    """Raised when an input geometry object cannot be decoded.

    Features failing here are counted as skipped, not failed.
    """

    default_stage = "parse_geometry"
    default_code = "GEOMETRY_PARSE_FAILED"


class GeometryRepairError(ValidationError):
    """Raised when an invalid geometry cannot be repaired.

    Attributes:
        invalid_reason: Validity diagnosis of the geometry *before* any
            repair step was attempted.
    """

    default_stage = "validate_geometry"
    default_code = "GEOMETRY_INVALID"

    def __init__(self, message: str, *, invalid_reason: str = "") -> None:
        self.invalid_reason = invalid_reason
        super().__init__(message)


class ReprojectionError(PermanentError):
    """Raised when a geometry cannot be transformed to the target frame."""

    default_stage = "reproject"
    default_code = "REPROJECTION_FAILED"


class HeightTransformError(PipelineError):
    """Raised when a height cannot be converted to an ellipsoidal height.

    Never escapes the transformer: it is converted into a ``failed``
    height status on the stored feature.

    Attributes:
        step: Which external call failed (``"orthometric_to_ellipsoidal"``
            or ``"to_global"``), or ``""`` when no call was made.
    """

    default_stage = "transform_height"
    default_code = "HEIGHT_TRANSFORM_FAILED"

    def __init__(self, message: str, *, step: str = "", retryable: bool = False) -> None:
        self.step = step
        super().__init__(message, retryable=retryable)


class FeatureStoreError(PermanentError):
    """Raised by a ``FeatureStore`` when a write or lookup fails."""

    default_stage = "store"
    default_code = "FEATURE_STORE_FAILED"


# ---------------------------------------------------------------------------
# Job-level errors
# ---------------------------------------------------------------------------


class JobAbortedError(PermanentError):
    """Raised when an import imports zero of the features it attempted.

    The collection, layer, and any partially inserted features have
    already been discarded when this is raised.

    Attributes:
        job_id: Identifier of the aborted job.
        debug_info: Structured diagnostics (notices and per-feature errors).
    """

    default_stage = "import_pipeline"
    default_code = "JOB_ABORTED"

    def __init__(
        self,
        message: str,
        *,
        job_id: str = "",
        debug_info: dict[str, object] | None = None,
    ) -> None:
        self.job_id = job_id
        self.debug_info = debug_info or {}
        super().__init__(message, correlation_id=job_id)
