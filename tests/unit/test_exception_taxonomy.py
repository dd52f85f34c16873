"""Tests for the unified exception taxonomy.

Validates:
- PipelineError hierarchy and structured attributes
- Category classification (validation, transient, permanent, contract)
- ``to_error_dict()`` produces stable payload keys
- Per-feature and job-level errors carry their stage and code
- Geodesy service errors are PipelineError subclasses
"""

from __future__ import annotations

from typing import ClassVar

from feature_import.core.config import ConfigValidationError
from feature_import.core.exceptions import (
    ContractError,
    FeatureStoreError,
    GeometryParseError,
    GeometryRepairError,
    HeightTransformError,
    JobAbortedError,
    PermanentError,
    PipelineError,
    ReprojectionError,
    TransientError,
    ValidationError,
)
from feature_import.providers.base import GeodesyServiceError


class TestPipelineErrorBase:
    """PipelineError base class behavior."""

    def test_default_attributes(self) -> None:
        err = PipelineError("boom")
        assert err.message == "boom"
        assert err.stage == ""
        assert err.code == ""
        assert err.retryable is False
        assert err.correlation_id == ""

    def test_custom_attributes(self) -> None:
        err = PipelineError(
            "fail",
            stage="transform_height",
            code="HEIGHT_TRANSFORM_FAILED",
            retryable=True,
            correlation_id="job-1",
        )
        assert err.stage == "transform_height"
        assert err.code == "HEIGHT_TRANSFORM_FAILED"
        assert err.retryable is True
        assert err.correlation_id == "job-1"

    def test_str_is_message(self) -> None:
        assert str(PipelineError("human-readable error")) == "human-readable error"

    def test_to_error_dict_keys(self) -> None:
        d = PipelineError("x", stage="s", code="C", retryable=True, correlation_id="id").to_error_dict()
        assert set(d) == {"category", "code", "stage", "message", "retryable", "correlation_id"}
        assert d["category"] == "transient"


class TestCategoryBases:
    """Category base classes set correct defaults."""

    def test_validation_error_not_retryable(self) -> None:
        err = ValidationError("bad input")
        assert err.retryable is False
        assert err.category == "validation"

    def test_transient_error_retryable(self) -> None:
        err = TransientError("timeout")
        assert err.retryable is True
        assert err.category == "transient"

    def test_permanent_error_not_retryable(self) -> None:
        err = PermanentError("gone")
        assert err.retryable is False
        assert err.category == "permanent"

    def test_contract_error_not_retryable(self) -> None:
        err = ContractError("schema drift")
        assert err.retryable is False
        assert err.category == "contract"


class TestAllExceptionsArePipelineError:
    """Every custom exception inherits from PipelineError."""

    EXCEPTION_CLASSES: ClassVar[list[type[PipelineError]]] = [
        GeometryParseError,
        GeometryRepairError,
        ReprojectionError,
        HeightTransformError,
        FeatureStoreError,
        JobAbortedError,
        ConfigValidationError,
        GeodesyServiceError,
    ]

    def test_all_subclass_pipeline_error(self) -> None:
        for cls in self.EXCEPTION_CLASSES:
            assert issubclass(cls, PipelineError), f"{cls.__name__} is not a PipelineError"


class TestFeatureErrorStageAndCode:
    """Per-feature errors map to the diagnostic codes callers see."""

    def test_geometry_parse_error(self) -> None:
        err = GeometryParseError("no coordinates")
        assert err.stage == "parse_geometry"
        assert err.code == "GEOMETRY_PARSE_FAILED"
        assert err.category == "validation"

    def test_geometry_repair_error_keeps_reason(self) -> None:
        err = GeometryRepairError("cannot repair", invalid_reason="Self-intersection[1 1]")
        assert err.stage == "validate_geometry"
        assert err.code == "GEOMETRY_INVALID"
        assert err.invalid_reason == "Self-intersection[1 1]"
        assert err.retryable is False

    def test_reprojection_error(self) -> None:
        err = ReprojectionError("unknown CRS")
        assert err.stage == "reproject"
        assert err.code == "REPROJECTION_FAILED"
        assert err.category == "permanent"

    def test_height_transform_error(self) -> None:
        err = HeightTransformError("timeout", step="to_global", retryable=True)
        assert err.stage == "transform_height"
        assert err.code == "HEIGHT_TRANSFORM_FAILED"
        assert err.step == "to_global"
        assert err.category == "transient"

    def test_feature_store_error(self) -> None:
        err = FeatureStoreError("unknown layer")
        assert err.stage == "store"
        assert err.code == "FEATURE_STORE_FAILED"


class TestJobAbortedError:
    def test_carries_job_and_diagnostics(self) -> None:
        err = JobAbortedError("nothing imported", job_id="job-9", debug_info={"notices": ["x"]})
        assert err.job_id == "job-9"
        assert err.correlation_id == "job-9"
        assert err.debug_info == {"notices": ["x"]}
        assert err.code == "JOB_ABORTED"
        assert err.category == "permanent"

    def test_debug_info_defaults_to_empty(self) -> None:
        assert JobAbortedError("x").debug_info == {}


class TestGeodesyServiceError:
    def test_str_includes_service(self) -> None:
        err = GeodesyServiceError("reframe", "HTTP 503", endpoint="lv95towgs84", status_code=503)
        assert str(err) == "[reframe] HTTP 503"
        assert err.endpoint == "lv95towgs84"
        assert err.status_code == 503
        assert err.code == "GEODESY_SERVICE_FAILED"

    def test_retryable_reports_transient(self) -> None:
        err = GeodesyServiceError("reframe", "timeout", retryable=True)
        assert err.category == "transient"
