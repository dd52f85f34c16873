"""Data models and schemas.

Defines the data structures used throughout the pipeline:
- RawFeature / ValidatedGeometry / StoredFeature: a feature's life cycle
- ImportJob / FeatureOutcome: per-job accumulator and per-feature results
- VerticalDatumReference / VerticalDatumRegistry: datum lookup table
- ImportResult: Job summary returned to callers
"""

from feature_import.models.datum import (
    DatumType,
    TransformationMethod,
    VerticalDatumReference,
    VerticalDatumRegistry,
    default_registry,
)
from feature_import.models.feature import (
    GeometryProvenance,
    RawFeature,
    StoredFeature,
    ValidatedGeometry,
)
from feature_import.models.job import FeatureOutcome, ImportJob
from feature_import.models.result import ImportResult

__all__ = [
    "DatumType",
    "FeatureOutcome",
    "GeometryProvenance",
    "ImportJob",
    "ImportResult",
    "RawFeature",
    "StoredFeature",
    "TransformationMethod",
    "ValidatedGeometry",
    "VerticalDatumReference",
    "VerticalDatumRegistry",
    "default_registry",
]
