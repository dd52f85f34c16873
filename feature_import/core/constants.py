"""Shared pipeline constants — single source of truth.

Centralises the canonical reference frame, status vocabularies, and
attribute names that are shared by activities, the orchestrators, and
the data store.
"""

from __future__ import annotations

import enum

# ---------------------------------------------------------------------------
# Reference frames
# ---------------------------------------------------------------------------

CANONICAL_CRS: str = "EPSG:4326"
"""Canonical horizontal frame for stored footprints (WGS 84 geographic)."""


# ---------------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------------


class HeightMode(enum.StrEnum):
    """How a stored feature's height should be interpreted."""

    ABSOLUTE_ELLIPSOIDAL = "absolute_ellipsoidal"
    CLAMP_TO_GROUND = "clamp_to_ground"
    RELATIVE_TO_GROUND = "relative_to_ground"
    LV95_STORED = "lv95_stored"
    UNKNOWN = "unknown"


class HeightStatus(enum.StrEnum):
    """Lifecycle of a feature's height transformation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    NOT_REQUIRED = "not_required"


class JobStatus(enum.StrEnum):
    """Lifecycle of an import job or height-transformation batch."""

    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class FeatureOutcomeKind(enum.StrEnum):
    """Which job counter a processed feature increments."""

    IMPORTED = "imported"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Height attribute conventions
# ---------------------------------------------------------------------------

HEIGHT_ATTRIBUTE_CANDIDATES: tuple[str, ...] = (
    "H_MEAN",
    "HOEHE",
    "Z_Value",
    "Altitude",
    "elevation",
    "height",
    "HEIGHT",
)
"""Conventional base-height attribute names, tried in this order."""

OBJECT_HEIGHT_ATTRIBUTE_CANDIDATES: tuple[str, ...] = (
    "object_height",
    "obj_height",
    "OBJ_HOEHE",
)
"""Conventional object (extrusion) height attribute names."""

NO_HEIGHT_ATTRIBUTE: str = "_none"
"""Sentinel a caller may send to mean "no height attribute"."""

# Attribute keys used to preserve source coordinates for re-transformation.
SOURCE_EASTING_KEY: str = "source_easting"
SOURCE_NORTHING_KEY: str = "source_northing"
SOURCE_HEIGHT_KEY: str = "source_height"
SOURCE_CRS_KEY: str = "source_crs"
