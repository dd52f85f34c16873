"""Data models for features flowing through the import pipeline.

A ``RawFeature`` is what the caller hands us: a GeoJSON-style geometry
object, an attribute map, and its position in the input array.  A
``ValidatedGeometry`` is the short-lived, topologically valid form of
that geometry in its source frame.  A ``StoredFeature`` is the persisted
row: a 2D footprint in the canonical frame plus resolved height fields.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from feature_import.core.constants import HeightMode, HeightStatus

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry


class GeometryProvenance(enum.StrEnum):
    """What the validator had to do to obtain a valid geometry."""

    UNCHANGED = "unchanged"
    VERTEX_DEDUPLICATED = "vertex_deduplicated"
    REPAIRED = "repaired"


@dataclass(frozen=True, slots=True)
class RawFeature:
    """One input feature, exactly as supplied by the caller.

    Attributes:
        index: Zero-based position of the feature in the request array.
        geometry: GeoJSON-style geometry object (``{"type", "coordinates"}``),
            or ``None`` when the input carried no geometry.
        properties: Attribute name to scalar/JSON value.
        crs: Source reference-frame identifier (e.g. ``"EPSG:2056"``).
    """

    index: int
    geometry: dict[str, Any] | None
    properties: dict[str, Any] = field(default_factory=dict)
    crs: str = "EPSG:4326"

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, index: int, crs: str) -> RawFeature:
        """Build from a ``{"geometry", "properties"}`` request element.

        A missing ``properties`` key or a ``null`` value becomes an empty
        mapping.  The geometry is passed through untouched; decoding it is
        the validator's job.

        Raises:
            TypeError: If *data* is not a dict or ``properties`` is not a dict.
        """
        if not isinstance(data, dict):
            msg = f"feature {index} must be an object, got {type(data).__name__}"
            raise TypeError(msg)
        properties = data.get("properties") or {}
        if not isinstance(properties, dict):
            msg = f"feature {index} properties must be an object, got {type(properties).__name__}"
            raise TypeError(msg)
        return cls(index=index, geometry=data.get("geometry"), properties=dict(properties), crs=crs)


@dataclass(frozen=True, slots=True)
class ValidatedGeometry:
    """A geometry that is topologically valid in its source frame.

    Attributes:
        geometry: The valid geometry (may have lost Z if it was repaired).
        source_geometry: The decoded input geometry after vertex
            deduplication, before any repair.  Height is read from here.
        provenance: Whether the input was unchanged, deduplicated, or repaired.
        invalid_reason: Validity diagnosis of the input when it was repaired.
        repair_method: ``"buffer"`` or ``"make_valid"`` when repaired.
    """

    geometry: BaseGeometry
    source_geometry: BaseGeometry
    provenance: GeometryProvenance = GeometryProvenance.UNCHANGED
    invalid_reason: str = ""
    repair_method: str = ""

    @property
    def was_repaired(self) -> bool:
        return self.provenance is GeometryProvenance.REPAIRED

    @property
    def was_cleaned(self) -> bool:
        return self.provenance is GeometryProvenance.VERTEX_DEDUPLICATED


@dataclass(frozen=True, slots=True)
class StoredFeature:
    """A persisted feature row.

    The footprint geometry never changes after creation.  Height fields
    are replaced (via ``dataclasses.replace``) by the out-of-band height
    pass.

    Attributes:
        feature_id: Store-assigned identifier (empty until inserted).
        layer_id: Owning layer.
        feature_index: Position of the source feature in its import request.
        geometry: 2D footprint in the canonical horizontal frame.
        base_elevation_ellipsoidal: Ellipsoidal base height in metres, or ``None``.
        object_height: Extrusion height in metres, or ``None``.
        height_mode: How the height should be interpreted.
        height_source: Provenance tag, e.g. ``"z_coord"`` or ``"attribute:H_MEAN"``.
        vertical_datum_source: Datum name (or ``"EPSG:<code>"``) the height came from.
        height_transformation_status: Lifecycle of the height conversion.
        height_error: Error string; set whenever the status is ``failed``.
        attributes: Original attributes, possibly with preserved source
            coordinates added.
    """

    layer_id: str
    geometry: BaseGeometry
    feature_id: str = ""
    feature_index: int = 0
    base_elevation_ellipsoidal: float | None = None
    object_height: float | None = None
    height_mode: HeightMode = HeightMode.UNKNOWN
    height_source: str | None = None
    vertical_datum_source: str | None = None
    height_transformation_status: HeightStatus = HeightStatus.NOT_REQUIRED
    height_error: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        status = self.height_transformation_status
        if status is HeightStatus.COMPLETE:
            if self.base_elevation_ellipsoidal is None or not math.isfinite(
                self.base_elevation_ellipsoidal
            ):
                msg = "complete height status requires a finite base elevation"
                raise ValueError(msg)
        elif status is HeightStatus.FAILED:
            if self.base_elevation_ellipsoidal is not None:
                msg = "failed height status requires a null base elevation"
                raise ValueError(msg)
            if not self.height_error:
                msg = "failed height status requires an error message"
                raise ValueError(msg)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict (GeoJSON footprint)."""
        from shapely.geometry import mapping

        return {
            "feature_id": self.feature_id,
            "layer_id": self.layer_id,
            "feature_index": self.feature_index,
            "geometry": mapping(self.geometry),
            "base_elevation_ellipsoidal": self.base_elevation_ellipsoidal,
            "object_height": self.object_height,
            "height_mode": str(self.height_mode),
            "height_source": self.height_source,
            "vertical_datum_source": self.vertical_datum_source,
            "height_transformation_status": str(self.height_transformation_status),
            "height_error": self.height_error,
            "attributes": dict(self.attributes),
        }
