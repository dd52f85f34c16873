"""Geometry validation and repair activity.

Decodes a GeoJSON-style geometry object and returns a ``ValidatedGeometry``
that is topologically valid in its source frame.

Steps:
1. Decode the geometry object (failure: ``GeometryParseError``, feature skipped).
2. Remove consecutive identical vertices.
3. If the result is valid, done.
4. Otherwise repair in two escalating steps, re-testing validity after
   each: zero-width buffer (polygonal input only), then
   ``shapely.validation.make_valid`` restricted to parts of the input's
   dimension.
5. If still invalid or empty, raise ``GeometryRepairError`` carrying the
   validity diagnosis of the input geometry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import shapely
from shapely.errors import GEOSException
from shapely.geometry import MultiLineString, MultiPoint, MultiPolygon, shape
from shapely.validation import make_valid

from feature_import.core.exceptions import GeometryParseError, GeometryRepairError
from feature_import.models.feature import GeometryProvenance, ValidatedGeometry

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger("feature_import.activities.validate_geometry")

GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "LineString",
        "Polygon",
        "MultiPoint",
        "MultiLineString",
        "MultiPolygon",
        "GeometryCollection",
    }
)

_POLYGONAL = frozenset({"Polygon", "MultiPolygon"})
_COLLECTIONS = frozenset({"MultiPoint", "MultiLineString", "MultiPolygon", "GeometryCollection"})

# Depth of coordinate nesting below which a list is a single position.
_POSITION_DEPTH = {
    "LineString": 1,
    "Polygon": 2,
    "MultiLineString": 2,
    "MultiPolygon": 3,
}


def validate_geometry(raw: dict[str, Any] | None) -> ValidatedGeometry:
    """Decode, clean, and if needed repair a single geometry.

    Args:
        raw: GeoJSON-style geometry object.

    Returns:
        A valid, non-empty geometry with its provenance.

    Raises:
        GeometryParseError: If *raw* is missing or cannot be decoded.
        GeometryRepairError: If the geometry is invalid and cannot be repaired.
    """
    original = parse_geometry(raw)
    reason_before = shapely.is_valid_reason(original)

    cleaned, changed = deduplicate_vertices(raw)  # type: ignore[arg-type]
    if changed:
        try:
            geometry = shape(cleaned)
        except (GEOSException, ValueError, TypeError, IndexError) as exc:
            msg = f"Geometry degenerates after removing duplicate vertices: {exc}"
            raise GeometryRepairError(msg, invalid_reason=reason_before) from exc
    else:
        geometry = original

    provenance = (
        GeometryProvenance.VERTEX_DEDUPLICATED if changed else GeometryProvenance.UNCHANGED
    )

    if geometry.is_valid and not geometry.is_empty:
        return ValidatedGeometry(geometry=geometry, source_geometry=geometry, provenance=provenance)

    invalid_reason = shapely.is_valid_reason(geometry)
    logger.debug("Invalid geometry | type=%s | reason=%s", geometry.geom_type, invalid_reason)

    repaired, method = repair_geometry(geometry)
    if repaired is None:
        msg = f"Geometry is invalid and could not be repaired: {invalid_reason}"
        raise GeometryRepairError(msg, invalid_reason=invalid_reason)

    return ValidatedGeometry(
        geometry=repaired,
        source_geometry=geometry,
        provenance=GeometryProvenance.REPAIRED,
        invalid_reason=invalid_reason,
        repair_method=method,
    )


def parse_geometry(raw: dict[str, Any] | None) -> BaseGeometry:
    """Decode a GeoJSON-style geometry object into a shapely geometry.

    Raises:
        GeometryParseError: If *raw* is missing, malformed, or empty.
    """
    if raw is None:
        msg = "Feature has no geometry"
        raise GeometryParseError(msg)
    if not isinstance(raw, dict):
        msg = f"Geometry must be an object, got {type(raw).__name__}"
        raise GeometryParseError(msg)

    geom_type = raw.get("type")
    if geom_type not in GEOMETRY_TYPES:
        msg = f"Unsupported geometry type: {geom_type!r}"
        raise GeometryParseError(msg)
    if geom_type == "GeometryCollection":
        if not isinstance(raw.get("geometries"), list):
            msg = "GeometryCollection requires a 'geometries' array"
            raise GeometryParseError(msg)
    elif not isinstance(raw.get("coordinates"), list):
        msg = f"{geom_type} requires a 'coordinates' array"
        raise GeometryParseError(msg)

    try:
        geometry = shape(raw)
    except (GEOSException, ValueError, TypeError, IndexError, AttributeError) as exc:
        msg = f"Cannot decode {geom_type} geometry: {exc}"
        raise GeometryParseError(msg) from exc

    if geometry.is_empty:
        msg = f"{geom_type} geometry is empty"
        raise GeometryParseError(msg)
    return geometry


# ---------------------------------------------------------------------------
# Vertex deduplication
# ---------------------------------------------------------------------------


def _dedupe_sequence(positions: list[Any]) -> tuple[list[Any], bool]:
    result: list[Any] = []
    for position in positions:
        if result and list(position) == list(result[-1]):
            continue
        result.append(position)
    return result, len(result) != len(positions)


def _dedupe_nested(coords: list[Any], depth: int) -> tuple[list[Any], bool]:
    if depth == 1:
        return _dedupe_sequence(coords)
    changed = False
    result = []
    for part in coords:
        cleaned, part_changed = _dedupe_nested(part, depth - 1)
        result.append(cleaned)
        changed = changed or part_changed
    return result, changed


def deduplicate_vertices(raw: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Remove consecutive identical vertices from a geometry object.

    Points and multipoints are returned unchanged.

    Returns:
        Tuple of (geometry object, whether anything was removed).
    """
    geom_type = raw["type"]
    if geom_type == "GeometryCollection":
        changed = False
        members = []
        for member in raw["geometries"]:
            cleaned, member_changed = deduplicate_vertices(member)
            members.append(cleaned)
            changed = changed or member_changed
        return {"type": geom_type, "geometries": members}, changed

    depth = _POSITION_DEPTH.get(geom_type)
    if depth is None:
        return raw, False
    coords, changed = _dedupe_nested(raw["coordinates"], depth)
    return {"type": geom_type, "coordinates": coords}, changed


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


def repair_geometry(geometry: BaseGeometry) -> tuple[BaseGeometry | None, str]:
    """Try to make *geometry* valid.

    Returns:
        Tuple of (repaired geometry or ``None``, method name).
    """
    if geometry.geom_type in _POLYGONAL:
        buffered = geometry.buffer(0)
        if buffered.is_valid and not buffered.is_empty:
            logger.debug("Geometry repaired by zero-width buffer")
            return buffered, "buffer"

    repaired = make_valid(geometry)
    if geometry.geom_type != "GeometryCollection":
        repaired = _extract_dimension(repaired, shapely.get_dimensions(geometry))
    if repaired is not None and repaired.is_valid and not repaired.is_empty:
        logger.debug("Geometry repaired by make_valid | result=%s", repaired.geom_type)
        return repaired, "make_valid"
    return None, ""


def _collect_parts(geometry: BaseGeometry, dimension: int) -> list[BaseGeometry]:
    parts: list[BaseGeometry] = []
    for part in shapely.get_parts(geometry):
        if part.geom_type in _COLLECTIONS:
            parts.extend(_collect_parts(part, dimension))
        elif not part.is_empty and shapely.get_dimensions(part) == dimension:
            parts.append(part)
    return parts


def _extract_dimension(geometry: BaseGeometry, dimension: int) -> BaseGeometry | None:
    """Keep only the parts of *geometry* with the given topological dimension."""
    parts = _collect_parts(geometry, dimension)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    if dimension == 2:
        return MultiPolygon(parts)
    if dimension == 1:
        return MultiLineString(parts)
    return MultiPoint(parts)
