"""Height resolution activity.

Determines a feature's base height and where it came from, in order of
precedence (first success wins):

1. The geometry's Z coordinate: the point itself, the first vertex of a
   line, or the first vertex of a polygon's exterior ring (first member
   for multi-geometries).  Tag ``z_coord``.
2. The caller-named height attribute.  Tag ``attribute:<name>``.
3. The first conventional height attribute that parses as a number.
   Tag ``attribute:<name>``.

Each step is guarded independently.  A value counts only if it parses
as a finite number; anything else becomes a notice and resolution moves
on.  Finding no height at all is a normal outcome, not an error.

The object (extrusion) height is resolved separately from the named
object-height attribute or the conventional object-height names.  An
attribute named as the object height is never read as a base height,
which is how a generic ``HEIGHT`` column is declared to mean extrusion.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from feature_import.core.constants import (
    HEIGHT_ATTRIBUTE_CANDIDATES,
    NO_HEIGHT_ATTRIBUTE,
    OBJECT_HEIGHT_ATTRIBUTE_CANDIDATES,
)

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger("feature_import.activities.resolve_height")

Z_COORD_SOURCE = "z_coord"
_MULTI_TYPES = frozenset({"MultiPoint", "MultiLineString", "MultiPolygon", "GeometryCollection"})


@dataclass(frozen=True, slots=True)
class ResolvedHeight:
    """A base height and its provenance tag."""

    value: float
    source: str


@dataclass(frozen=True, slots=True)
class HeightResolution:
    """Everything the resolver learned about a feature's heights.

    Attributes:
        height: Base height, or ``None`` when no source yielded one.
        object_height: Extrusion height, or ``None``.
        notices: Parse problems encountered along the way.
    """

    height: ResolvedHeight | None
    object_height: float | None = None
    notices: tuple[str, ...] = ()


def attribute_source(name: str) -> str:
    return f"attribute:{name}"


def parse_numeric(value: Any) -> float | None:
    """Return *value* as a finite float, or ``None``.

    Booleans are not numbers here; strings are stripped before parsing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def extract_z(geometry: BaseGeometry) -> float | None:
    """Return the representative Z of a geometry, or ``None``.

    Raises:
        ValueError: If the geometry has Z but it is not a finite number.
    """
    if geometry.is_empty or not geometry.has_z:
        return None

    geom_type = geometry.geom_type
    if geom_type in _MULTI_TYPES:
        members = list(getattr(geometry, "geoms", []))
        return extract_z(members[0]) if members else None
    coords = geometry.exterior.coords if geom_type == "Polygon" else geometry.coords

    z = float(coords[0][2])
    if not math.isfinite(z):
        msg = f"Z coordinate is not finite: {z}"
        raise ValueError(msg)
    return z


def _attribute_height(
    attributes: dict[str, Any],
    name: str,
    notices: list[str],
) -> float | None:
    if name not in attributes:
        return None
    raw = attributes[name]
    value = parse_numeric(raw)
    if value is None and raw not in (None, ""):
        notices.append(f"height attribute {name!r} is not numeric: {raw!r}")
    return value


def resolve_object_height(
    attributes: dict[str, Any],
    object_height_attribute: str | None = None,
    notices: list[str] | None = None,
) -> float | None:
    """Return the extrusion height from the attributes, or ``None``."""
    sink = notices if notices is not None else []
    names = (
        (object_height_attribute,) if object_height_attribute else OBJECT_HEIGHT_ATTRIBUTE_CANDIDATES
    )
    for name in names:
        value = _attribute_height(attributes, name, sink)
        if value is not None:
            return value
    return None


def resolve_height(
    geometry: BaseGeometry,
    attributes: dict[str, Any],
    *,
    height_attribute: str | None = None,
    object_height_attribute: str | None = None,
) -> HeightResolution:
    """Resolve a feature's base and object heights.

    Args:
        geometry: The feature's source geometry, Z not yet dropped.
        attributes: The feature's attribute map.
        height_attribute: Caller-named base height attribute.  The value
            ``"_none"`` turns off attribute lookups, leaving only Z.
        object_height_attribute: Caller-named extrusion height attribute.

    Returns:
        A ``HeightResolution``; its ``height`` is ``None`` when no source
        produced a finite number.
    """
    notices: list[str] = []
    object_height = resolve_object_height(attributes, object_height_attribute, notices)

    try:
        z = extract_z(geometry)
    except (ValueError, IndexError) as exc:
        notices.append(f"ignoring Z coordinate: {exc}")
        z = None
    if z is not None:
        return HeightResolution(ResolvedHeight(z, Z_COORD_SOURCE), object_height, tuple(notices))

    if height_attribute == NO_HEIGHT_ATTRIBUTE:
        return HeightResolution(None, object_height, tuple(notices))

    if height_attribute:
        value = _attribute_height(attributes, height_attribute, notices)
        if value is not None:
            return HeightResolution(
                ResolvedHeight(value, attribute_source(height_attribute)),
                object_height,
                tuple(notices),
            )
        notices.append(f"height attribute {height_attribute!r} not usable; probing defaults")

    for name in HEIGHT_ATTRIBUTE_CANDIDATES:
        if name == object_height_attribute or name == height_attribute:
            continue
        value = _attribute_height(attributes, name, notices)
        if value is not None:
            return HeightResolution(
                ResolvedHeight(value, attribute_source(name)), object_height, tuple(notices)
            )

    return HeightResolution(None, object_height, tuple(notices))
