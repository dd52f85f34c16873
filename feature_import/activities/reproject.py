"""Coordinate reprojection activity.

Transforms a geometry's horizontal coordinates between reference frames
with ``pyproj`` and returns a 2D footprint.  Height is handled separately
by the height resolver and transformer.

Reference-frame identifiers are normalised before use, so ``2056``,
``"2056"``, ``"epsg:2056"`` and ``"urn:ogc:def:crs:EPSG::2056"`` all
resolve to ``"EPSG:2056"``; a bare number always means an EPSG code.

Reprojection is deterministic: no retries.
"""

from __future__ import annotations

import functools
import logging
import math
import re
from typing import TYPE_CHECKING

import shapely
from pyproj import Transformer
from pyproj.exceptions import CRSError, ProjError

from feature_import.core.exceptions import ReprojectionError

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger("feature_import.activities.reproject")

_EPSG_PATTERN = re.compile(r"^(?:EPSG:)?(\d+)$", re.IGNORECASE)
_URN_EPSG_PATTERN = re.compile(r"^urn:ogc:def:crs:EPSG:[\d.]*:(\d+)$", re.IGNORECASE)
_CRS84_ALIASES = frozenset({"CRS84", "OGC:CRS84", "URN:OGC:DEF:CRS:OGC:1.3:CRS84"})


def normalize_crs(identifier: str | int) -> str:
    """Return a canonical spelling of a reference-frame identifier.

    EPSG identifiers become ``"EPSG:<code>"``; anything else (PROJ strings,
    WKT) is returned stripped and is left for ``pyproj`` to interpret.

    Raises:
        ReprojectionError: If *identifier* is empty.
    """
    text = str(identifier).strip()
    if not text:
        msg = "Reference frame identifier is empty"
        raise ReprojectionError(msg)
    if text.upper() in _CRS84_ALIASES:
        return "EPSG:4326"
    match = _EPSG_PATTERN.match(text) or _URN_EPSG_PATTERN.match(text)
    if match:
        return f"EPSG:{int(match.group(1))}"
    return text


def epsg_code(identifier: str | int) -> int | None:
    """Return the EPSG code of an identifier, or ``None`` if it has none."""
    try:
        normalized = normalize_crs(identifier)
    except ReprojectionError:
        return None
    if normalized.startswith("EPSG:"):
        return int(normalized.removeprefix("EPSG:"))
    return None


@functools.lru_cache(maxsize=64)
def _get_transformer(source: str, target: str) -> Transformer:
    return Transformer.from_crs(source, target, always_xy=True)


def get_transformer(source_crs: str | int, target_crs: str | int) -> Transformer:
    """Return a cached x/y-ordered transformer between two frames.

    Raises:
        ReprojectionError: If either frame cannot be resolved.
    """
    source = normalize_crs(source_crs)
    target = normalize_crs(target_crs)
    try:
        return _get_transformer(source, target)
    except (CRSError, ProjError) as exc:
        msg = f"Cannot build transformation {source} -> {target}: {exc}"
        raise ReprojectionError(msg) from exc


def reproject(
    geometry: BaseGeometry | None,
    source_crs: str | int,
    target_crs: str | int,
) -> BaseGeometry:
    """Transform *geometry* from *source_crs* to *target_crs* as 2D.

    When both frames normalise to the same identifier the geometry is only
    flattened, so reprojecting a geometry already in the target frame
    returns an equal geometry.

    Raises:
        ReprojectionError: If the geometry is null or empty, a frame is
            unknown, or the transformation yields non-finite coordinates.
    """
    if geometry is None or geometry.is_empty:
        msg = "Cannot reproject a null or empty geometry"
        raise ReprojectionError(msg)

    source = normalize_crs(source_crs)
    target = normalize_crs(target_crs)
    flat = shapely.force_2d(geometry)
    if source == target:
        return flat

    transformer = get_transformer(source, target)

    try:
        result = shapely.transform(flat, transformer.transform, interleaved=False)
    except ProjError as exc:
        msg = f"Transformation {source} -> {target} failed: {exc}"
        raise ReprojectionError(msg) from exc

    if not all(math.isfinite(v) for v in shapely.get_coordinates(result).flat):
        msg = f"Transformation {source} -> {target} produced non-finite coordinates"
        raise ReprojectionError(msg)

    logger.debug("Reprojected | type=%s | %s -> %s", geometry.geom_type, source, target)
    return result
