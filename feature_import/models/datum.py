"""Vertical datum reference data.

Maps reference-frame identifiers (EPSG codes) to the vertical datum
their heights are expressed in, and to the method needed to turn such
a height into an ellipsoidal one.

Lookup is deterministic: an exact datum code first, then the implicit
datum of a known horizontal frame, then range rules, then nothing.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class DatumType(enum.StrEnum):
    ELLIPSOIDAL = "ellipsoidal"
    ORTHOMETRIC = "orthometric"
    GEOIDAL = "geoidal"
    OTHER = "other"


class TransformationMethod(enum.StrEnum):
    """How a height in a datum is converted to an ellipsoidal height."""

    NONE = "none"
    REFRAME_API = "reframe_api"
    FIXED_OFFSET = "fixed_offset"
    GEOID_GRID = "geoid_grid"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class VerticalDatumReference:
    """A named vertical datum and how to leave it.

    Attributes:
        name: Datum name, written to ``vertical_datum_source``.
        epsg_code: EPSG code of the vertical datum / vertical CRS.
        datum_type: Kind of reference surface.
        transformation_method: Method needed to reach ellipsoidal height.
        transformation_params: Method parameters (``offset_m`` for
            ``fixed_offset``).
        description: Free text.
    """

    name: str
    epsg_code: int
    datum_type: DatumType
    transformation_method: TransformationMethod
    transformation_params: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    @property
    def is_ellipsoidal(self) -> bool:
        return self.datum_type is DatumType.ELLIPSOIDAL


@dataclass(frozen=True, slots=True)
class DatumRangeRule:
    """Fallback rule: every code in ``[first, last]`` maps to ``datum_code``."""

    first: int
    last: int
    datum_code: int

    def matches(self, code: int) -> bool:
        return self.first <= code <= self.last


WGS84_ELLIPSOID = VerticalDatumReference(
    name="WGS84 Ellipsoid",
    epsg_code=4979,
    datum_type=DatumType.ELLIPSOIDAL,
    transformation_method=TransformationMethod.NONE,
    description="WGS 84 ellipsoidal height",
)

LHN95 = VerticalDatumReference(
    name="LHN95",
    epsg_code=5729,
    datum_type=DatumType.ORTHOMETRIC,
    transformation_method=TransformationMethod.REFRAME_API,
    description="Swiss national levelling network 1995 (orthometric)",
)

EGM2008 = VerticalDatumReference(
    name="EGM2008 Geoid",
    epsg_code=3855,
    datum_type=DatumType.GEOIDAL,
    transformation_method=TransformationMethod.GEOID_GRID,
    description="Earth Gravitational Model 2008 geoid height",
)

_DEFAULT_IMPLICIT: dict[int, int] = {
    2056: LHN95.epsg_code,
    4326: WGS84_ELLIPSOID.epsg_code,
    4979: WGS84_ELLIPSOID.epsg_code,
}

# UTM north and south zones on WGS 84.
_DEFAULT_RANGES: tuple[DatumRangeRule, ...] = (
    DatumRangeRule(32601, 32660, EGM2008.epsg_code),
    DatumRangeRule(32701, 32760, EGM2008.epsg_code),
)


class VerticalDatumRegistry:
    """Read-only lookup table of vertical datums.

    Args:
        datums: Known datums, keyed internally by their EPSG code.
        implicit: Horizontal frame code to the datum code it implies.
        ranges: Range rules tried after exact and implicit matches.
    """

    def __init__(
        self,
        datums: list[VerticalDatumReference],
        *,
        implicit: dict[int, int] | None = None,
        ranges: tuple[DatumRangeRule, ...] = (),
    ) -> None:
        self._datums = {d.epsg_code: d for d in datums}
        self._implicit = dict(implicit or {})
        self._ranges = tuple(ranges)

    def lookup(self, code: int | None) -> VerticalDatumReference | None:
        """Return the datum for a reference-frame code, or ``None``."""
        if code is None:
            return None
        datum = self._datums.get(code)
        if datum is not None:
            return datum
        implied = self._implicit.get(code)
        if implied is not None:
            return self._datums.get(implied)
        for rule in self._ranges:
            if rule.matches(code):
                return self._datums.get(rule.datum_code)
        return None

    def __contains__(self, code: object) -> bool:
        return isinstance(code, int) and self.lookup(code) is not None

    def __len__(self) -> int:
        return len(self._datums)


def default_registry() -> VerticalDatumRegistry:
    """Return the registry seeded with the built-in datums and rules."""
    return VerticalDatumRegistry(
        [WGS84_ELLIPSOID, LHN95, EGM2008],
        implicit=_DEFAULT_IMPLICIT,
        ranges=_DEFAULT_RANGES,
    )
