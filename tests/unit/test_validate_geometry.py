"""Tests for geometry validation and repair.

Covers:
- Decoding failures (skipped features) vs. repair failures (failed features)
- Consecutive-vertex deduplication and its provenance flag
- Two-step repair: zero-width buffer, then make_valid by dimension
- The original invalidity reason is reported when repair fails
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
import shapely
from shapely.geometry import GeometryCollection, LineString, Point, Polygon

from feature_import.activities.validate_geometry import (
    _extract_dimension,
    deduplicate_vertices,
    parse_geometry,
    validate_geometry,
)
from feature_import.core.exceptions import GeometryParseError, GeometryRepairError
from feature_import.models.feature import GeometryProvenance
from tests.helpers import BOWTIE, COLLINEAR, point, square


class TestParseGeometry:
    """Malformed input raises GeometryParseError."""

    def test_none_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="no geometry"):
            parse_geometry(None)

    def test_non_dict_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="must be an object"):
            parse_geometry([1, 2])  # type: ignore[arg-type]

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="Unsupported geometry type"):
            parse_geometry({"type": "Circle", "coordinates": [0, 0]})

    def test_missing_coordinates_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="coordinates"):
            parse_geometry({"type": "Polygon"})

    def test_collection_without_members_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="geometries"):
            parse_geometry({"type": "GeometryCollection"})

    def test_ring_too_short_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="Cannot decode"):
            parse_geometry({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})

    def test_empty_geometry_rejected(self) -> None:
        with pytest.raises(GeometryParseError, match="empty"):
            parse_geometry({"type": "Point", "coordinates": []})

    def test_valid_point_decoded(self) -> None:
        geom = parse_geometry(point(7.4, 46.9, 540.0))
        assert geom.geom_type == "Point"
        assert geom.has_z


class TestDeduplicateVertices:
    def test_removes_consecutive_duplicates_in_rings(self) -> None:
        raw = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
        }
        cleaned, changed = deduplicate_vertices(raw)
        assert changed is True
        assert cleaned["coordinates"] == [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]

    def test_non_consecutive_repeats_kept(self) -> None:
        cleaned, changed = deduplicate_vertices(square())
        assert changed is False
        assert cleaned == square()

    def test_points_untouched(self) -> None:
        raw = {"type": "MultiPoint", "coordinates": [[0, 0], [0, 0]]}
        cleaned, changed = deduplicate_vertices(raw)
        assert changed is False
        assert cleaned is raw

    def test_collection_members_cleaned(self) -> None:
        raw = {
            "type": "GeometryCollection",
            "geometries": [
                point(0, 0),
                {"type": "LineString", "coordinates": [[0, 0], [0, 0], [1, 1]]},
            ],
        }
        cleaned, changed = deduplicate_vertices(raw)
        assert changed is True
        assert cleaned["geometries"][1]["coordinates"] == [[0, 0], [1, 1]]

    def test_z_distinguishes_vertices(self) -> None:
        raw = {"type": "LineString", "coordinates": [[0, 0, 1], [0, 0, 2], [1, 1, 2]]}
        _, changed = deduplicate_vertices(raw)
        assert changed is False


class TestValidateGeometry:
    def test_valid_geometry_unchanged(self) -> None:
        result = validate_geometry(square())
        assert result.provenance is GeometryProvenance.UNCHANGED
        assert result.geometry.equals(Polygon([(0, 0), (1, 0), (1, 1), (0, 1)]))
        assert result.source_geometry is result.geometry

    def test_duplicate_vertices_flagged(self) -> None:
        raw = {
            "type": "LineString",
            "coordinates": [[0, 0], [1, 1], [1, 1], [2, 0]],
        }
        result = validate_geometry(raw)
        assert result.provenance is GeometryProvenance.VERTEX_DEDUPLICATED
        assert result.was_cleaned
        assert len(result.geometry.coords) == 3

    def test_bowtie_repaired_by_buffer(self) -> None:
        result = validate_geometry(BOWTIE)
        assert result.provenance is GeometryProvenance.REPAIRED
        assert result.was_repaired
        assert result.repair_method == "buffer"
        assert result.geometry.is_valid
        assert not result.geometry.is_empty
        assert result.invalid_reason.startswith("Self-intersection")

    def test_collection_repaired_by_make_valid(self) -> None:
        raw = {"type": "GeometryCollection", "geometries": [BOWTIE, point(5.0, 5.0)]}
        result = validate_geometry(raw)
        assert result.repair_method == "make_valid"
        assert result.geometry.is_valid
        assert result.invalid_reason.startswith("Self-intersection")

    def test_make_valid_used_when_buffer_collapses(self) -> None:
        with patch.object(Polygon, "buffer", return_value=Polygon()):
            result = validate_geometry(BOWTIE)
        assert result.repair_method == "make_valid"
        assert result.geometry.geom_type == "MultiPolygon"
        assert result.geometry.area == pytest.approx(2.0)
        assert result.invalid_reason.startswith("Self-intersection")

    def test_self_intersection_reported_when_both_steps_fail(self) -> None:
        with (
            patch.object(Polygon, "buffer", return_value=Polygon()),
            patch(
                "feature_import.activities.validate_geometry.make_valid",
                return_value=LineString([(0, 0), (2, 2)]),
            ),
            pytest.raises(GeometryRepairError) as exc_info,
        ):
            validate_geometry(BOWTIE)
        assert exc_info.value.invalid_reason.startswith("Self-intersection")
        assert "Self-intersection" in exc_info.value.message

    def test_overlapping_multipolygon_repaired(self) -> None:
        raw = {
            "type": "MultiPolygon",
            "coordinates": [square()["coordinates"], square(0.5, 0.5)["coordinates"]],
        }
        result = validate_geometry(raw)
        assert result.was_repaired
        assert result.geometry.is_valid
        assert result.geometry.area == pytest.approx(1.75)

    def test_repair_keeps_source_z(self) -> None:
        raw = {
            "type": "Polygon",
            "coordinates": [[[0, 0, 5], [2, 2, 5], [2, 0, 5], [0, 2, 5], [0, 0, 5]]],
        }
        result = validate_geometry(raw)
        assert result.was_repaired
        assert result.source_geometry.has_z

    def test_unrepairable_reports_original_reason(self) -> None:
        expected = shapely.is_valid_reason(Polygon([(0, 0), (2, 0), (1, 0), (0, 0)]))
        with pytest.raises(GeometryRepairError) as exc_info:
            validate_geometry(COLLINEAR)
        assert exc_info.value.invalid_reason == expected
        assert expected in exc_info.value.message

    def test_degenerate_after_dedup_fails(self) -> None:
        with pytest.raises(GeometryRepairError):
            validate_geometry({"type": "LineString", "coordinates": [[0, 0], [0, 0]]})

    def test_parse_failure_propagates(self) -> None:
        with pytest.raises(GeometryParseError):
            validate_geometry(None)


class TestExtractDimension:
    def test_keeps_polygons_from_collection(self) -> None:
        collection = GeometryCollection([Polygon([(0, 0), (1, 0), (1, 1)]), LineString([(2, 2), (3, 3)])])
        result = _extract_dimension(collection, 2)
        assert result is not None
        assert result.geom_type == "Polygon"

    def test_multiple_parts_become_multi(self) -> None:
        collection = GeometryCollection(
            [Polygon([(0, 0), (1, 0), (1, 1)]), Polygon([(5, 5), (6, 5), (6, 6)]), Point(9, 9)]
        )
        result = _extract_dimension(collection, 2)
        assert result is not None
        assert result.geom_type == "MultiPolygon"
        assert len(result.geoms) == 2

    def test_no_matching_parts(self) -> None:
        assert _extract_dimension(LineString([(0, 0), (1, 0)]), 2) is None
