"""End-to-end tests for the batch import orchestrator.

Geodesy calls go through ``httpx.MockTransport``; the store and tracker
are the in-process implementations.
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest
import shapely
from shapely.geometry import LineString, Polygon

from feature_import.core.config import ImportConfig
from feature_import.core.constants import HeightMode, HeightStatus, JobStatus
from feature_import.core.exceptions import ContractError, JobAbortedError
from feature_import.orchestrators.import_pipeline import import_features
from feature_import.orchestrators.progress import JobProgressTracker
from feature_import.providers.reframe import ReframeService
from feature_import.store.memory import InMemoryFeatureStore
from tests.helpers import (
    BOWTIE,
    COLLINEAR,
    import_request,
    make_reframe_service,
    point,
    reframe_handler,
    square,
    timeout,
    undecodable,
)

LV95_E = 2600000.0
LV95_N = 1200000.0


def _feature(geometry: dict | None, **properties: object) -> dict:
    return {"geometry": geometry, "properties": properties}


def _run(
    request: dict,
    store: InMemoryFeatureStore,
    tracker: JobProgressTracker,
    config: ImportConfig,
    service: ReframeService | None = None,
    **kwargs: object,
):
    return import_features(
        request, store=store, tracker=tracker, config=config, service=service, **kwargs  # type: ignore[arg-type]
    )


class TestLv95Heights:
    def test_z_coordinate_converted_to_ellipsoidal(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        calls: list[str] = []
        service = make_reframe_service(reframe_handler(calls=calls))
        request = import_request(
            [_feature(point(LV95_E, LV95_N, 612.3), H_MEAN=1.0)], source="EPSG:2056"
        )

        result = _run(request, store, tracker, config, service)

        assert result.imported_count == 1
        assert result.status == "completed"
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.base_elevation_ellipsoidal == pytest.approx(566.1)
        assert stored.height_transformation_status is HeightStatus.COMPLETE
        assert stored.height_mode is HeightMode.ABSOLUTE_ELLIPSOIDAL
        assert stored.height_source == "z_coord"
        assert stored.vertical_datum_source == "LHN95"
        assert stored.height_error is None
        assert not stored.geometry.has_z
        assert stored.geometry.x == pytest.approx(7.4386, abs=1e-3)
        assert stored.geometry.y == pytest.approx(46.9511, abs=1e-3)
        assert len(calls) == 2

    def test_source_coordinates_preserved(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
        reframe_service: ReframeService,
    ) -> None:
        request = import_request([_feature(point(LV95_E, LV95_N, 612.3))], source="EPSG:2056")
        result = _run(request, store, tracker, config, reframe_service)
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.attributes["source_easting"] == LV95_E
        assert stored.attributes["source_northing"] == LV95_N
        assert stored.attributes["source_height"] == 612.3
        assert stored.attributes["source_crs"] == "EPSG:2056"

    def test_second_call_timeout_marks_height_failed(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        service = make_reframe_service(reframe_handler(wgs84=timeout))
        request = import_request([_feature(point(LV95_E, LV95_N, 612.3))], source="EPSG:2056")

        result = _run(request, store, tracker, config, service)

        assert result.imported_count == 1
        assert result.failed_count == 0
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.base_elevation_ellipsoidal is None
        assert stored.height_transformation_status is HeightStatus.FAILED
        assert stored.height_mode is HeightMode.LV95_STORED
        assert "to_global" in (stored.height_error or "")
        assert any("height transformation failed" in n for n in result.debug_info.notices)

    def test_attribute_height_used_without_z(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
        reframe_service: ReframeService,
    ) -> None:
        request = import_request(
            [_feature(square(LV95_E, LV95_N, 10.0), HOEHE="612.3")], source="EPSG:2056"
        )
        result = _run(request, store, tracker, config, reframe_service)
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.height_source == "attribute:HOEHE"
        assert stored.height_transformation_status is HeightStatus.COMPLETE

    def test_identical_positions_share_one_conversion(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        calls: list[str] = []
        service = make_reframe_service(reframe_handler(calls=calls))
        features = [_feature(point(LV95_E, LV95_N, 612.3)) for _ in range(3)]
        result = _run(import_request(features, source="EPSG:2056"), store, tracker, config, service)
        assert result.imported_count == 3
        assert len(calls) == 2

    def test_deferred_heights_stay_pending(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        calls: list[str] = []
        service = make_reframe_service(reframe_handler(calls=calls))
        request = import_request(
            [_feature(point(LV95_E, LV95_N, 612.3))],
            source="EPSG:2056",
            defer_height_transformation=True,
        )
        result = _run(request, store, tracker, config, service)
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.height_transformation_status is HeightStatus.PENDING
        assert stored.height_mode is HeightMode.LV95_STORED
        assert stored.base_elevation_ellipsoidal is None
        assert calls == []
        assert any("deferred" in n for n in result.debug_info.notices)

    def test_cancelled_job_leaves_heights_pending(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        calls: list[str] = []
        service = make_reframe_service(reframe_handler(calls=calls))
        cancel = threading.Event()
        cancel.set()
        request = import_request([_feature(point(LV95_E, LV95_N, 612.3))], source="EPSG:2056")
        result = _run(request, store, tracker, config, service, cancel_event=cancel)
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.height_transformation_status is HeightStatus.PENDING
        assert result.imported_count == 1
        assert calls == []

    def test_undecodable_response_fails_height_only(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        service = make_reframe_service(reframe_handler(bessel=undecodable))
        request = import_request([_feature(point(LV95_E, LV95_N, 612.3))], source="EPSG:2056")

        result = _run(request, store, tracker, config, service)

        assert result.imported_count == 1
        assert result.status == "completed"
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.height_transformation_status is HeightStatus.FAILED
        assert stored.height_mode is HeightMode.LV95_STORED
        assert "DecodingError" in (stored.height_error or "")

    def test_delta_mode_reuses_neighbour_offset(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        calls: list[str] = []
        service = make_reframe_service(reframe_handler(calls=calls))
        features = [
            _feature(point(LV95_E, LV95_N, 612.3)),
            _feature(point(LV95_E + 50.0, LV95_N + 20.0, 620.3)),
            _feature(point(LV95_E + 8000.0, LV95_N, 612.3)),
        ]
        request = import_request(features, source="EPSG:2056", use_height_delta=True)

        result = _run(request, store, tracker, config, service)

        assert result.imported_count == 3
        assert len(calls) == 4
        heights = sorted(f.base_elevation_ellipsoidal for f in store.features_by_layer(result.layer_id))
        assert heights == pytest.approx([566.1, 566.1, 574.1])


class TestOtherDatums:
    def test_ellipsoidal_source_needs_no_service(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        request = import_request([_feature(point(7.44, 46.95, 560.0))])
        result = _run(request, store, tracker, config)
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.base_elevation_ellipsoidal == 560.0
        assert stored.height_transformation_status is HeightStatus.COMPLETE
        assert stored.vertical_datum_source == "WGS84 Ellipsoid"

    def test_unsupported_datum_fails_height_only(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        request = import_request([_feature(point(500000.0, 5200000.0, 100.0))], source="EPSG:32632")
        result = _run(request, store, tracker, config)
        assert result.imported_count == 1
        [stored] = store.features_by_layer(result.layer_id)
        assert stored.height_transformation_status is HeightStatus.FAILED
        assert stored.height_mode is HeightMode.UNKNOWN
        assert stored.vertical_datum_source == "EGM2008 Geoid"
        assert "source_easting" not in stored.attributes

    def test_no_height_is_not_required(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        request = import_request(
            [_feature(square(), name="a"), _feature(square(), object_height=8.5)]
        )
        result = _run(request, store, tracker, config)
        first, second = store.features_by_layer(result.layer_id)
        assert first.height_transformation_status is HeightStatus.NOT_REQUIRED
        assert first.height_mode is HeightMode.CLAMP_TO_GROUND
        assert second.object_height == 8.5
        assert second.height_mode is HeightMode.RELATIVE_TO_GROUND


class TestBatching:
    def test_batches_and_skips(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        features = [_feature(square(i, 0)) for i in range(5)]
        features[3] = _feature(None)
        result = _run(import_request(features, batch_size=2), store, tracker, config)

        assert result.debug_info.batches_processed == 3
        assert result.skipped_count == 1
        assert result.imported_count + result.failed_count == 4
        assert result.debug_info.total_features == 5
        assert any("no geometry" in n for n in result.debug_info.notices)
        assert [f.feature_index for f in store.features_by_layer(result.layer_id)] == [0, 1, 2, 4]
        assert tracker.get(result.job_id).status is JobStatus.COMPLETED

    def test_batch_size_larger_than_input(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        result = _run(import_request([_feature(square())], batch_size=50), store, tracker, config)
        assert result.debug_info.batches_processed == 1

    def test_empty_input_completes(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        result = _run(import_request([]), store, tracker, config)
        assert result.status == "completed"
        assert result.imported_count == 0
        assert result.debug_info.batches_processed == 0

    def test_all_skipped_completes(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        result = _run(import_request([_feature(None), _feature(None)]), store, tracker, config)
        assert result.status == "completed"
        assert result.skipped_count == 2
        assert store.collection_count == 1

    def test_undecodable_geometry_skipped_with_entry(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        features = [_feature(square()), _feature({"type": "Circle", "coordinates": [0, 0]})]
        result = _run(import_request(features), store, tracker, config)
        assert result.skipped_count == 1
        [entry] = result.debug_info.feature_errors
        assert entry.index == 1
        assert entry.code == "GEOMETRY_PARSE_FAILED"


class TestGeometryOutcomes:
    def test_repaired_and_cleaned_counted(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        duplicated = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
        }
        features = [_feature(BOWTIE), _feature(duplicated), _feature(square())]
        result = _run(import_request(features), store, tracker, config)
        assert result.imported_count == 3
        assert result.debug_info.repaired_count == 1
        assert result.debug_info.cleaned_count == 1

    def test_unrepairable_geometry_reports_reason(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        expected = shapely.is_valid_reason(Polygon([(0, 0), (2, 0), (1, 0), (0, 0)]))
        result = _run(
            import_request([_feature(square()), _feature(COLLINEAR)]), store, tracker, config
        )
        assert result.imported_count == 1
        assert result.failed_count == 1
        [entry] = result.debug_info.feature_errors
        assert entry.index == 1
        assert entry.code == "GEOMETRY_INVALID"
        assert entry.detail == expected

    def test_self_intersection_reason_reaches_feature_error(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        with (
            patch.object(Polygon, "buffer", return_value=Polygon()),
            patch(
                "feature_import.activities.validate_geometry.make_valid",
                return_value=LineString([(0, 0), (2, 2)]),
            ),
        ):
            result = _run(
                import_request([_feature(square()), _feature(BOWTIE)]), store, tracker, config
            )
        assert result.failed_count == 1
        [entry] = result.debug_info.feature_errors
        assert entry.index == 1
        assert entry.code == "GEOMETRY_INVALID"
        assert entry.detail.startswith("Self-intersection")


class TestAbort:
    def test_all_failed_deletes_everything(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        request = import_request([_feature(COLLINEAR), _feature(COLLINEAR)], batch_size=1)
        with pytest.raises(JobAbortedError) as exc_info:
            _run(request, store, tracker, config)

        exc = exc_info.value
        assert store.collection_count == 0
        assert store.layer_count == 0
        assert store.feature_count == 0
        assert len(exc.debug_info["feature_errors"]) == 2
        assert exc.debug_info["batches_processed"] == 2
        assert tracker.get(exc.job_id).status is JobStatus.FAILED

    def test_unknown_target_frame_aborts(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        request = import_request([_feature(square())], target="EPSG:999999")
        with pytest.raises(JobAbortedError) as exc_info:
            _run(request, store, tracker, config)
        [entry] = exc_info.value.debug_info["feature_errors"]
        assert entry["code"] == "REPROJECTION_FAILED"
        assert store.collection_count == 0

    def test_malformed_request_creates_nothing(
        self,
        store: InMemoryFeatureStore,
        tracker: JobProgressTracker,
        config: ImportConfig,
    ) -> None:
        with pytest.raises(ContractError):
            _run({"target_layer_name": "x", "features": []}, store, tracker, config)
        assert store.collection_count == 0
