"""Vertical datum transformation activity.

Turns a resolved height into an ellipsoidal height in the canonical
frame.  What that takes depends on the source frame's vertical datum:

- ellipsoidal datum (method ``none``): the height is used directly;
- ``fixed_offset``: the datum's ``offset_m`` is added;
- ``reframe_api``: two sequential geodesy service calls, first to the
  source frame's ellipsoid, then to the global ellipsoidal frame;
- anything else, or no known datum: the height cannot be converted.

External calls are retried a bounded number of times on transient
failure, cached per (easting, northing, height) triple, and run through
a bounded worker pool.  Failures never propagate: each becomes a
``HeightTransformError`` result for its own feature only.
Optionally, nearby positions reuse the height offset of one converted
neighbour (delta mode), and cancellation stops conversions that have not
started yet.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from feature_import.activities.reproject import epsg_code
from feature_import.activities.resolve_height import parse_numeric
from feature_import.core.constants import (
    SOURCE_CRS_KEY,
    SOURCE_EASTING_KEY,
    SOURCE_HEIGHT_KEY,
    SOURCE_NORTHING_KEY,
    HeightMode,
    HeightStatus,
)
from feature_import.core.exceptions import HeightTransformError
from feature_import.models.datum import TransformationMethod
from feature_import.providers.base import GeodesyServiceError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from shapely.geometry.base import BaseGeometry

    from feature_import.core.config import ImportConfig
    from feature_import.models.datum import VerticalDatumReference, VerticalDatumRegistry
    from feature_import.providers.base import GeodesyService

logger = logging.getLogger("feature_import.activities.transform_height")

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_S = 0.5
DEFAULT_MAX_WORKERS = 4
DEFAULT_CACHE_SIZE = 4096

STEP_ORTHOMETRIC = "orthometric_to_ellipsoidal"
STEP_GLOBAL = "to_global"

HeightKey = tuple[float, float, float]


# ---------------------------------------------------------------------------
# Planning (no I/O)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeightPlan:
    """How a resolved height will become an ellipsoidal height.

    Attributes:
        datum: The source frame's vertical datum, if one is known.
        datum_source: Tag written to ``vertical_datum_source``.
        status: ``complete`` or ``failed`` when decided locally,
            ``pending`` when the geodesy service must be called.
        value: Ellipsoidal height for locally completed plans.
        error: Reason for locally failed plans.
    """

    datum: VerticalDatumReference | None
    datum_source: str
    status: HeightStatus
    value: float | None = None
    error: str | None = None

    @property
    def needs_service(self) -> bool:
        return self.status is HeightStatus.PENDING


def plan_height_transformation(
    height: float,
    source_crs: str,
    registry: VerticalDatumRegistry,
) -> HeightPlan:
    """Decide, without I/O, how *height* in *source_crs* is converted."""
    code = epsg_code(source_crs)
    datum = registry.lookup(code)
    if datum is None:
        tag = f"EPSG:{code}" if code is not None else source_crs
        return HeightPlan(
            None, tag, HeightStatus.FAILED, error=f"No vertical datum known for {source_crs}"
        )

    method = datum.transformation_method
    if datum.is_ellipsoidal or method is TransformationMethod.NONE:
        return HeightPlan(datum, datum.name, HeightStatus.COMPLETE, value=height)

    if method is TransformationMethod.FIXED_OFFSET:
        offset = parse_numeric(datum.transformation_params.get("offset_m"))
        if offset is None:
            return HeightPlan(
                datum,
                datum.name,
                HeightStatus.FAILED,
                error=f"Datum {datum.name} has no numeric offset_m",
            )
        return HeightPlan(datum, datum.name, HeightStatus.COMPLETE, value=height + offset)

    if method is TransformationMethod.REFRAME_API:
        return HeightPlan(datum, datum.name, HeightStatus.PENDING)

    return HeightPlan(
        datum,
        datum.name,
        HeightStatus.FAILED,
        error=f"Transformation method {method} is not supported for datum {datum.name}",
    )


def representative_point(geometry: BaseGeometry) -> tuple[float, float]:
    """Return an (x, y) guaranteed to lie on *geometry*."""
    point = geometry if geometry.geom_type == "Point" else geometry.representative_point()
    return float(point.x), float(point.y)


def source_coordinate_attributes(
    easting: float, northing: float, height: float, source_crs: str
) -> dict[str, Any]:
    """Attributes that preserve the inputs of an external transformation."""
    return {
        SOURCE_EASTING_KEY: easting,
        SOURCE_NORTHING_KEY: northing,
        SOURCE_HEIGHT_KEY: height,
        SOURCE_CRS_KEY: source_crs,
    }


def preserved_source_coordinates(attributes: dict[str, Any]) -> HeightKey | None:
    """Return the preserved (easting, northing, height), or ``None``."""
    values = [
        parse_numeric(attributes.get(key))
        for key in (SOURCE_EASTING_KEY, SOURCE_NORTHING_KEY, SOURCE_HEIGHT_KEY)
    ]
    if any(v is None for v in values):
        return None
    return values[0], values[1], values[2]  # type: ignore[return-value]


def derive_height_mode(
    status: HeightStatus,
    *,
    object_height: float | None,
    preserved: bool,
) -> HeightMode:
    """Return how a stored height should be interpreted."""
    if status is HeightStatus.COMPLETE:
        return HeightMode.ABSOLUTE_ELLIPSOIDAL
    if status is HeightStatus.NOT_REQUIRED:
        if object_height is not None:
            return HeightMode.RELATIVE_TO_GROUND
        return HeightMode.CLAMP_TO_GROUND
    return HeightMode.LV95_STORED if preserved else HeightMode.UNKNOWN


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------


class _BoundedHeightCache:
    """LRU-bounded cache for (easting, northing, height) → ellipsoidal height.

    One cache lives per transformer, and a transformer per job, so
    co-located features of a job share results.  Only successful
    conversions are cached.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        self._maxsize = maxsize
        self._data: OrderedDict[HeightKey, float] = OrderedDict()
        self._hits = 0
        self._lock = threading.Lock()

    def get(self, key: HeightKey) -> float | None:
        with self._lock:
            value = self._data.get(key)
            if value is not None:
                self._data.move_to_end(key)
                self._hits += 1
            return value

    def put(self, key: HeightKey, value: float) -> None:
        if self._maxsize <= 0:
            return
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = value
            while len(self._data) > self._maxsize:
                evicted, _ = self._data.popitem(last=False)
                logger.debug("Height cache eviction | key=%s | size=%d", evicted, len(self._data))

    @property
    def hits(self) -> int:
        with self._lock:
            return self._hits

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# ---------------------------------------------------------------------------
# External transformation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeightRequest:
    """One feature's external conversion request, keyed by the caller."""

    key: Any
    easting: float
    northing: float
    height: float

    @property
    def triple(self) -> HeightKey:
        return (self.easting, self.northing, self.height)


@dataclass(frozen=True, slots=True)
class HeightResult:
    """Outcome of one ``HeightRequest``.

    ``submitted`` is ``False`` when cancellation prevented the call; the
    feature then keeps its height ``pending``.
    """

    value: float | None = None
    error: HeightTransformError | None = None
    submitted: bool = True

    @property
    def ok(self) -> bool:
        return self.value is not None


class _RetryCancelled(Exception):
    """Cancellation was requested while waiting to retry a call."""


def _call_with_retry(
    call: Callable[[], Any],
    *,
    step: str,
    max_retries: int,
    retry_base_s: float,
    cancel_event: threading.Event,
) -> Any:
    """Run one geodesy call, retrying retryable failures.

    Raises:
        HeightTransformError: After retries are exhausted or on a
            non-retryable failure.
        _RetryCancelled: If *cancel_event* is set during a backoff wait.
    """
    last_error: GeodesyServiceError | None = None
    for attempt in range(max_retries + 1):
        try:
            return call()
        except GeodesyServiceError as exc:
            last_error = exc
            if not exc.retryable:
                msg = f"{step} failed: {exc}"
                raise HeightTransformError(msg, step=step) from exc

            if attempt < max_retries:
                logger.warning(
                    "Geodesy attempt %d/%d failed (retryable) | step=%s | error=%s",
                    attempt + 1,
                    max_retries + 1,
                    step,
                    exc,
                )
                if cancel_event.wait(retry_base_s * (2**attempt)):
                    logger.info("Geodesy retry abandoned on cancellation | step=%s", step)
                    raise _RetryCancelled(step) from exc
            else:
                logger.error(
                    "Geodesy retries exhausted | step=%s | attempts=%d | error=%s",
                    step,
                    max_retries + 1,
                    exc,
                )

    msg = f"{step} failed after {max_retries + 1} attempts: {last_error}"
    raise HeightTransformError(msg, step=step, retryable=True) from last_error


# ---------------------------------------------------------------------------
# Height deltas
# ---------------------------------------------------------------------------


class _ProximityIndex:
    """Positions bucketed into square cells as wide as the search radius.

    Any neighbour within the radius lies in the query's own cell or in
    one of the eight around it.
    """

    def __init__(self, radius_m: float) -> None:
        self.radius_m = radius_m
        self._cells: dict[tuple[int, int], list[tuple[float, float, Any]]] = {}
        self._size = 0
        self._lock = threading.Lock()

    def _cell(self, easting: float, northing: float) -> tuple[int, int] | None:
        if not (math.isfinite(easting) and math.isfinite(northing)):
            return None
        return math.floor(easting / self.radius_m), math.floor(northing / self.radius_m)

    def add(self, easting: float, northing: float, payload: Any) -> None:
        cell = self._cell(easting, northing)
        if cell is None:
            return
        with self._lock:
            self._cells.setdefault(cell, []).append((easting, northing, payload))
            self._size += 1

    def nearest(self, easting: float, northing: float) -> Any | None:
        """Return the payload of the closest entry within the radius."""
        cell = self._cell(easting, northing)
        if cell is None:
            return None
        best: Any | None = None
        best_distance = self.radius_m
        with self._lock:
            for dx in (-1, 0, 1):
                for dy in (-1, 0, 1):
                    for e, n, payload in self._cells.get((cell[0] + dx, cell[1] + dy), ()):
                        distance = math.hypot(easting - e, northing - n)
                        if distance <= best_distance:
                            best, best_distance = payload, distance
        return best

    def __len__(self) -> int:
        with self._lock:
            return self._size


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class HeightTransformer:
    """Converts local orthometric heights through a ``GeodesyService``.

    In delta mode (``delta_radius_m`` set), every conversion through the
    service also records the offset between its ellipsoidal output and
    orthometric input.  A later position within ``delta_radius_m`` of a
    recorded one reuses that offset instead of calling the service.
    Positions with no recorded neighbour, or whose neighbour's conversion
    failed, take the two-call path.

    Args:
        service: The geodesy service client.
        max_retries: Extra attempts per call on retryable failures.
        retry_base_s: Base delay of the exponential backoff.
        max_workers: Concurrent outstanding calls in ``transform_many``.
        cache_size: Cached results (0 disables caching).
        cancel_event: Once set, no further calls are started.
        delta_radius_m: Offset reuse radius in metres; ``None`` disables
            delta mode.
    """

    def __init__(
        self,
        service: GeodesyService,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_s: float = DEFAULT_RETRY_BASE_S,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cache_size: int = DEFAULT_CACHE_SIZE,
        cancel_event: threading.Event | None = None,
        delta_radius_m: float | None = None,
    ) -> None:
        if delta_radius_m is not None and delta_radius_m <= 0:
            msg = f"delta_radius_m must be > 0, got {delta_radius_m}"
            raise ValueError(msg)
        self._service = service
        self._max_retries = max_retries
        self._retry_base_s = retry_base_s
        self._max_workers = max(1, max_workers)
        self._cache = _BoundedHeightCache(cache_size)
        self._cancel_event = cancel_event or threading.Event()
        self._deltas = _ProximityIndex(delta_radius_m) if delta_radius_m is not None else None
        self._stats_lock = threading.Lock()
        self.calls_made = 0
        self.delta_hits = 0

    @classmethod
    def from_config(
        cls,
        config: ImportConfig,
        service: GeodesyService,
        *,
        cancel_event: threading.Event | None = None,
        use_delta: bool | None = None,
    ) -> HeightTransformer:
        """Build a transformer; *use_delta* overrides ``config.height_delta_mode``."""
        if use_delta is None:
            use_delta = config.height_delta_mode
        return cls(
            service,
            max_retries=config.geodesy_max_retries,
            retry_base_s=config.geodesy_retry_base_s,
            max_workers=config.geodesy_max_workers,
            cache_size=config.geodesy_cache_size,
            cancel_event=cancel_event,
            delta_radius_m=config.height_delta_radius_m if use_delta else None,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cache_hits(self) -> int:
        return self._cache.hits

    @property
    def delta_mode(self) -> bool:
        return self._deltas is not None

    def _count(self, *, calls: int = 0, deltas: int = 0) -> None:
        with self._stats_lock:
            self.calls_made += calls
            self.delta_hits += deltas

    def _from_delta(self, key: HeightKey, offset: float) -> float:
        value = key[2] + offset
        self._cache.put(key, value)
        self._count(deltas=1)
        return value

    def _convert(self, easting: float, northing: float, height: float) -> float | None:
        """Return the global ellipsoidal height, or ``None`` if cancelled first."""
        key = (easting, northing, height)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Height cache hit | key=%s", key)
            return cached

        if self._deltas is not None:
            offset = self._deltas.nearest(easting, northing)
            if offset is not None:
                return self._from_delta(key, offset)

        if self.cancelled:
            return None

        self._count(calls=1)
        try:
            intermediate = _call_with_retry(
                lambda: self._service.orthometric_to_ellipsoidal(easting, northing, height),
                step=STEP_ORTHOMETRIC,
                max_retries=self._max_retries,
                retry_base_s=self._retry_base_s,
                cancel_event=self._cancel_event,
            )
            position = _call_with_retry(
                lambda: self._service.to_global(easting, northing, intermediate),
                step=STEP_GLOBAL,
                max_retries=self._max_retries,
                retry_base_s=self._retry_base_s,
                cancel_event=self._cancel_event,
            )
        except _RetryCancelled:
            return None

        value = position.ellipsoidal_height
        self._cache.put(key, value)
        if self._deltas is not None:
            self._deltas.add(easting, northing, value - height)
        return value

    def transform(self, easting: float, northing: float, height: float) -> float:
        """Return the global ellipsoidal height for one position.

        Raises:
            HeightTransformError: If either service call fails, or if the
                transformer was cancelled before the conversion finished.
        """
        value = self._convert(easting, northing, height)
        if value is None:
            msg = "height transformation cancelled"
            raise HeightTransformError(msg, retryable=True)
        return value

    def _transform_result(self, triple: HeightKey) -> HeightResult:
        try:
            value = self._convert(*triple)
        except HeightTransformError as exc:
            return HeightResult(error=exc)
        except Exception as exc:
            logger.exception("Unexpected height transformation failure | key=%s", triple)
            error = HeightTransformError(f"unexpected geodesy failure: {type(exc).__name__}: {exc}")
            return HeightResult(error=error)
        if value is None:
            return HeightResult(submitted=False)
        return HeightResult(value=value)

    def _run(self, triples: Sequence[HeightKey], results: dict[HeightKey, HeightResult]) -> None:
        if not triples:
            return
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(triples)),
            thread_name_prefix="geodesy",
        ) as executor:
            futures = {}
            for triple in triples:
                if self.cancelled:
                    results[triple] = HeightResult(submitted=False)
                    continue
                futures[executor.submit(self._transform_result, triple)] = triple
            for future in as_completed(futures):
                results[futures[future]] = future.result()

    @staticmethod
    def _group_by_proximity(
        triples: Sequence[HeightKey], deltas: _ProximityIndex
    ) -> tuple[list[HeightKey], dict[HeightKey, list[HeightKey]]]:
        """Split *triples* into leaders and the followers of each leader.

        Triples near an already recorded offset lead alone, as do triples
        with no leader within the radius.  Every other triple follows
        the nearest leader.
        """
        leaders = _ProximityIndex(deltas.radius_m)
        ordered: list[HeightKey] = []
        followers: dict[HeightKey, list[HeightKey]] = {}
        for triple in triples:
            easting, northing, _ = triple
            if deltas.nearest(easting, northing) is None:
                leader = leaders.nearest(easting, northing)
                if leader is not None:
                    followers[leader].append(triple)
                    continue
                leaders.add(easting, northing, triple)
            ordered.append(triple)
            followers[triple] = []
        return ordered, {lead: group for lead, group in followers.items() if group}

    def transform_many(self, requests: Sequence[HeightRequest]) -> dict[Any, HeightResult]:
        """Convert a batch of requests concurrently.

        Identical triples are converted once.  In delta mode, nearby
        triples share a single service conversion.  A failure or timeout
        of one triple only affects the requests sharing it.  After
        cancellation, requests whose conversion had not started come back
        with ``submitted=False``.

        Returns:
            Request key to ``HeightResult``, for every request.
        """
        by_triple: dict[HeightKey, list[Any]] = {}
        for request in requests:
            by_triple.setdefault(request.triple, []).append(request.key)

        results: dict[HeightKey, HeightResult] = {}
        pending: list[HeightKey] = []
        for triple in by_triple:
            cached = self._cache.get(triple)
            if cached is not None:
                results[triple] = HeightResult(value=cached)
            else:
                pending.append(triple)

        followers: dict[HeightKey, list[HeightKey]] = {}
        if self._deltas is not None and pending:
            pending, followers = self._group_by_proximity(pending, self._deltas)
        self._run(pending, results)

        fallback: list[HeightKey] = []
        for leader, group in followers.items():
            lead = results[leader]
            for triple in group:
                if not lead.submitted:
                    results[triple] = HeightResult(submitted=False)
                elif lead.ok:
                    offset = lead.value - leader[2]  # type: ignore[operator]
                    results[triple] = HeightResult(value=self._from_delta(triple, offset))
                else:
                    fallback.append(triple)
        if fallback:
            logger.info("Height delta unavailable, converting directly | triples=%d", len(fallback))
            self._run(fallback, results)

        skipped = sum(1 for r in results.values() if not r.submitted)
        if skipped:
            logger.warning("Height transformation cancelled | unsubmitted=%d", skipped)

        return {key: results[triple] for triple, keys in by_triple.items() for key in keys}

    def close(self) -> None:
        self._service.close()
