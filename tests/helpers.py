"""Test helpers shared across the unit tests.

Geometry payload builders and a REFRAME service backed by
``httpx.MockTransport``, so no test touches the network.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from feature_import.models.geodesy import GeodesyConfig
from feature_import.providers.reframe import ReframeService

TEST_BASE_URL = "https://reframe.test/reframe"

Handler = Callable[[httpx.Request], httpx.Response]

# ---------------------------------------------------------------------------
# Geodesy service backed by httpx.MockTransport
# ---------------------------------------------------------------------------


def make_reframe_service(handler: Handler) -> ReframeService:
    """Build a ``ReframeService`` whose HTTP calls go to *handler*."""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ReframeService(GeodesyConfig(name="reframe", base_url=TEST_BASE_URL), client=client)


def reframe_handler(
    *,
    bessel: float | Callable[[httpx.Request], Any] = 611.9,
    wgs84: float | Callable[[httpx.Request], Any] = 566.1,
    calls: list[str] | None = None,
) -> Handler:
    """Return a handler answering both REFRAME endpoints.

    *bessel* / *wgs84* are either the ``altitude`` to return or a callable
    returning an ``httpx.Response`` (or raising, e.g. ``httpx.ReadTimeout``).
    Every request path is appended to *calls* when given.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        if request.url.path.endswith("/lhn95tobessel"):
            answer = bessel
            body = {"easting": request.url.params["easting"], "northing": request.url.params["northing"]}
        elif request.url.path.endswith("/lv95towgs84"):
            answer = wgs84
            body = {"easting": "7.43863", "northing": "46.95108"}
        else:
            return httpx.Response(404)
        if callable(answer):
            return answer(request)
        return httpx.Response(200, json={**body, "altitude": str(answer)})

    return handler


def timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


def undecodable(request: httpx.Request) -> httpx.Response:
    """A 200 whose body claims gzip encoding but is plain bytes."""
    return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")


# ---------------------------------------------------------------------------
# Geometry payloads
# ---------------------------------------------------------------------------


def point(x: float, y: float, z: float | None = None) -> dict[str, Any]:
    coords = [x, y] if z is None else [x, y, z]
    return {"type": "Point", "coordinates": coords}


def square(x: float = 0.0, y: float = 0.0, size: float = 1.0) -> dict[str, Any]:
    return {
        "type": "Polygon",
        "coordinates": [
            [[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]],
        ],
    }


BOWTIE: dict[str, Any] = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [2, 2], [2, 0], [0, 2], [0, 0]]],
}

COLLINEAR: dict[str, Any] = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [2, 0], [1, 0], [0, 0]]],
}


def import_request(
    features: list[dict[str, Any]],
    *,
    source: str = "EPSG:4326",
    target: str = "EPSG:4326",
    batch_size: int = 1000,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "target_layer_name": "buildings",
        "features": features,
        "source_reference_frame_id": source,
        "target_reference_frame_id": target,
        "batch_size": batch_size,
        **extra,
    }
