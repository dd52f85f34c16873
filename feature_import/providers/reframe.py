"""REFRAME geodesy service client.

swisstopo's REFRAME REST service converts Swiss LV95 positions and
LHN95 heights.  Two endpoints are used:

- ``lhn95tobessel``: LHN95 orthometric height to Bessel ellipsoidal height.
- ``lv95towgs84``:   LV95 position plus Bessel height to WGS 84
  longitude / latitude / ellipsoidal height.

Both take ``easting``, ``northing``, ``altitude`` and ``format=json`` as
query parameters and answer with ``{"easting", "northing", "altitude"}``.
"""

from __future__ import annotations

import logging
import math
from typing import Any

import httpx

from feature_import.models.geodesy import GeodesyConfig, GlobalPosition
from feature_import.providers.base import GeodesyService, GeodesyServiceError

logger = logging.getLogger("feature_import.providers.reframe")

DEFAULT_BASE_URL = "https://geodesy.geo.admin.ch/reframe"
ORTHOMETRIC_ENDPOINT = "lhn95tobessel"
GLOBAL_ENDPOINT = "lv95towgs84"

# HTTP statuses worth retrying: throttling and server-side failures.
_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class ReframeService(GeodesyService):
    """``GeodesyService`` backed by the REFRAME REST API.

    Args:
        config: Service configuration; ``base_url`` defaults to the public
            swisstopo endpoint.
        client: Optional pre-built ``httpx.Client`` (tests inject one with
            a ``MockTransport``).  When omitted, the service owns a client
            with the configured timeout.
    """

    def __init__(self, config: GeodesyConfig, client: httpx.Client | None = None) -> None:
        super().__init__(config)
        self._base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout_s)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # GeodesyService
    # ------------------------------------------------------------------

    def orthometric_to_ellipsoidal(self, easting: float, northing: float, height: float) -> float:
        body = self._get(ORTHOMETRIC_ENDPOINT, easting, northing, height)
        return self._number(body, "altitude", ORTHOMETRIC_ENDPOINT)

    def to_global(self, easting: float, northing: float, ellipsoidal_height: float) -> GlobalPosition:
        body = self._get(GLOBAL_ENDPOINT, easting, northing, ellipsoidal_height)
        return GlobalPosition(
            longitude=self._number(body, "easting", GLOBAL_ENDPOINT),
            latitude=self._number(body, "northing", GLOBAL_ENDPOINT),
            ellipsoidal_height=self._number(body, "altitude", GLOBAL_ENDPOINT),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, endpoint: str, easting: float, northing: float, height: float) -> dict[str, Any]:
        params: dict[str, Any] = {
            **self.config.extra_params,
            "easting": easting,
            "northing": northing,
            "altitude": height,
            "format": "json",
        }
        url = f"{self._base_url}/{endpoint}"
        try:
            response = self._client.get(url, params=params, timeout=self.config.timeout_s)
        except httpx.TimeoutException as exc:
            msg = f"{endpoint} timed out after {self.config.timeout_s}s"
            raise GeodesyServiceError(
                self.name, msg, endpoint=endpoint, retryable=True
            ) from exc
        except httpx.TransportError as exc:
            msg = f"{endpoint} transport error: {exc}"
            raise GeodesyServiceError(
                self.name, msg, endpoint=endpoint, retryable=True
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # Decoding, redirect and URL failures are permanent.
            msg = f"{endpoint} request failed: {type(exc).__name__}: {exc}"
            raise GeodesyServiceError(self.name, msg, endpoint=endpoint) from exc

        if not response.is_success:
            msg = f"{endpoint} returned HTTP {response.status_code}"
            raise GeodesyServiceError(
                self.name,
                msg,
                endpoint=endpoint,
                status_code=response.status_code,
                retryable=response.status_code in _RETRYABLE_STATUS,
            )

        try:
            body = response.json()
        except ValueError as exc:
            msg = f"{endpoint} returned a non-JSON body"
            raise GeodesyServiceError(
                self.name, msg, endpoint=endpoint, status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            msg = f"{endpoint} returned {type(body).__name__}, expected an object"
            raise GeodesyServiceError(
                self.name, msg, endpoint=endpoint, status_code=response.status_code
            )

        logger.debug("Geodesy call | endpoint=%s | e=%s | n=%s | h=%s", endpoint, easting, northing, height)
        return body

    def _number(self, body: dict[str, Any], key: str, endpoint: str) -> float:
        raw = body.get(key)
        if raw is None or isinstance(raw, bool):
            msg = f"{endpoint} response has no numeric {key!r}"
            raise GeodesyServiceError(self.name, msg, endpoint=endpoint)
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            msg = f"{endpoint} response {key!r} is not numeric: {raw!r}"
            raise GeodesyServiceError(self.name, msg, endpoint=endpoint) from exc
        if not math.isfinite(value):
            msg = f"{endpoint} response {key!r} is not finite: {raw!r}"
            raise GeodesyServiceError(self.name, msg, endpoint=endpoint)
        return value
