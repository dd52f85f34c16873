"""GeodesyService abstract base class.

Defines the contract for external geodesy transformation services.  The
height transformer interacts exclusively with this interface.

Lifecycle of one height conversion:
    1. ``orthometric_to_ellipsoidal(e, n, h)`` — local orthometric height
       to an intermediate height on the source frame's ellipsoid.
    2. ``to_global(e, n, h_ell)`` — position plus intermediate height to
       longitude, latitude, and global ellipsoidal height.

Each concrete service (``ReframeService``, ...) implements both calls
per the service's API specifics.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from feature_import.core.exceptions import PipelineError

if TYPE_CHECKING:
    from feature_import.models.geodesy import GeodesyConfig, GlobalPosition


class GeodesyService(abc.ABC):
    """Abstract base class for geodesy service clients.

    Example usage::

        service = get_geodesy_service("reframe")
        h_bessel = service.orthometric_to_ellipsoidal(2600000.0, 1200000.0, 612.3)
        position = service.to_global(2600000.0, 1200000.0, h_bessel)
    """

    def __init__(self, config: GeodesyConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Return the service name from configuration."""
        return self._config.name

    @property
    def config(self) -> GeodesyConfig:
        """Return the service configuration (read-only)."""
        return self._config

    def close(self) -> None:  # noqa: B027
        """Release network resources.  No-op by default."""

    # ------------------------------------------------------------------
    # Abstract methods: every service must implement these
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def orthometric_to_ellipsoidal(self, easting: float, northing: float, height: float) -> float:
        """Convert a local orthometric height to the source frame's ellipsoid.

        Raises:
            GeodesyServiceError: On network errors, non-2xx responses, or a
                missing / non-numeric result field.
        """

    @abc.abstractmethod
    def to_global(self, easting: float, northing: float, ellipsoidal_height: float) -> GlobalPosition:
        """Convert a source-frame position and ellipsoidal height to global.

        Raises:
            GeodesyServiceError: On network errors, non-2xx responses, or a
                missing / non-numeric result field.
        """


# ---------------------------------------------------------------------------
# Service exceptions
# ---------------------------------------------------------------------------


class GeodesyServiceError(PipelineError):
    """Raised by a geodesy service client.

    Attributes:
        service: Name of the service that raised the error.
        endpoint: Endpoint that was called.
        status_code: HTTP status, or ``None`` for transport failures.
    """

    default_stage = "geodesy"
    default_code = "GEODESY_SERVICE_FAILED"

    def __init__(
        self,
        service: str,
        message: str,
        *,
        endpoint: str = "",
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.service = service
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message, retryable=retryable)

    def __str__(self) -> str:
        return f"[{self.service}] {self.message}"
