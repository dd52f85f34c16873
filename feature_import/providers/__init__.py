"""Geodesy service clients.

Implements the service-agnostic adapter pattern:
- GeodesyService: Abstract base class defining the two-call interface
- ReframeService: swisstopo REFRAME REST API (LV95 / LHN95)

The active service is selected via configuration.
"""

from feature_import.providers.base import GeodesyService, GeodesyServiceError
from feature_import.providers.factory import (
    REFRAME,
    get_geodesy_service,
    list_geodesy_services,
    register_geodesy_service,
)

__all__ = [
    "REFRAME",
    "GeodesyService",
    "GeodesyServiceError",
    "get_geodesy_service",
    "list_geodesy_services",
    "register_geodesy_service",
]
