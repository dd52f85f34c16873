"""Data models for the geodesy transformation service boundary."""

from __future__ import annotations

from dataclasses import dataclass, field

from feature_import.core.exceptions import ContractError


@dataclass(frozen=True, slots=True)
class GeodesyConfig:
    """Configuration for a geodesy service client.

    Attributes:
        name: Service identifier (must match the factory registry key).
        base_url: Base URL the endpoint names are appended to.
        timeout_s: Deadline for one HTTP request, in seconds.
        extra_params: Service-specific query parameters sent on every call.
    """

    name: str
    base_url: str = ""
    timeout_s: float = 10.0
    extra_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name.strip():
            msg = "GeodesyConfig.name must be non-empty"
            raise ContractError(msg, stage="geodesy", code="INVALID_GEODESY_CONFIG")
        if self.timeout_s <= 0:
            msg = f"GeodesyConfig.timeout_s must be > 0, got {self.timeout_s}"
            raise ContractError(msg, stage="geodesy", code="INVALID_GEODESY_CONFIG")


@dataclass(frozen=True, slots=True)
class GlobalPosition:
    """A position in the global ellipsoidal frame.

    Attributes:
        longitude: Degrees east.
        latitude: Degrees north.
        ellipsoidal_height: Metres above the WGS 84 ellipsoid.
    """

    longitude: float
    latitude: float
    ellipsoidal_height: float
