"""Geodesy service selection.

``ImportConfig.geodesy_provider`` (env ``GEODESY_PROVIDER``) names the
service; ``get_geodesy_service`` builds it from the configured base URL
and timeout.  REFRAME is the only built-in service.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from feature_import.models.geodesy import GeodesyConfig
from feature_import.providers.base import GeodesyService, GeodesyServiceError
from feature_import.providers.reframe import ReframeService

if TYPE_CHECKING:
    from feature_import.core.config import ImportConfig

logger = logging.getLogger(__name__)

REFRAME = "reframe"

_SERVICES: dict[str, type[GeodesyService]] = {REFRAME: ReframeService}


def register_geodesy_service(name: str, service_cls: type[GeodesyService]) -> None:
    """Make *service_cls* selectable as *name*.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Geodesy service name must be non-empty"
        raise ValueError(msg)
    _SERVICES[name] = service_cls
    logger.debug("Registered geodesy service: %s", name)


def unregister_geodesy_service(name: str) -> None:
    """Remove a registered service; the built-in one stays."""
    if name != REFRAME:
        _SERVICES.pop(name, None)


def list_geodesy_services() -> list[str]:
    return sorted(_SERVICES)


def geodesy_config_from(config: ImportConfig) -> GeodesyConfig:
    return GeodesyConfig(
        name=config.geodesy_provider,
        base_url=config.geodesy_base_url,
        timeout_s=config.geodesy_timeout_s,
    )


def get_geodesy_service(name: str, config: GeodesyConfig | None = None) -> GeodesyService:
    """Build the service registered as *name*.

    Raises:
        GeodesyServiceError: If *name* is unknown or *config* was made for
            another service.
    """
    service_cls = _SERVICES.get(name)
    if service_cls is None:
        msg = f"Unknown geodesy service: {name!r}. Available: {', '.join(list_geodesy_services())}"
        raise GeodesyServiceError(name, msg)
    if config is None:
        config = GeodesyConfig(name=name)
    elif config.name != name:
        msg = f"GeodesyConfig.name {config.name!r} does not match requested service {name!r}"
        raise GeodesyServiceError(name, msg)

    logger.info("Creating geodesy service: %s", name)
    return service_cls(config)
