"""Pipeline configuration loaded from environment variables.

All configuration values have sensible defaults. Azure Functions app
settings (or ``local.settings.json`` for local dev) are the source of
truth.

``from_env()`` raises ``ConfigValidationError`` if any value is out of
its valid range, so bad configuration is caught at startup rather than
in the middle of an import.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from feature_import.core.constants import CANONICAL_CRS
from feature_import.core.exceptions import PipelineError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class ImportConfig:
    """Immutable import configuration.

    Loaded once at function startup and threaded through the pipeline.

    Attributes:
        canonical_crs: Horizontal frame stored footprints are reprojected to.
        default_batch_size: Batch size used when a request does not set one.
        geodesy_provider: Registered geodesy service name.
        geodesy_base_url: Base URL of the geodesy transformation service.
        geodesy_timeout_s: Deadline for a single geodesy HTTP call, in seconds.
        geodesy_max_retries: Extra attempts for a retryable geodesy failure.
        geodesy_retry_base_s: Base delay for exponential retry backoff, in seconds.
        geodesy_max_workers: Concurrent outstanding geodesy calls per batch.
        geodesy_cache_size: Cached height results per job (0 disables caching).
        defer_height_transformation: Store heights for a later pass instead
            of calling the geodesy service during import.
        height_delta_mode: Convert nearby heights by reusing the offset of
            one converted neighbour instead of calling the geodesy service.
        height_delta_radius_m: Distance within which an offset is reused, in metres.
        job_history_limit: Finished jobs the process-wide tracker keeps.
    """

    canonical_crs: str = CANONICAL_CRS
    default_batch_size: int = 1000
    geodesy_provider: str = "reframe"
    geodesy_base_url: str = "https://geodesy.geo.admin.ch/reframe"
    geodesy_timeout_s: float = 10.0
    geodesy_max_retries: int = 2
    geodesy_retry_base_s: float = 0.5
    geodesy_max_workers: int = 4
    geodesy_cache_size: int = 4096
    defer_height_transformation: bool = False
    height_delta_mode: bool = False
    height_delta_radius_m: float = 1000.0
    job_history_limit: int = 1000

    @classmethod
    def from_env(cls) -> ImportConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a
                required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``IMPORT_BATCH_SIZE=abc``).
        """
        config = cls(
            canonical_crs=os.getenv("CANONICAL_CRS", CANONICAL_CRS),
            default_batch_size=int(os.getenv("IMPORT_BATCH_SIZE", "1000")),
            geodesy_provider=os.getenv("GEODESY_PROVIDER", "reframe"),
            geodesy_base_url=os.getenv(
                "GEODESY_BASE_URL", "https://geodesy.geo.admin.ch/reframe"
            ),
            geodesy_timeout_s=float(os.getenv("GEODESY_TIMEOUT_S", "10")),
            geodesy_max_retries=int(os.getenv("GEODESY_MAX_RETRIES", "2")),
            geodesy_retry_base_s=float(os.getenv("GEODESY_RETRY_BASE_S", "0.5")),
            geodesy_max_workers=int(os.getenv("GEODESY_MAX_WORKERS", "4")),
            geodesy_cache_size=int(os.getenv("GEODESY_CACHE_SIZE", "4096")),
            defer_height_transformation=(
                os.getenv("DEFER_HEIGHT_TRANSFORMATION", "false").strip().lower() in _TRUE_VALUES
            ),
            height_delta_mode=(
                os.getenv("HEIGHT_DELTA_MODE", "false").strip().lower() in _TRUE_VALUES
            ),
            height_delta_radius_m=float(os.getenv("HEIGHT_DELTA_RADIUS_M", "1000")),
            job_history_limit=int(os.getenv("JOB_HISTORY_LIMIT", "1000")),
        )
        _validate(config)
        return config


def _validate(config: ImportConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.canonical_crs:
        raise ConfigValidationError("CANONICAL_CRS", config.canonical_crs, "must not be empty")

    if config.default_batch_size <= 0:
        raise ConfigValidationError(
            "IMPORT_BATCH_SIZE", config.default_batch_size, "must be > 0 (features)"
        )

    if not config.geodesy_provider:
        raise ConfigValidationError(
            "GEODESY_PROVIDER", config.geodesy_provider, "must not be empty"
        )

    if not config.geodesy_base_url:
        raise ConfigValidationError(
            "GEODESY_BASE_URL", config.geodesy_base_url, "must not be empty"
        )

    if config.geodesy_timeout_s <= 0:
        raise ConfigValidationError(
            "GEODESY_TIMEOUT_S", config.geodesy_timeout_s, "must be > 0 (seconds)"
        )

    if config.geodesy_max_retries < 0:
        raise ConfigValidationError(
            "GEODESY_MAX_RETRIES", config.geodesy_max_retries, "must be >= 0"
        )

    if config.geodesy_retry_base_s < 0:
        raise ConfigValidationError(
            "GEODESY_RETRY_BASE_S", config.geodesy_retry_base_s, "must be >= 0 (seconds)"
        )

    if config.geodesy_max_workers < 1:
        raise ConfigValidationError(
            "GEODESY_MAX_WORKERS", config.geodesy_max_workers, "must be >= 1"
        )

    if config.geodesy_cache_size < 0:
        raise ConfigValidationError(
            "GEODESY_CACHE_SIZE", config.geodesy_cache_size, "must be >= 0 (0 disables)"
        )

    if config.height_delta_radius_m <= 0:
        raise ConfigValidationError(
            "HEIGHT_DELTA_RADIUS_M", config.height_delta_radius_m, "must be > 0 (metres)"
        )

    if config.job_history_limit < 1:
        raise ConfigValidationError(
            "JOB_HISTORY_LIMIT", config.job_history_limit, "must be >= 1 (jobs)"
        )
