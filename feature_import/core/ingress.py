"""Thin ingress boundary helpers for Azure Functions entrypoints.

Centralises the cross-cutting transport concerns so that
``function_app.py`` contains only trigger bindings and handoff:

- **parse_json_body** — decodes an HTTP request body into a dict,
  raising ``ContractError`` for anything that is not a JSON object.
- **http_status_for** / **error_body** — map the exception taxonomy
  onto HTTP status codes and a stable error payload.
- **get_config** / **get_store** / **get_tracker** — process-wide
  configuration, feature store, and job tracker, created on first use.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import TYPE_CHECKING, Any

from feature_import.core.config import ImportConfig
from feature_import.core.exceptions import (
    ContractError,
    JobAbortedError,
    PipelineError,
    ValidationError,
)

if TYPE_CHECKING:
    from feature_import.orchestrators.progress import JobProgressTracker
    from feature_import.store.base import FeatureStore

logger = logging.getLogger("feature_import.core.ingress")


# ---------------------------------------------------------------------------
# Request decoding
# ---------------------------------------------------------------------------


def parse_json_body(raw: bytes | str | None) -> dict[str, Any]:
    """Decode an HTTP request body into a dict.

    Raises:
        ContractError: If the body is empty, not JSON, or not an object.
    """
    if raw is None or not raw.strip():
        msg = "Request body is empty"
        raise ContractError(msg, stage="ingress", code="EMPTY_BODY")
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        msg = f"Request body is not valid JSON: {exc}"
        raise ContractError(msg, stage="ingress", code="INVALID_JSON") from exc
    if not isinstance(parsed, dict):
        msg = f"Request body JSON must be an object, got {type(parsed).__name__}"
        raise ContractError(msg, stage="ingress", code="INVALID_INPUT_TYPE")
    return parsed


def parse_optional_json_body(raw: bytes | str | None) -> dict[str, Any]:
    """Like ``parse_json_body`` but an empty body decodes to ``{}``."""
    if raw is None or not raw.strip():
        return {}
    return parse_json_body(raw)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def http_status_for(exc: PipelineError) -> int:
    """Return the HTTP status code for a pipeline error."""
    if isinstance(exc, ContractError):
        return 404 if exc.code.endswith("NOT_FOUND") else 400
    if isinstance(exc, (ValidationError, JobAbortedError)):
        return 422
    if exc.retryable:
        return 503
    return 500


def error_body(exc: PipelineError) -> dict[str, Any]:
    """Return the JSON error payload for a pipeline error."""
    body: dict[str, Any] = {"error": exc.to_error_dict()}
    if isinstance(exc, JobAbortedError):
        body["job_id"] = exc.job_id
        body["debug_info"] = exc.debug_info
    return body


# ---------------------------------------------------------------------------
# Process-wide collaborators
# ---------------------------------------------------------------------------


@functools.cache
def get_config() -> ImportConfig:
    """Load and validate configuration once per worker process."""
    config = ImportConfig.from_env()
    logger.info(
        "Configuration loaded | canonical_crs=%s | geodesy=%s | batch_size=%d",
        config.canonical_crs,
        config.geodesy_provider,
        config.default_batch_size,
    )
    return config


@functools.cache
def get_store() -> FeatureStore:
    """Return the process-wide feature store."""
    from feature_import.store.memory import InMemoryFeatureStore

    return InMemoryFeatureStore()


@functools.cache
def get_tracker() -> JobProgressTracker:
    """Return the process-wide job progress tracker."""
    from feature_import.orchestrators.progress import JobProgressTracker

    return JobProgressTracker(max_history=get_config().job_history_limit)
