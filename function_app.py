"""Azure Functions entry point — Feature Import & Height Transformation.

This module registers all Azure Functions (HTTP triggers) using the
Python v2 programming model.

All business logic lives in the feature_import package. This file is
purely the wiring layer between Azure Functions bindings and application
code.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import azure.functions as func

from feature_import.core.exceptions import ContractError, PipelineError
from feature_import.core.ingress import (
    error_body,
    get_config,
    get_store,
    get_tracker,
    http_status_for,
    parse_json_body,
    parse_optional_json_body,
)
from feature_import.models.payloads import HeightPassInput, validate_payload

app = func.FunctionApp(http_auth_level=func.AuthLevel.FUNCTION)

logger = logging.getLogger("feature_import.function_app")


def _json_response(body: dict[str, Any], status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body, default=str),
        status_code=status_code,
        mimetype="application/json",
    )


def _error_response(exc: PipelineError) -> func.HttpResponse:
    status = http_status_for(exc)
    logger.warning(
        "Request failed | status=%d | code=%s | stage=%s | error=%s",
        status,
        exc.code,
        exc.stage,
        exc.message,
    )
    return _json_response(error_body(exc), status)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@app.function_name("import_features")
@app.route(route="imports", methods=["POST"])
def import_features_http(req: func.HttpRequest) -> func.HttpResponse:
    """Run an import job for the posted feature array.

    Body: ``ImportRequest`` (see ``feature_import.models.payloads``).
    Returns the ``ImportResult`` with status 200, or the job diagnostics
    with status 422 when no feature could be imported.
    """
    from feature_import.orchestrators.import_pipeline import import_features

    try:
        request = parse_json_body(req.get_body())
        result = import_features(
            request, store=get_store(), tracker=get_tracker(), config=get_config()
        )
    except PipelineError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("Import request failed unexpectedly")
        raise

    return _json_response(result.to_dict())


@app.function_name("get_job")
@app.route(route="jobs/{job_id}", methods=["GET"])
def get_job_http(req: func.HttpRequest) -> func.HttpResponse:
    """Return the tracked state of an import job or height batch."""
    try:
        record = get_tracker().get(req.route_params.get("job_id", ""))
    except PipelineError as exc:
        return _error_response(exc)
    return _json_response(record.to_dict())


# ---------------------------------------------------------------------------
# Out-of-band height transformation
# ---------------------------------------------------------------------------


@app.function_name("initialize_height_transformation")
@app.route(route="layers/{layer_id}/heights/initialize", methods=["POST"])
def initialize_heights_http(req: func.HttpRequest) -> func.HttpResponse:
    """Open a height-transformation batch for a layer."""
    from feature_import.orchestrators.height_pass import initialize_height_transformation

    layer_id = req.route_params.get("layer_id", "")
    try:
        batch_id = initialize_height_transformation(
            layer_id, store=get_store(), tracker=get_tracker()
        )
    except PipelineError as exc:
        return _error_response(exc)
    return _json_response({"layer_id": layer_id, "batch_id": batch_id}, 201)


@app.function_name("process_layer_heights")
@app.route(route="layers/{layer_id}/heights/process", methods=["POST"])
def process_heights_http(req: func.HttpRequest) -> func.HttpResponse:
    """Convert a layer's pending heights.

    Body: ``{"batch_id": ..., "use_height_delta": optional bool}``.
    """
    from feature_import.activities.transform_height import HeightTransformer
    from feature_import.orchestrators.height_pass import process_layer_heights
    from feature_import.providers.factory import geodesy_config_from, get_geodesy_service

    layer_id = req.route_params.get("layer_id", "")
    try:
        body = parse_json_body(req.get_body())
        validate_payload({**body, "layer_id": layer_id}, HeightPassInput, activity="process_heights")
        use_delta = body.get("use_height_delta")
        if use_delta is not None and not isinstance(use_delta, bool):
            msg = "process_heights: use_height_delta must be a boolean"
            raise ContractError(msg, stage="process_heights", code="INVALID_REQUEST")
        batch_id = str(body["batch_id"])
        config = get_config()
        tracker = get_tracker()
        cancel_event = tracker.cancel_event(batch_id)
        service = get_geodesy_service(config.geodesy_provider, geodesy_config_from(config))
        transformer = HeightTransformer.from_config(
            config, service, cancel_event=cancel_event, use_delta=use_delta
        )
        try:
            summary = process_layer_heights(
                layer_id,
                batch_id,
                store=get_store(),
                tracker=tracker,
                transformer=transformer,
                cancel_event=cancel_event,
            )
        finally:
            transformer.close()
    except PipelineError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("Height processing failed unexpectedly | layer=%s", layer_id)
        raise

    return _json_response(summary)


@app.function_name("cancel_height_transformation")
@app.route(route="layers/{layer_id}/heights/cancel", methods=["POST"])
def cancel_heights_http(req: func.HttpRequest) -> func.HttpResponse:
    """Cancel a running height batch.  Body: ``{"batch_id": ..., "reason": optional}``."""
    from feature_import.orchestrators.height_pass import cancel_height_transformation

    layer_id = req.route_params.get("layer_id", "")
    try:
        body = parse_json_body(req.get_body())
        validate_payload({**body, "layer_id": layer_id}, HeightPassInput, activity="cancel_heights")
        record = cancel_height_transformation(
            layer_id,
            str(body["batch_id"]),
            store=get_store(),
            tracker=get_tracker(),
            reason=str(body.get("reason") or ""),
        )
    except PipelineError as exc:
        return _error_response(exc)
    return _json_response(record.to_dict())


@app.function_name("height_transformation_status")
@app.route(route="layers/{layer_id}/heights/status", methods=["GET"])
def height_status_http(req: func.HttpRequest) -> func.HttpResponse:
    """Return a layer's height batch state, status counts, and mode counts."""
    from feature_import.orchestrators.height_pass import (
        get_height_transformation_status,
        height_mode_distribution,
    )

    layer_id = req.route_params.get("layer_id", "")
    try:
        status = get_height_transformation_status(
            layer_id, store=get_store(), tracker=get_tracker()
        )
        modes = height_mode_distribution(layer_id, store=get_store())
    except PipelineError as exc:
        return _error_response(exc)
    return _json_response({**status.to_dict(), "height_modes": modes})


@app.function_name("reset_height_transformation")
@app.route(route="layers/{layer_id}/heights/reset", methods=["POST"])
def reset_heights_http(req: func.HttpRequest) -> func.HttpResponse:
    """Clear a layer's derived heights back to ``pending``."""
    from feature_import.orchestrators.height_pass import reset_height_transformation

    layer_id = req.route_params.get("layer_id", "")
    try:
        parse_optional_json_body(req.get_body())
        count = reset_height_transformation(layer_id, store=get_store())
    except PipelineError as exc:
        return _error_response(exc)
    return _json_response({"layer_id": layer_id, "reset_count": count})
