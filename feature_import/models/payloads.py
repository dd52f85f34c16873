"""Typed payload schemas for the import and height-pass contracts.

Requests arrive as JSON-decoded dicts.  These ``TypedDict`` definitions
make the contracts explicit so that pyright catches key mismatches at
analysis time, and ``validate_payload`` / ``coerce_import_request``
catch them at runtime.

Usage::

    from feature_import.models.payloads import ImportRequest, validate_payload

    validate_payload(raw, ImportRequest, activity="import_features")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

from feature_import.core.exceptions import ContractError

if TYPE_CHECKING:
    from feature_import.core.config import ImportConfig

# ---------------------------------------------------------------------------
# Import (batch orchestrator)
# ---------------------------------------------------------------------------


class ImportRequest(TypedDict):
    """Caller → ``import_features``."""

    target_layer_name: str
    features: list[dict[str, Any]]
    source_reference_frame_id: str
    target_reference_frame_id: NotRequired[str]
    batch_size: NotRequired[int]
    height_attribute_hint: NotRequired[str | None]
    object_height_attribute: NotRequired[str | None]
    defer_height_transformation: NotRequired[bool]
    collection_name: NotRequired[str]
    use_height_delta: NotRequired[bool]


# Output is ``ImportResult.model_dump()``, see models.result.

# ---------------------------------------------------------------------------
# Out-of-band height pass
# ---------------------------------------------------------------------------


class HeightPassInput(TypedDict):
    """Caller → ``process_layer_heights`` and ``cancel_height_transformation``."""

    layer_id: str
    batch_id: str
    use_height_delta: NotRequired[bool]
    reason: NotRequired[str]


# ---------------------------------------------------------------------------
# Required-key registrations (used by validate_payload)
# ---------------------------------------------------------------------------

_REQUIRED_KEYS: dict[type, frozenset[str]] = {
    ImportRequest: frozenset({"target_layer_name", "features", "source_reference_frame_id"}),
    HeightPassInput: frozenset({"layer_id", "batch_id"}),
}


# ---------------------------------------------------------------------------
# Runtime validation
# ---------------------------------------------------------------------------


def validate_payload(
    raw: dict[str, Any],
    schema: type,
    *,
    activity: str,
) -> None:
    """Validate that *raw* contains the required keys for *schema*.

    Raises:
        ContractError: If required keys are missing from the payload.
    """
    required = _REQUIRED_KEYS.get(schema)
    if required is None:
        return

    missing = required - raw.keys()
    if missing:
        msg = f"{activity}: missing required payload key(s): {', '.join(sorted(missing))}"
        raise ContractError(msg, stage=activity, code="PAYLOAD_MISSING_KEYS")


def _invalid(field_name: str, problem: str) -> ContractError:
    msg = f"import_features: {field_name} {problem}"
    return ContractError(msg, stage="import_features", code="INVALID_REQUEST")


def _optional_name(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(key, f"must be a string, got {type(value).__name__}")
    return value.strip() or None


def coerce_import_request(raw: dict[str, Any], config: ImportConfig) -> ImportRequest:
    """Validate an import request and fill in configured defaults.

    Returns a new dict; *raw* is not modified.

    Raises:
        ContractError: On missing keys or wrongly typed values.
    """
    validate_payload(raw, ImportRequest, activity="import_features")

    layer_name = raw["target_layer_name"]
    if not isinstance(layer_name, str) or not layer_name.strip():
        raise _invalid("target_layer_name", "must be a non-empty string")

    features = raw["features"]
    if not isinstance(features, list):
        raise _invalid("features", f"must be an array, got {type(features).__name__}")

    source = raw["source_reference_frame_id"]
    if isinstance(source, bool) or not isinstance(source, (str, int)) or not str(source).strip():
        raise _invalid("source_reference_frame_id", "must be a non-empty string or integer")

    target = raw.get("target_reference_frame_id") or config.canonical_crs
    if isinstance(target, bool) or not isinstance(target, (str, int)):
        raise _invalid("target_reference_frame_id", "must be a string or integer")

    batch_size = raw.get("batch_size", config.default_batch_size)
    if batch_size is None:
        batch_size = config.default_batch_size
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise _invalid("batch_size", "must be a positive integer")

    defer = raw.get("defer_height_transformation", config.defer_height_transformation)
    if not isinstance(defer, bool):
        raise _invalid("defer_height_transformation", "must be a boolean")

    use_delta = raw.get("use_height_delta", config.height_delta_mode)
    if not isinstance(use_delta, bool):
        raise _invalid("use_height_delta", "must be a boolean")

    collection_name = _optional_name(raw, "collection_name") or layer_name.strip()

    return ImportRequest(
        target_layer_name=layer_name.strip(),
        features=features,
        source_reference_frame_id=str(source).strip(),
        target_reference_frame_id=str(target).strip(),
        batch_size=batch_size,
        height_attribute_hint=_optional_name(raw, "height_attribute_hint"),
        object_height_attribute=_optional_name(raw, "object_height_attribute"),
        defer_height_transformation=defer,
        collection_name=collection_name,
        use_height_delta=use_delta,
    )
