"""
Input validation for Reelroute.

Validates generation requests before they reach provider selection, and
normalizes raw requests from the content source into GenerationRequest.
"""

from typing import Any, Mapping, Optional, Union

from reelroute import config
from reelroute.errors import InvalidRequestError
from reelroute.schemas import CapabilityClass, GenerationRequest, Priority, Quality


MAX_DURATION_UNITS = 3600  # one hour of output
MAX_COST_USD = 100.0  # Sanity check: $100 per request


def validate_duration(duration_units: int) -> None:
    """
    Validate requested duration.

    Raises:
        InvalidRequestError: If duration is not a positive integer within range
    """
    if isinstance(duration_units, bool) or not isinstance(duration_units, int):
        raise InvalidRequestError(
            f"duration_units must be an integer, got {type(duration_units).__name__}"
        )

    if duration_units <= 0:
        raise InvalidRequestError(f"duration_units must be positive, got {duration_units}")

    if duration_units > MAX_DURATION_UNITS:
        raise InvalidRequestError(
            f"duration_units too large: {duration_units:,} (max: {MAX_DURATION_UNITS:,})"
        )


def validate_cost(max_cost: float) -> None:
    """
    Validate cost ceiling.

    Raises:
        InvalidRequestError: If cost is invalid
    """
    if isinstance(max_cost, bool) or not isinstance(max_cost, (int, float)):
        raise InvalidRequestError(
            f"max_cost must be a number, got {type(max_cost).__name__}"
        )

    if max_cost <= 0:
        raise InvalidRequestError(f"max_cost must be positive, got {max_cost}")

    if max_cost > MAX_COST_USD:
        raise InvalidRequestError(
            f"max_cost too large: ${max_cost:.2f} (max: ${MAX_COST_USD:.2f} per request)"
        )


def validate_request(request: GenerationRequest) -> None:
    """
    Validate all request parameters.

    Raises:
        InvalidRequestError: If any parameter is invalid
    """
    if not isinstance(request, GenerationRequest):
        raise InvalidRequestError(
            f"expected GenerationRequest, got {type(request).__name__}"
        )
    if not request.request_id or not str(request.request_id).strip():
        raise InvalidRequestError("request_id cannot be empty")
    if not isinstance(request.capability_class, CapabilityClass):
        raise InvalidRequestError(
            f"unknown capability_class {request.capability_class!r}"
        )
    if not request.environment:
        raise InvalidRequestError("environment cannot be empty")
    validate_duration(request.duration_units)
    validate_cost(request.max_cost)


def _enum_value(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidRequestError(
            f"{field_name} must be one of: {allowed}; got {value!r}"
        ) from None


def normalize_request(
    raw: Union[GenerationRequest, Mapping[str, Any]],
    environment: Optional[str] = None,
) -> GenerationRequest:
    """
    Turn a raw request into a validated GenerationRequest.

    Missing fields are filled from config.DEFAULT_REQUEST; the environment
    defaults to the deployment environment.

    Raises:
        InvalidRequestError: If the request is malformed
    """
    if isinstance(raw, GenerationRequest):
        validate_request(raw)
        return raw

    if not isinstance(raw, Mapping):
        raise InvalidRequestError(
            f"request must be a mapping or GenerationRequest, got {type(raw).__name__}"
        )

    defaults = config.DEFAULT_REQUEST
    kwargs: dict[str, Any] = {
        "capability_class": _enum_value(
            CapabilityClass,
            raw.get("capability_class", defaults["capability_class"]),
            "capability_class",
        ),
        "duration_units": raw.get("duration_units", defaults["duration_units"]),
        "max_cost": raw.get("max_cost", defaults["max_cost"]),
        "priority": _enum_value(Priority, raw.get("priority", defaults["priority"]), "priority"),
        "quality": _enum_value(Quality, raw.get("quality", defaults["quality"]), "quality"),
        "environment": raw.get("environment") or environment or config.get_environment(),
        "topic": raw.get("topic") or "general",
        "include_audio": bool(raw.get("include_audio", False)),
        "generate_subtitles": bool(raw.get("generate_subtitles", False)),
        "allow_fallback": raw.get("allow_fallback", True) is not False,
        "metadata": dict(raw.get("metadata") or {}),
    }
    if raw.get("request_id"):
        kwargs["request_id"] = str(raw["request_id"])

    request = GenerationRequest(**kwargs)
    validate_request(request)
    return request
