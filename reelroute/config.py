"""Global configuration for Reelroute."""

from __future__ import annotations

import copy
import json
import logging
import os
from typing import Dict, Any, List

from reelroute.schemas import (
    CapabilityClass,
    ProviderConfig,
    ProviderRank,
    ThresholdSet,
)


logger = logging.getLogger("reelroute.config")


# Daily spend thresholds in USD
DEFAULT_THRESHOLDS: Dict[str, Dict[str, float]] = {
    "development": {"warning": 1.00, "critical": 2.00, "maximum": 5.00},
    "staging": {"warning": 5.00, "critical": 10.00, "maximum": 20.00},
    "production": {"warning": 50.00, "critical": 100.00, "maximum": 200.00},
}

DEFAULT_PROVIDERS: List[Dict[str, Any]] = [
    {
        "provider_id": "nova-reel",
        "capability_class": "video",
        "model": "amazon.nova-reel-v1:0",
        "cost_per_unit": 0.05,
        "max_duration_units": 300,
        "region": "us-east-1",
        "rank": "primary",
    },
    {
        "provider_id": "luma-ray",
        "capability_class": "video",
        "model": "luma.ray-v2:0",
        "cost_per_unit": 0.06,
        "max_duration_units": 60,
        "region": "us-west-2",
        "rank": "fallback",
    },
    {
        "provider_id": "polly-generative",
        "capability_class": "audio",
        "model": "generative",
        "cost_per_unit": 0.03,
        "max_duration_units": 3600,
        "region": "us-east-1",
        "rank": "primary",
    },
    {
        "provider_id": "polly-standard",
        "capability_class": "audio",
        "model": "standard",
        "cost_per_unit": 0.004,
        "max_duration_units": 3600,
        "region": "us-east-1",
        "rank": "fallback",
    },
    {
        "provider_id": "claude-haiku",
        "capability_class": "content",
        "model": "claude-3-haiku-20240307",
        "cost_per_unit": 0.002,
        "max_duration_units": 1800,
        "region": "us-east-1",
        "rank": "primary",
    },
    {
        "provider_id": "gpt-4o-mini",
        "capability_class": "content",
        "model": "gpt-4o-mini",
        "cost_per_unit": 0.001,
        "max_duration_units": 1800,
        "region": "us-east-1",
        "rank": "fallback",
    },
]

# Flat add-on charges for optional request features
DEFAULT_ADD_ON_COSTS: Dict[str, float] = {
    "include_audio": 0.01,
    "generate_subtitles": 0.005,
}

UNITS_PER_COST_PERIOD = 60  # seconds per billed minute

HEALTH_SUCCESS_TTL_SECONDS = 60.0
HEALTH_FAILURE_TTL_SECONDS = 30.0

DEGRADED_MAX_DURATION_UNITS = 30
DEGRADED_COST_FACTOR = 0.8

DEFAULT_REQUEST: Dict[str, Any] = {
    "capability_class": "video",
    "duration_units": 8,
    "max_cost": 0.15,
    "priority": "normal",
    "quality": "high",
}

# Services whose history is loaded from the persistence sink
KNOWN_SERVICES = ("content", "video", "audio")

FALLBACK_ENVIRONMENT = "development"

_thresholds: Dict[str, Dict[str, float]] = copy.deepcopy(DEFAULT_THRESHOLDS)
_providers: List[Dict[str, Any]] = copy.deepcopy(DEFAULT_PROVIDERS)


def _parse_json_env(var_name: str) -> Any | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def get_environment() -> str:
    """Deployment environment name."""
    return os.getenv("REELROUTE_ENVIRONMENT", FALLBACK_ENVIRONMENT)


def get_thresholds() -> Dict[str, Dict[str, float]]:
    """Return threshold configuration, with optional env override."""
    parsed = _parse_json_env("REELROUTE_THRESHOLDS_JSON")
    if not isinstance(parsed, dict) or not parsed:
        return _thresholds

    merged = copy.deepcopy(_thresholds)
    for environment, values in parsed.items():
        # Partial entries fill in from the current (or development) values
        base = merged.get(environment) or merged[FALLBACK_ENVIRONMENT]
        if not isinstance(values, dict):
            logger.warning("Ignoring threshold override for %s: not an object", environment)
            continue
        candidate = {**base, **values}
        try:
            ThresholdSet(
                environment,
                float(candidate["warning"]),
                float(candidate["critical"]),
                float(candidate["maximum"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring threshold override for %s: %s", environment, exc)
            continue
        merged[environment] = {
            "warning": float(candidate["warning"]),
            "critical": float(candidate["critical"]),
            "maximum": float(candidate["maximum"]),
        }
    return merged


def threshold_set_for(environment: str) -> ThresholdSet:
    """Build the ThresholdSet for an environment (unknown -> development)."""
    thresholds = get_thresholds()
    values = thresholds.get(environment) or thresholds[FALLBACK_ENVIRONMENT]
    return ThresholdSet(
        environment=environment,
        warning=float(values["warning"]),
        critical=float(values["critical"]),
        maximum=float(values["maximum"]),
    )


def set_thresholds(environment: str, *, warning: float, critical: float, maximum: float) -> None:
    """Set thresholds for an environment at runtime."""
    # Validates ordering
    ThresholdSet(environment, warning, critical, maximum)
    global _thresholds
    updated = copy.deepcopy(_thresholds)
    updated[environment] = {"warning": warning, "critical": critical, "maximum": maximum}
    _thresholds = updated


def provider_from_dict(data: Dict[str, Any]) -> ProviderConfig:
    """Build a ProviderConfig from its JSON form."""
    try:
        return ProviderConfig(
            provider_id=str(data["provider_id"]),
            capability_class=CapabilityClass(data["capability_class"]),
            cost_per_unit=float(data["cost_per_unit"]),
            max_duration_units=int(data["max_duration_units"]),
            region=data.get("region", "us-east-1"),
            rank=ProviderRank(data.get("rank", "primary")),
            model=data.get("model"),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"invalid provider config {data!r}: {exc}") from exc


def get_providers() -> List[ProviderConfig]:
    """Return provider configuration, with optional env override."""
    parsed = _parse_json_env("REELROUTE_PROVIDERS_JSON")
    if isinstance(parsed, list) and parsed:
        return [provider_from_dict(p) for p in parsed]
    return [provider_from_dict(p) for p in _providers]


def set_providers(providers: List[Dict[str, Any]]) -> None:
    """Set provider configuration at runtime."""
    if not isinstance(providers, list) or not providers:
        raise ValueError("providers must be a non-empty list")
    for p in providers:
        provider = provider_from_dict(p)
        if provider.cost_per_unit < 0:
            raise ValueError(f"cost_per_unit for {provider.provider_id} cannot be negative")
        if provider.max_duration_units <= 0:
            raise ValueError(f"max_duration_units for {provider.provider_id} must be positive")
    global _providers
    _providers = copy.deepcopy(providers)


def reset_config() -> None:
    """Restore built-in defaults."""
    global _thresholds, _providers
    _thresholds = copy.deepcopy(DEFAULT_THRESHOLDS)
    _providers = copy.deepcopy(DEFAULT_PROVIDERS)
