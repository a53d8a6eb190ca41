"""Tests for request validation and normalization."""

import pytest

from reelroute.errors import InvalidRequestError
from reelroute.schemas import CapabilityClass, GenerationRequest, Priority, Quality
from reelroute.validation import (
    normalize_request,
    validate_cost,
    validate_duration,
    validate_request,
)


class TestValidateRequest:
    """Field-level validation."""

    def test_valid_request(self):
        validate_request(GenerationRequest())

    def test_duration_must_be_positive(self):
        with pytest.raises(InvalidRequestError):
            validate_duration(0)
        with pytest.raises(InvalidRequestError):
            validate_duration(-5)

    def test_duration_type(self):
        with pytest.raises(InvalidRequestError):
            validate_duration(8.5)
        with pytest.raises(InvalidRequestError):
            validate_duration(True)

    def test_duration_upper_bound(self):
        with pytest.raises(InvalidRequestError, match="too large"):
            validate_duration(10_000)

    def test_cost(self):
        validate_cost(0.15)
        with pytest.raises(InvalidRequestError):
            validate_cost(0)
        with pytest.raises(InvalidRequestError):
            validate_cost("cheap")
        with pytest.raises(InvalidRequestError):
            validate_cost(1_000)

    def test_empty_environment(self):
        with pytest.raises(InvalidRequestError):
            validate_request(GenerationRequest(environment=""))

    def test_invalid_request_is_value_error(self):
        with pytest.raises(ValueError):
            validate_request(GenerationRequest(duration_units=0))


class TestNormalizeRequest:
    """Raw mapping -> GenerationRequest."""

    def test_defaults(self):
        request = normalize_request({}, environment="staging")
        assert request.capability_class == CapabilityClass.VIDEO
        assert request.duration_units == 8
        assert request.max_cost == 0.15
        assert request.priority == Priority.NORMAL
        assert request.quality == Quality.HIGH
        assert request.environment == "staging"
        assert request.allow_fallback is True
        assert request.request_id.startswith("req_")

    def test_explicit_fields(self):
        request = normalize_request({
            "capability_class": "audio",
            "duration_units": 45,
            "max_cost": 0.5,
            "priority": "high",
            "environment": "production",
            "topic": "dividend stocks",
            "include_audio": True,
            "allow_fallback": False,
            "request_id": "abc",
        })
        assert request.capability_class == CapabilityClass.AUDIO
        assert request.duration_units == 45
        assert request.priority == Priority.HIGH
        assert request.environment == "production"
        assert request.topic == "dividend stocks"
        assert request.include_audio is True
        assert request.allow_fallback is False
        assert request.request_id == "abc"

    def test_unknown_enum_value(self):
        with pytest.raises(InvalidRequestError, match="capability_class"):
            normalize_request({"capability_class": "hologram"})
        with pytest.raises(InvalidRequestError, match="priority"):
            normalize_request({"priority": "urgent"})

    def test_invalid_duration(self):
        with pytest.raises(InvalidRequestError):
            normalize_request({"duration_units": 0})

    def test_passes_through_generation_request(self):
        original = GenerationRequest(duration_units=20)
        assert normalize_request(original) is original

    def test_rejects_other_types(self):
        with pytest.raises(InvalidRequestError):
            normalize_request(["duration_units", 8])
