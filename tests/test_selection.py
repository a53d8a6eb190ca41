"""Tests for the provider selection policy."""

import pytest

from reelroute.clock import ManualClock
from reelroute.errors import NoEligibleProviderError
from reelroute.health import ProviderHealthCache, StaticHealthProbe
from reelroute.schemas import (
    CapabilityClass,
    GenerationRequest,
    ProviderConfig,
    ProviderRank,
    SelectionReason,
)
from reelroute.selection import SelectionPolicy


PRIMARY = ProviderConfig(
    "nova-reel", CapabilityClass.VIDEO, 0.05, 300, rank=ProviderRank.PRIMARY
)
FALLBACK = ProviderConfig(
    "luma-ray", CapabilityClass.VIDEO, 0.06, 600, region="us-west-2",
    rank=ProviderRank.FALLBACK,
)


class TestSelectionPolicy:
    """Health, capability and cost filtering in rank order."""

    def setup_method(self):
        self.clock = ManualClock()
        self.probe = StaticHealthProbe()
        self.policy = SelectionPolicy(ProviderHealthCache(self.probe, clock=self.clock))

    def test_primary_when_healthy(self):
        result = self.policy.select([PRIMARY, FALLBACK], GenerationRequest())
        assert result.provider == PRIMARY
        assert result.reason == SelectionReason.PRIMARY_HEALTHY
        assert result.estimated_cost == pytest.approx(8 / 60 * 0.05, abs=1e-6)
        assert result.health.healthy is True

    def test_rank_beats_configured_order(self):
        result = self.policy.select([FALLBACK, PRIMARY], GenerationRequest())
        assert result.provider == PRIMARY

    def test_fallback_when_primary_unhealthy(self):
        self.probe.set_healthy("nova-reel", False)
        result = self.policy.select([PRIMARY, FALLBACK], GenerationRequest(duration_units=20))
        assert result.provider == FALLBACK
        assert result.reason == SelectionReason.FALLBACK_PRIMARY_UNHEALTHY
        assert "nova-reel" in result.skip_reasons

    def test_fallback_when_duration_exceeded(self):
        request = GenerationRequest(duration_units=400, max_cost=1.0)
        result = self.policy.select([PRIMARY, FALLBACK], request)
        assert result.provider == FALLBACK
        assert result.reason == SelectionReason.FALLBACK_DURATION_EXCEEDED

    def test_fallback_for_cost(self):
        cheap = ProviderConfig(
            "cheap-reel", CapabilityClass.VIDEO, 0.03, 300, rank=ProviderRank.FALLBACK
        )
        request = GenerationRequest(duration_units=120, max_cost=0.08)
        result = self.policy.select([PRIMARY, cheap], request)
        assert result.provider == cheap
        assert result.reason == SelectionReason.FALLBACK_COST_OPTIMIZATION
        assert result.estimated_cost <= request.max_cost

    def test_cost_is_a_hard_filter(self):
        request = GenerationRequest(duration_units=120, max_cost=0.01)
        with pytest.raises(NoEligibleProviderError) as exc_info:
            self.policy.select([PRIMARY, FALLBACK], request)
        reasons = exc_info.value.skip_reasons
        assert reasons["nova-reel"].startswith("over_budget")
        assert reasons["luma-ray"].startswith("over_budget")

    def test_all_filtered_reports_each_reason(self):
        self.probe.set_healthy("nova-reel", False)
        request = GenerationRequest(duration_units=700, max_cost=5.0)
        with pytest.raises(NoEligibleProviderError) as exc_info:
            self.policy.select([PRIMARY, FALLBACK], request)
        reasons = exc_info.value.skip_reasons
        assert reasons["nova-reel"].startswith("unhealthy")
        assert reasons["luma-ray"].startswith("duration_exceeded")
        assert exc_info.value.request_id == request.request_id

    def test_no_candidates(self):
        with pytest.raises(NoEligibleProviderError, match="no candidates"):
            self.policy.select([], GenerationRequest())

    def test_class_mismatch_is_never_selected(self):
        audio = ProviderConfig("polly", CapabilityClass.AUDIO, 0.001, 3600)
        with pytest.raises(NoEligibleProviderError) as exc_info:
            self.policy.select([audio], GenerationRequest())
        assert exc_info.value.skip_reasons["polly"].startswith("capability_class")

    def test_fallback_without_primary_is_not_tagged_primary(self):
        audio = ProviderConfig("polly", CapabilityClass.AUDIO, 0.001, 3600)
        result = self.policy.select([audio, FALLBACK], GenerationRequest())
        assert result.provider == FALLBACK
        assert result.reason == SelectionReason.FALLBACK_PRIMARY_UNHEALTHY

        result = self.policy.select([FALLBACK], GenerationRequest())
        assert result.reason != SelectionReason.PRIMARY_HEALTHY

    def test_second_primary_is_tagged_primary(self):
        backup = ProviderConfig(
            "nova-reel-west", CapabilityClass.VIDEO, 0.05, 300, region="us-west-2"
        )
        self.probe.set_healthy("nova-reel", False)
        result = self.policy.select([PRIMARY, backup, FALLBACK], GenerationRequest())
        assert result.provider == backup
        assert result.reason == SelectionReason.PRIMARY_HEALTHY

    def test_unhealthy_primary_recovers(self):
        self.probe.set_healthy("nova-reel", False)
        assert self.policy.select([PRIMARY, FALLBACK], GenerationRequest()).provider == FALLBACK

        self.probe.set_healthy("nova-reel", True)
        self.clock.advance(31)
        result = self.policy.select([PRIMARY, FALLBACK], GenerationRequest())
        assert result.provider == PRIMARY
        assert result.reason == SelectionReason.PRIMARY_HEALTHY

    def test_deterministic(self):
        request = GenerationRequest(duration_units=90, max_cost=0.5)
        first = self.policy.select([PRIMARY, FALLBACK], request)
        for _ in range(5):
            again = self.policy.select([PRIMARY, FALLBACK], request)
            assert again.provider == first.provider
            assert again.reason == first.reason
            assert again.estimated_cost == first.estimated_cost
