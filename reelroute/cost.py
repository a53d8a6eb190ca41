"""
Cost estimation for generation requests.

cost = duration_units / units_per_cost_period * cost_per_unit
       + sum of add-on costs for each enabled optional feature
"""

from typing import Optional

from reelroute import config
from reelroute.errors import InvalidRequestError
from reelroute.schemas import GenerationRequest, ProviderConfig


class CostEstimator:
    """Deterministic, side-effect free cost estimates."""

    def __init__(
        self,
        units_per_cost_period: int = config.UNITS_PER_COST_PERIOD,
        add_on_costs: Optional[dict[str, float]] = None,
    ):
        if units_per_cost_period <= 0:
            raise ValueError("units_per_cost_period must be positive")
        self.units_per_cost_period = units_per_cost_period
        self.add_on_costs = dict(
            config.DEFAULT_ADD_ON_COSTS if add_on_costs is None else add_on_costs
        )

    def estimate(self, provider: ProviderConfig, request: GenerationRequest) -> float:
        """
        Estimate the cost of serving request on provider.

        Raises:
            InvalidRequestError: If duration_units <= 0
        """
        if request.duration_units <= 0:
            raise InvalidRequestError(
                f"duration_units must be positive, got {request.duration_units}"
            )

        base = (request.duration_units / self.units_per_cost_period) * provider.cost_per_unit
        cost = base + self.add_on_total(request)

        return max(0.0, round(cost, 6))

    def add_on_total(self, request: GenerationRequest) -> float:
        total = 0.0
        for feature, price in self.add_on_costs.items():
            if getattr(request, feature, False) is True:
                total += max(0.0, price)
        return total

    def breakdown(self, provider: ProviderConfig, request: GenerationRequest) -> dict[str, float]:
        """Itemized estimate: base plus each enabled add-on."""
        items = {
            "base": round(
                (request.duration_units / self.units_per_cost_period) * provider.cost_per_unit, 6
            ),
        }
        for feature, price in self.add_on_costs.items():
            if getattr(request, feature, False) is True:
                items[feature] = max(0.0, price)
        items["total"] = self.estimate(provider, request)
        return items
