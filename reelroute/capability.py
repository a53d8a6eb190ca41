"""Hard capability constraints: can this provider serve this request at all?"""

from typing import Optional

from reelroute.schemas import GenerationRequest, ProviderConfig


class CapabilityFilter:
    """Pure checks of a provider against a request. No I/O."""

    def fits(self, provider: ProviderConfig, request: GenerationRequest) -> bool:
        return self.check(provider, request) is None

    def check(self, provider: ProviderConfig, request: GenerationRequest) -> Optional[str]:
        """
        Check if the provider can handle the request.

        Returns:
            None if capable, or reason string if not.
        """
        if provider.capability_class != request.capability_class:
            return (
                f"capability_class '{request.capability_class.value}' not served "
                f"(provider serves '{provider.capability_class.value}')"
            )

        if request.duration_units > provider.max_duration_units:
            return (
                f"duration too long ({request.duration_units} > "
                f"{provider.max_duration_units})"
            )

        return None
