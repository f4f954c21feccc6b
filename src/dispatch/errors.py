from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKey(str, Enum):
    """Localizable message keys returned to the dispatcher console."""
    MISSING_API_KEY = "error.missingApiKey"
    NO_VEHICLES_IN_SERVICE = "error.noVehiclesInService"
    INSUFFICIENT_CAPACITY = "error.insufficientCapacity"
    MAIN_ROUTE_CALCULATION_FAILED = "error.mainRouteCalculationFailed"
    GEOCODING_FAILED = "error.geocodingFailed"


class DispatchFailure(Exception):
    """Fatal condition of an assignment call, converted to ErrorResult at the boundary."""

    def __init__(self, key: ErrorKey, detail: Optional[str] = None):
        super().__init__(detail or key.value)
        self.key = key
        self.detail = detail


class GeocodingError(LookupError):
    def __init__(self, address: str):
        super().__init__(f"Could not find coordinates for address: {address}.")
        self.address = address


class ProviderError(RuntimeError):
    """A single external lookup failed; the caller moves on to the next provider."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class AssistantError(RuntimeError):
    """Assisted-mode request failed or returned a payload that does not fit its schema."""
