from __future__ import annotations

"""Error taxonomy for the rates subsystem.

Two families:
    - ProviderFetchError: raised by the provider client, caught by the refresh
      scheduler and turned into a backoff. Never reaches HTTP callers.
    - RateQueryError: raised on the read side (cache, conversion engine) and
      mapped to HTTP responses by fxrelay.core.errors.
"""
from typing import Any, Optional


class RatesError(Exception):
    pass


# Upstream --------------------------------------------------------------
class ProviderFetchError(RatesError):
    kind = "provider"


class ProviderTimeout(ProviderFetchError):
    kind = "timeout"


class ProviderNetworkError(ProviderFetchError):
    kind = "network"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(ProviderFetchError):
    """Vendor answered with a well-formed failure payload (`result != success`)."""

    kind = "provider_error"

    def __init__(self, reason: str) -> None:
        super().__init__(f"provider reported failure: {reason}")
        self.reason = reason


class MalformedResponse(ProviderFetchError):
    kind = "malformed_response"

    def __init__(self, message: str, *, payload: Any | None = None) -> None:
        super().__init__(message)
        self.payload = payload


# Read side -------------------------------------------------------------
class RateQueryError(RatesError):
    pass


class CacheEmpty(RateQueryError):
    def __init__(self, message: str = "Rates not ready") -> None:
        super().__init__(message)


class InvalidCurrencyCode(RateQueryError):
    def __init__(self, code: str) -> None:
        super().__init__(
            f"Invalid currency code '{code}' (use ISO 4217: e.g., USD, EUR, ARS)"
        )
        self.code = code


class InvalidAmount(RateQueryError):
    def __init__(self, raw: Any) -> None:
        super().__init__(
            f"Invalid amount '{raw}' (must be a finite, non-negative number)"
        )
        self.raw = raw


class RateUnavailable(RateQueryError):
    def __init__(self, from_currency: str, to_currency: str) -> None:
        super().__init__(f"Rate not available for pair {from_currency}/{to_currency}")
        self.pair = (from_currency, to_currency)
