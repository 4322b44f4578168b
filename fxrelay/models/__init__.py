"""Domain and API models for the FX relay service."""

from .constants import (
    CURRENCY_CODE_RE,
    DEFAULT_PROVIDER_NAME,
    PUSH_EVENT_RATES_UPDATE,
)  # re-export
from .rates import (
    ConversionOut,
    CurrencyRateOut,
    ProviderLatestPayload,
    RatesOut,
    Snapshot,
)

__all__ = [
    "CURRENCY_CODE_RE",
    "DEFAULT_PROVIDER_NAME",
    "PUSH_EVENT_RATES_UPDATE",
    "ConversionOut",
    "CurrencyRateOut",
    "ProviderLatestPayload",
    "RatesOut",
    "Snapshot",
]
