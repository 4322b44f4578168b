from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_PROVIDER_NAME


@dataclass(frozen=True)
class Snapshot:
    """One normalized set of rates plus the provider's validity window.

    Replaced wholesale on every refresh; `rates` is exposed read-only.
    """

    base_code: str
    rates: Mapping[str, float]
    last_update_unix: int
    next_update_unix: int
    last_update_utc: str = ""
    next_update_utc: str = ""
    eol_unix: int = 0
    documentation: str = ""
    terms_of_use: str = ""
    provider: str = DEFAULT_PROVIDER_NAME

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", MappingProxyType(dict(self.rates)))

    def as_wire_dict(self) -> Dict[str, Any]:
        """Render with the upstream's field names (what clients already consume)."""
        return {
            "base_code": self.base_code,
            "rates": dict(self.rates),
            "time_last_update_unix": self.last_update_unix,
            "time_last_update_utc": self.last_update_utc,
            "time_next_update_unix": self.next_update_unix,
            "time_next_update_utc": self.next_update_utc,
            "time_eol_unix": self.eol_unix,
            "documentation": self.documentation,
            "terms_of_use": self.terms_of_use,
            "provider": self.provider,
        }


class ProviderLatestPayload(BaseModel):
    """Success body of `GET /v6/{key}/latest/{base}`."""

    model_config = ConfigDict(extra="ignore")

    result: str
    base_code: str
    conversion_rates: Dict[str, float]
    time_last_update_unix: int
    time_next_update_unix: int
    time_last_update_utc: str = ""
    time_next_update_utc: str = ""
    documentation: str = ""
    terms_of_use: str = ""
    provider: Optional[str] = None
    time_eol_unix: Optional[int] = None

    @field_validator("conversion_rates")
    @classmethod
    def finite_non_negative_rates(cls, v: Dict[str, float]) -> Dict[str, float]:
        bad = [c for c, r in v.items() if not math.isfinite(r) or r < 0]
        if bad:
            raise ValueError(f"negative or non-finite rates for {', '.join(sorted(bad))}")
        return v

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            base_code=self.base_code.upper(),
            rates=self.conversion_rates,
            last_update_unix=self.time_last_update_unix,
            next_update_unix=self.time_next_update_unix,
            last_update_utc=self.time_last_update_utc,
            next_update_utc=self.time_next_update_utc,
            eol_unix=self.time_eol_unix or 0,
            documentation=self.documentation,
            terms_of_use=self.terms_of_use,
            provider=self.provider or DEFAULT_PROVIDER_NAME,
        )


class RatesOut(BaseModel):
    base_code: str
    rates: Dict[str, float]
    time_last_update_unix: int
    time_last_update_utc: str
    time_next_update_unix: int
    time_next_update_utc: str
    time_eol_unix: int
    documentation: str
    terms_of_use: str
    provider: str
    as_of_unix: int
    cache_ttl_ms: int
    expires_unix: int


class ConversionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_currency: str = Field(..., alias="from")
    to_currency: str = Field(..., alias="to")
    amount: float
    rate: float
    converted: float
    base: str
    as_of_unix: int
    cache_ttl_ms: int
    expires_unix: int
    provider_time_last_update_unix: int
    provider_time_next_update_unix: int


class CurrencyRateOut(BaseModel):
    currency: str
    base: str
    rate: float
    expires_unix: int
