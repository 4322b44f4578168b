from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from fxrelay.models.constants import CURRENCY_CODE_RE
from fxrelay.models.rates import Snapshot
from .base import Clock, wall_clock_ms
from .cache_service import CacheEntry, RateCache
from .errors import InvalidAmount, InvalidCurrencyCode, RateUnavailable

"""Read-side conversion over the cached snapshot.

Responsibilities:
    - Direct rates (base -> X), inverse rates (X -> base) and cross rates
      (X -> Y via the base) from the current valid snapshot.
    - Input validation for the query path, done before the cache is read.
    - No rounding: callers get full float precision.
"""


@dataclass(frozen=True)
class ConversionResult:
    from_currency: str
    to_currency: str
    amount: float
    rate: float
    converted: float
    entry: Optional[CacheEntry]


def validate_currency(code: str) -> str:
    if not isinstance(code, str) or not CURRENCY_CODE_RE.match(code):
        raise InvalidCurrencyCode(str(code))
    return code


def parse_amount(raw: Any) -> float:
    if isinstance(raw, bool):
        raise InvalidAmount(raw)
    try:
        amount = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError) as e:
        raise InvalidAmount(raw) from e
    if not math.isfinite(amount) or amount < 0:
        raise InvalidAmount(raw)
    return amount


def _rate_between(snapshot: Snapshot, from_currency: str, to_currency: str) -> float:
    rates = snapshot.rates
    base = snapshot.base_code
    if from_currency == base:
        rate = rates.get(to_currency)
        if rate is None:
            raise RateUnavailable(from_currency, to_currency)
        return rate
    from_rate = rates.get(from_currency)
    if not from_rate:
        # absent, or zero: never hand out an infinite rate
        raise RateUnavailable(from_currency, to_currency)
    if to_currency == base:
        return 1 / from_rate
    to_rate = rates.get(to_currency)
    if to_rate is None:
        raise RateUnavailable(from_currency, to_currency)
    return to_rate / from_rate


class ConversionEngine:
    def __init__(self, cache: RateCache, clock: Clock = wall_clock_ms):
        self._cache = cache
        self._clock = clock

    def rate_of(self, currency: str) -> float:
        """Rate of `currency` relative to the snapshot base."""
        snapshot = self._cache.get(self._clock())
        rate = snapshot.rates.get(currency)
        if rate is None:
            raise RateUnavailable(snapshot.base_code, currency)
        return rate

    def rate_between(self, from_currency: str, to_currency: str) -> float:
        if from_currency == to_currency:
            return 1.0
        snapshot = self._cache.get(self._clock())
        return _rate_between(snapshot, from_currency, to_currency)

    def convert(self, from_currency: str, to_currency: str, amount: Any) -> ConversionResult:
        validate_currency(from_currency)
        validate_currency(to_currency)
        value = parse_amount(amount)
        now = self._clock()
        if from_currency == to_currency:
            # identity needs no rates; metadata attached only when available
            entry = self._cache.peek(now)
            rate = 1.0
        else:
            # one read, so rate and metadata come from the same snapshot
            entry = self._cache.valid_entry(now)
            rate = _rate_between(entry.snapshot, from_currency, to_currency)
        return ConversionResult(
            from_currency=from_currency,
            to_currency=to_currency,
            amount=value,
            rate=rate,
            converted=value * rate,
            entry=entry,
        )
