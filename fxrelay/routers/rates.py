from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request

from fxrelay.models.rates import ConversionOut, CurrencyRateOut, RatesOut
from fxrelay.services.rates.cache_service import RateCache
from fxrelay.services.rates.conversion import ConversionEngine, validate_currency
from fxrelay.services.rates.errors import CacheEmpty, RateUnavailable

"""Rates router.

Endpoints (read-only; never call the upstream provider):
    - GET /api/rates                 -> cached snapshot + cache metadata
    - GET /api/rates/convert         -> from/to/amount conversion
    - GET /api/rates/{currency}      -> one currency relative to base

Errors are raised as RateQueryError subclasses and rendered by the handlers
in fxrelay.core.errors (503 not ready, 400 bad input, 404 pair unavailable).
"""

router = APIRouter(prefix="/api/rates", tags=["rates"])


def get_rate_cache(request: Request) -> RateCache:
    return request.app.state.rate_cache


def get_conversion_engine(request: Request) -> ConversionEngine:
    return request.app.state.conversion_engine


def get_clock(request: Request):
    return request.app.state.clock


@router.get("", response_model=RatesOut, summary="Latest cached rates")
async def latest_rates(
    cache: RateCache = Depends(get_rate_cache),
    clock=Depends(get_clock),
) -> Dict[str, Any]:
    return cache.payload(clock())


@router.get("/convert", response_model=ConversionOut, summary="Convert an amount")
async def convert(
    from_currency: str = Query("", alias="from", description="ISO 4217 source code"),
    to_currency: str = Query("", alias="to", description="ISO 4217 target code"),
    amount: str = Query("1", description="Non-negative amount (default 1)"),
    engine: ConversionEngine = Depends(get_conversion_engine),
    cache: RateCache = Depends(get_rate_cache),
):
    result = engine.convert(
        from_currency.strip().upper(), to_currency.strip().upper(), amount
    )
    entry = result.entry
    if entry is None:
        # identity conversions still report snapshot metadata, so need one
        raise CacheEmpty()
    snapshot = entry.snapshot
    return ConversionOut(
        from_currency=result.from_currency,
        to_currency=result.to_currency,
        amount=result.amount,
        rate=result.rate,
        converted=result.converted,
        base=snapshot.base_code,
        as_of_unix=entry.as_of_unix,
        cache_ttl_ms=cache.ttl_ms,
        expires_unix=entry.expires_unix,
        provider_time_last_update_unix=snapshot.last_update_unix,
        provider_time_next_update_unix=snapshot.next_update_unix,
    )


@router.get("/{currency}", response_model=CurrencyRateOut, summary="Rate of one currency")
async def currency_rate(
    currency: str,
    cache: RateCache = Depends(get_rate_cache),
    clock=Depends(get_clock),
):
    code = validate_currency(currency.strip().upper())
    # one read, so rate and expiry come from the same snapshot
    entry = cache.valid_entry(clock())
    snapshot = entry.snapshot
    rate = snapshot.rates.get(code)
    if rate is None:
        raise RateUnavailable(snapshot.base_code, code)
    return CurrencyRateOut(
        currency=code,
        base=snapshot.base_code,
        rate=rate,
        expires_unix=entry.expires_unix,
    )
