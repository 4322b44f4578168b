from __future__ import annotations

"""ExchangeRate-API v6 provider client.

One call per fetch_snapshot(), bounded by a hard deadline; every failure is
raised as a ProviderFetchError subclass so the scheduler can classify it.
The client never touches the cache.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from fxrelay.models.rates import ProviderLatestPayload, Snapshot
from .base import RateProvider
from .errors import (
    MalformedResponse,
    ProviderError,
    ProviderNetworkError,
    ProviderTimeout,
)

logger = logging.getLogger("fxrelay.rates.provider")

DEFAULT_BASE_URL = "https://v6.exchangerate-api.com/v6"
DEFAULT_TIMEOUT_SECONDS = 10.0


class ExchangeRateApiProvider(RateProvider):
    def __init__(
        self,
        *,
        api_key: str,
        base_currency: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key must be provided")
        self._api_key = api_key
        self.base_currency = base_currency.upper()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self._api_key}/latest/{self.base_currency}"

    async def fetch_snapshot(self) -> Snapshot:
        try:
            payload = await asyncio.wait_for(self._get_json(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(
                f"provider request timed out after {self.timeout:g}s"
            ) from e

        if payload.get("result") != "success":
            reason = payload.get("error-type") or "unknown"
            raise ProviderError(str(reason))

        try:
            parsed = ProviderLatestPayload.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponse(
                f"provider payload failed validation: {e.error_count()} error(s)",
                payload=payload,
            ) from e
        snapshot = parsed.to_snapshot()
        logger.debug(
            "fetched %d rates for %s (next update %s)",
            len(snapshot.rates),
            snapshot.base_code,
            snapshot.next_update_unix,
        )
        return snapshot

    async def _get_json(self) -> Dict[str, Any]:
        try:
            resp = await self._client.get(self.url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"provider request timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f"provider request failed: {e!r}") from e

        if not resp.is_success:
            raise ProviderNetworkError(
                f"provider HTTP {resp.status_code}: {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:  # JSON decode
            raise MalformedResponse("provider returned invalid JSON", payload=resp.text) from e
        if not isinstance(data, dict):
            raise MalformedResponse("provider returned unexpected payload type", payload=data)
        return data
