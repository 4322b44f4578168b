"""Shared fakes for the rates subsystem: clock, manual timer, scripted provider."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import pytest

from fxrelay.core.config import Settings
from fxrelay.models.rates import Snapshot
from fxrelay.services.rates.base import RateProvider

T0_MS = 1_700_000_000_000
T0_S = T0_MS // 1000


def make_snapshot(
    *,
    base_code: str = "USD",
    rates: Optional[Dict[str, float]] = None,
    next_update_unix: int = T0_S + 3600,
    last_update_unix: int = T0_S - 60,
    **extra: Any,
) -> Snapshot:
    return Snapshot(
        base_code=base_code,
        rates=rates if rates is not None else {"USD": 1.0, "EUR": 0.90, "ARS": 1000.0},
        last_update_unix=last_update_unix,
        next_update_unix=next_update_unix,
        **extra,
    )


class FakeClock:
    def __init__(self, now_ms: int = T0_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class _ManualHandle:
    def __init__(self, delay_ms: int, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay_ms = delay_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Records scheduled callbacks; tests fire them explicitly."""

    def __init__(self) -> None:
        self.scheduled: List[_ManualHandle] = []

    def schedule(self, delay_ms: int, callback: Callable[[], Awaitable[None]]) -> _ManualHandle:
        handle = _ManualHandle(delay_ms, callback)
        self.scheduled.append(handle)
        return handle

    @property
    def pending(self) -> List[_ManualHandle]:
        return [h for h in self.scheduled if not h.cancelled]

    @property
    def delays(self) -> List[int]:
        return [h.delay_ms for h in self.scheduled]

    async def fire(self, clock: Optional[FakeClock] = None) -> None:
        """Advance `clock` by the pending delay (if given) and run the callback."""
        pending = self.pending
        assert len(pending) == 1, f"expected one pending timer, got {len(pending)}"
        handle = pending[0]
        handle.cancelled = True  # consumed
        if clock is not None:
            clock.advance(handle.delay_ms)
        await handle.callback()


Outcome = Union[Snapshot, Exception]


class ScriptedProvider(RateProvider):
    """Returns/raises queued outcomes in order; repeats the last one when exhausted."""

    def __init__(self, *outcomes: Outcome, gate: Optional[asyncio.Event] = None) -> None:
        self.outcomes = list(outcomes)
        self.gate = gate
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def fetch_snapshot(self) -> Snapshot:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.active -= 1


class RecordingPublisher:
    def __init__(self) -> None:
        self.payloads: List[Dict[str, Any]] = []

    async def publish(self, payload: Dict[str, Any]) -> None:
        self.payloads.append(payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        exr_api_key="test-key",
        base_currency="USD",
        cache_ttl_ms=60_000,
    )
