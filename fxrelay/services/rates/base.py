from __future__ import annotations

"""Rate subsystem seams.

Interfaces the refresh scheduler depends on, so tests can substitute a fake
provider, a fake clock and a manual timer.
"""
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Protocol

from fxrelay.models.rates import Snapshot

Clock = Callable[[], int]  # epoch milliseconds


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class RateProvider(ABC):
    @abstractmethod
    async def fetch_snapshot(self) -> Snapshot:
        """Return a fresh Snapshot or raise a ProviderFetchError subclass."""
        raise NotImplementedError


class SupportsPublish(Protocol):
    async def publish(self, payload: Dict[str, Any]) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def schedule(
        self, delay_ms: int, callback: Callable[[], Awaitable[None]]
    ) -> TimerHandle: ...
