from __future__ import annotations

"""Self-scheduling refresh loop for the rate cache.

State machine:

    start() --bootstrap--> FETCHING --ok--> IDLE ----timer--> FETCHING ...
                                   `--err-> BACKOFF --timer--> FETCHING ...
    stop() from any state --> STOPPED

- Single-flight: a wake() arriving while FETCHING is ignored, so at most one
  upstream call is outstanding.
- After a success the timer is armed for the remaining validity of the new
  snapshot (at least MIN_DELAY_MS). A wake that finds the cache still valid
  re-arms for the remainder instead of calling the provider.
- After a failure the cache is left untouched and the timer is armed for the
  backoff delay; a failed bootstrap uses the shorter bootstrap retry delay.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional, Set

from .base import Clock, RateProvider, SupportsPublish, Timer, TimerHandle, wall_clock_ms
from .cache_service import RateCache, build_payload
from .errors import ProviderFetchError

logger = logging.getLogger("fxrelay.rates.scheduler")

MIN_DELAY_MS = 1_000
DEFAULT_BACKOFF_MS = 15_000
DEFAULT_BOOTSTRAP_RETRY_MS = 5_000


class RefreshState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class _AsyncioTimerHandle:
    """Cancels the pending call only; a callback that already fired runs on."""

    def __init__(self) -> None:
        self.timer: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.timer is not None:
            self.timer.cancel()


class AsyncioTimer:
    """Timer backed by loop.call_later; the callback runs as its own task."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        # strong refs so fired callbacks are not garbage collected mid-run
        self._tasks: Set[asyncio.Task] = set()

    def schedule(
        self, delay_ms: int, callback: Callable[[], Awaitable[None]]
    ) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = _AsyncioTimerHandle()

        def _fire() -> None:
            if handle.cancelled:
                return
            task = loop.create_task(callback())
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

        handle.timer = loop.call_later(delay_ms / 1000, _fire)
        return handle

    async def aclose(self) -> None:
        """Cancel callbacks that already fired and are still running."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("timer callback failed", exc_info=exc)


class RefreshScheduler:
    def __init__(
        self,
        provider: RateProvider,
        cache: RateCache,
        publisher: Optional[SupportsPublish] = None,
        *,
        timer: Optional[Timer] = None,
        clock: Clock = wall_clock_ms,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        bootstrap_retry_ms: int = DEFAULT_BOOTSTRAP_RETRY_MS,
    ):
        self._provider = provider
        self._cache = cache
        self._publisher = publisher
        self._timer: Timer = timer or AsyncioTimer()
        self._clock = clock
        self.backoff_ms = backoff_ms
        self.bootstrap_retry_ms = bootstrap_retry_ms

        self.state = RefreshState.IDLE
        self._in_flight = False
        self._fetch_task: Optional[asyncio.Task] = None
        self._pending: Optional[TimerHandle] = None
        self.next_delay_ms: Optional[int] = None
        self.attempts = 0
        self.failures = 0
        self.last_error: Optional[Exception] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def stopped(self) -> bool:
        return self.state is RefreshState.STOPPED

    # Lifecycle -------------------------------------------------
    async def start(self) -> None:
        """Bootstrap: one awaited fetch, then hand over to the timer."""
        if self.stopped or self._in_flight:
            return
        ok = await self._refresh()
        if ok is None:
            return
        if not ok:
            self._arm(self.bootstrap_retry_ms)

    async def stop(self) -> None:
        self.state = RefreshState.STOPPED
        self._disarm()
        task = self._fetch_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if isinstance(self._timer, AsyncioTimer):
            await self._timer.aclose()
        logger.info("rate refresh stopped")

    # Timer callback --------------------------------------------
    async def wake(self) -> None:
        if self.stopped or self._in_flight:
            return
        now = self._clock()
        if self._cache.is_valid(now):
            # woke early (clock skew, manual wake): wait out the remainder
            self._arm(max(MIN_DELAY_MS, self._cache.remaining_ms(now)))
            return
        ok = await self._refresh()
        if ok is False:
            self._arm(self.backoff_ms)

    # Internal --------------------------------------------------
    async def _refresh(self) -> Optional[bool]:
        """One fetch attempt. True on success, False on failure, None if stopped."""
        self._in_flight = True
        self.state = RefreshState.FETCHING
        self.attempts += 1
        self._fetch_task = asyncio.ensure_future(self._provider.fetch_snapshot())
        try:
            snapshot = await self._fetch_task
        except ProviderFetchError as e:
            self.failures += 1
            self.last_error = e
            logger.warning("rate refresh failed (%s): %s", e.kind, e)
            if self.stopped:
                return None
            self.state = RefreshState.BACKOFF
            return False
        except asyncio.CancelledError:
            if self.stopped:
                return None
            raise
        except Exception as e:
            # unclassified provider fault: same backoff path, with traceback
            self.failures += 1
            self.last_error = e
            logger.exception("rate refresh failed (unexpected): %s", e)
            if self.stopped:
                return None
            self.state = RefreshState.BACKOFF
            return False
        finally:
            self._in_flight = False
            self._fetch_task = None

        if self.stopped:
            return None
        now = self._clock()
        entry = self._cache.put(snapshot, now)
        self.last_error = None
        self.state = RefreshState.IDLE
        self._arm(max(MIN_DELAY_MS, entry.expires_at_ms - now))
        logger.info(
            "rates refreshed for %s: %d currencies, expires_unix=%d",
            snapshot.base_code,
            len(snapshot.rates),
            entry.expires_unix,
        )
        if self._publisher is not None:
            await self._publisher.publish(build_payload(entry, self._cache.ttl_ms))
        return True

    def _arm(self, delay_ms: int) -> None:
        if self.stopped:
            return
        self._disarm()
        self.next_delay_ms = delay_ms
        self._pending = self._timer.schedule(delay_ms, self.wake)
        logger.debug("next refresh in %d ms", delay_ms)

    def _disarm(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
