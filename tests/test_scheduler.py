from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import (
    T0_MS,
    T0_S,
    FakeClock,
    ManualTimer,
    RecordingPublisher,
    ScriptedProvider,
    make_snapshot,
)
from fxrelay.services.rates.cache_service import RateCache
from fxrelay.services.rates.errors import ProviderError, ProviderFetchError, ProviderTimeout
from fxrelay.services.rates.scheduler import (
    AsyncioTimer,
    RefreshScheduler,
    RefreshState,
)


def _scheduler(provider, clock, timer, publisher=None, ttl_ms: int = 60_000):
    cache = RateCache(ttl_ms=ttl_ms)
    scheduler = RefreshScheduler(
        provider,
        cache,
        publisher,
        timer=timer,
        clock=clock,
        backoff_ms=15_000,
        bootstrap_retry_ms=5_000,
    )
    return scheduler, cache


@pytest.mark.asyncio
async def test_bootstrap_populates_cache_and_arms_for_validity(
    clock: FakeClock, timer: ManualTimer, publisher: RecordingPublisher
) -> None:
    provider = ScriptedProvider(make_snapshot(next_update_unix=T0_S + 30))
    scheduler, cache = _scheduler(provider, clock, timer, publisher)

    await scheduler.start()

    assert cache.get(clock()).next_update_unix == T0_S + 30
    assert cache.entry.expires_at_ms == (T0_S + 30) * 1000  # not the 60 s TTL bound
    assert scheduler.state is RefreshState.IDLE
    assert timer.delays == [30_000]
    assert len(publisher.payloads) == 1
    payload = publisher.payloads[0]
    assert payload["as_of_unix"] == T0_S
    assert payload["cache_ttl_ms"] == 60_000
    assert payload["expires_unix"] == T0_S + 30
    assert payload["rates"]["EUR"] == 0.90


@pytest.mark.asyncio
async def test_delay_never_below_one_second(timer: ManualTimer) -> None:
    clock = FakeClock(T0_MS + 500)
    provider = ScriptedProvider(make_snapshot(next_update_unix=T0_S + 1))
    scheduler, _ = _scheduler(provider, clock, timer)

    await scheduler.start()

    assert timer.delays == [1_000]


@pytest.mark.asyncio
async def test_steady_state_refresh_replaces_snapshot(
    clock: FakeClock, timer: ManualTimer, publisher: RecordingPublisher
) -> None:
    first = make_snapshot(rates={"EUR": 0.90})
    second = make_snapshot(rates={"EUR": 0.95}, next_update_unix=T0_S + 7200)
    provider = ScriptedProvider(first, second)
    scheduler, cache = _scheduler(provider, clock, timer, publisher)

    await scheduler.start()
    await timer.fire(clock)

    assert provider.calls == 2
    assert cache.get(clock()).rates["EUR"] == 0.95
    assert cache.entry.as_of_unix == T0_S + 60
    assert timer.delays == [60_000, 60_000]
    assert [p["rates"]["EUR"] for p in publisher.payloads] == [0.90, 0.95]


@pytest.mark.asyncio
async def test_bootstrap_failure_retries_sooner_then_backs_off(
    clock: FakeClock, timer: ManualTimer, publisher: RecordingPublisher
) -> None:
    provider = ScriptedProvider(ProviderTimeout("slow"))
    scheduler, cache = _scheduler(provider, clock, timer, publisher)

    await scheduler.start()

    assert cache.is_empty()
    assert scheduler.state is RefreshState.BACKOFF
    assert isinstance(scheduler.last_error, ProviderTimeout)
    assert timer.delays == [5_000]

    await timer.fire(clock)
    await timer.fire(clock)

    assert cache.is_empty()
    assert provider.calls == 3
    assert timer.delays == [5_000, 15_000, 15_000]
    assert publisher.payloads == []


@pytest.mark.asyncio
async def test_bootstrap_recovers_after_failure(clock: FakeClock, timer: ManualTimer) -> None:
    provider = ScriptedProvider(ProviderError("quota-reached"), make_snapshot())
    scheduler, cache = _scheduler(provider, clock, timer)

    await scheduler.start()
    await timer.fire(clock)

    assert not cache.is_empty()
    assert scheduler.state is RefreshState.IDLE
    assert scheduler.last_error is None
    assert timer.delays == [5_000, 60_000]


@pytest.mark.asyncio
async def test_three_provider_errors_keep_last_good_and_back_off(
    clock: FakeClock, timer: ManualTimer
) -> None:
    provider = ScriptedProvider(
        make_snapshot(),
        ProviderError("quota-reached"),
        ProviderError("quota-reached"),
        ProviderError("quota-reached"),
    )
    scheduler, cache = _scheduler(provider, clock, timer)
    await scheduler.start()
    good = cache.entry

    for _ in range(3):
        await timer.fire(clock)

    assert provider.calls == 4
    assert timer.delays == [60_000, 15_000, 15_000, 15_000]
    assert cache.entry is good
    assert scheduler.failures == 3
    assert scheduler.state is RefreshState.BACKOFF


@pytest.mark.asyncio
async def test_failure_leaves_still_valid_snapshot_servable(
    clock: FakeClock, timer: ManualTimer
) -> None:
    # provider window (10 s) shorter than TTL; after it passes the cache misses,
    # but until then the last good snapshot is served
    provider = ScriptedProvider(make_snapshot(next_update_unix=T0_S + 10), ProviderError("x"))
    scheduler, cache = _scheduler(provider, clock, timer)
    await scheduler.start()

    clock.advance(9_999)
    assert cache.get(clock()) is cache.entry.snapshot


@pytest.mark.asyncio
async def test_early_wake_skips_provider_and_reschedules(
    clock: FakeClock, timer: ManualTimer
) -> None:
    provider = ScriptedProvider(make_snapshot())
    scheduler, cache = _scheduler(provider, clock, timer)
    await scheduler.start()

    clock.advance(20_000)  # timer fired 40 s early
    await timer.fire()

    assert provider.calls == 1
    assert timer.delays == [60_000, 40_000]
    assert scheduler.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_concurrent_wakes_never_overlap_fetches(clock: FakeClock, timer: ManualTimer) -> None:
    gate = asyncio.Event()
    provider = ScriptedProvider(make_snapshot(), gate=gate)
    scheduler, cache = _scheduler(provider, clock, timer)

    wakes = [asyncio.create_task(scheduler.wake()) for _ in range(5)]
    for _ in range(3):
        await asyncio.sleep(0)

    assert scheduler.in_flight
    assert scheduler.state is RefreshState.FETCHING
    assert provider.calls == 1

    # wakes arriving mid-flight are no-ops too
    await scheduler.wake()
    await scheduler.wake()

    gate.set()
    await asyncio.gather(*wakes)

    assert provider.calls == 1
    assert provider.max_active == 1
    assert not scheduler.in_flight
    assert not cache.is_empty()
    assert len(timer.pending) == 1


@pytest.mark.asyncio
async def test_wake_during_bootstrap_is_ignored(clock: FakeClock, timer: ManualTimer) -> None:
    gate = asyncio.Event()
    provider = ScriptedProvider(make_snapshot(), gate=gate)
    scheduler, _ = _scheduler(provider, clock, timer)

    bootstrap = asyncio.create_task(scheduler.start())
    await asyncio.sleep(0)
    await scheduler.wake()
    gate.set()
    await bootstrap

    assert provider.calls == 1
    assert provider.max_active == 1


@pytest.mark.asyncio
async def test_stop_cancels_timer_and_in_flight_fetch(clock: FakeClock, timer: ManualTimer) -> None:
    gate = asyncio.Event()
    provider = ScriptedProvider(make_snapshot(), gate=gate)
    scheduler, cache = _scheduler(provider, clock, timer)

    wake = asyncio.create_task(scheduler.wake())
    for _ in range(3):
        await asyncio.sleep(0)
    assert scheduler.in_flight

    await scheduler.stop()
    await wake

    assert scheduler.state is RefreshState.STOPPED
    assert cache.is_empty()
    assert timer.pending == []
    assert provider.active == 0

    await scheduler.wake()
    await scheduler.start()
    assert provider.calls == 1
    assert timer.pending == []


@pytest.mark.asyncio
async def test_stop_cancels_pending_timer(clock: FakeClock, timer: ManualTimer) -> None:
    scheduler, _ = _scheduler(ScriptedProvider(make_snapshot()), clock, timer)
    await scheduler.start()
    assert len(timer.pending) == 1

    await scheduler.stop()

    assert timer.pending == []


@pytest.mark.asyncio
async def test_asyncio_timer_fires_and_cancels() -> None:
    timer = AsyncioTimer()
    fired = []

    async def callback() -> None:
        fired.append("x")

    timer.schedule(10, callback)
    cancelled = timer.schedule(10, callback)
    cancelled.cancel()
    await asyncio.sleep(0.1)

    assert fired == ["x"]
    await timer.aclose()


@pytest.mark.asyncio
async def test_scheduler_with_real_timer_stops_cleanly() -> None:
    provider = ScriptedProvider(make_snapshot(next_update_unix=0))
    cache = RateCache(ttl_ms=60_000)
    scheduler = RefreshScheduler(provider, cache)

    await scheduler.start()
    assert not cache.is_empty()
    await scheduler.stop()

    assert scheduler.stopped


@pytest.mark.asyncio
async def test_unexpected_provider_exception_still_backs_off(
    clock: FakeClock, timer: ManualTimer
) -> None:
    provider = ScriptedProvider(make_snapshot(), RuntimeError("boom"), make_snapshot(rates={"EUR": 0.8}))
    scheduler, cache = _scheduler(provider, clock, timer)
    await scheduler.start()
    good = cache.entry

    await timer.fire(clock)

    assert scheduler.state is RefreshState.BACKOFF
    assert not scheduler.in_flight
    assert isinstance(scheduler.last_error, RuntimeError)
    assert not isinstance(scheduler.last_error, ProviderFetchError)
    assert cache.entry is good
    assert len(timer.pending) == 1
    assert timer.delays == [60_000, 15_000]

    await timer.fire(clock)

    assert scheduler.state is RefreshState.IDLE
    assert cache.get(clock()).rates["EUR"] == 0.8


@pytest.mark.asyncio
async def test_unexpected_bootstrap_exception_uses_bootstrap_retry(
    clock: FakeClock, timer: ManualTimer
) -> None:
    scheduler, cache = _scheduler(ScriptedProvider(ValueError("bad url")), clock, timer)

    await scheduler.start()

    assert cache.is_empty()
    assert scheduler.state is RefreshState.BACKOFF
    assert timer.delays == [5_000]


@pytest.mark.asyncio
async def test_failed_refresh_logs_warning_with_error_kind(
    clock: FakeClock, timer: ManualTimer, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="fxrelay.rates.scheduler")
    scheduler, _ = _scheduler(ScriptedProvider(ProviderError("quota-reached")), clock, timer)

    await scheduler.start()

    warnings = [
        r for r in caplog.records
        if r.name == "fxrelay.rates.scheduler" and r.levelno == logging.WARNING
    ]
    assert len(warnings) == 1
    message = warnings[0].getMessage()
    assert "provider_error" in message
    assert "quota-reached" in message
