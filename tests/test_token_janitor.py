import asyncio
from datetime import timedelta

import pytest

from authcore.services.rate_limiter import InMemoryRateLimiter
from authcore.services.token_janitor import TokenJanitor


@pytest.mark.asyncio
async def test_run_once_counts_removed_tokens(auth_service, store, clock):
    await store.store_refresh_token("a@x.com", "h1", clock.now + timedelta(minutes=1), "f")
    await store.store_refresh_token("a@x.com", "h2", clock.now + timedelta(days=1), "f")
    clock.advance(minutes=2)

    janitor = TokenJanitor(auth_service, interval_seconds=60)
    assert await janitor.run_once() == 1
    status = janitor.status()
    assert status["removed_count"] == 1
    assert status["last_heartbeat"] > 0
    assert status["running"] is False


@pytest.mark.asyncio
async def test_disabled_janitor_does_not_start(auth_service):
    janitor = TokenJanitor(auth_service, interval_seconds=0)
    janitor.start()
    assert not janitor.is_running()
    await janitor.stop()


@pytest.mark.asyncio
async def test_loop_runs_until_stopped(auth_service, store, clock):
    await store.store_refresh_token("a@x.com", "h1", clock.now - timedelta(seconds=1), "f")
    janitor = TokenJanitor(auth_service, interval_seconds=3600)
    janitor.start()
    assert janitor.is_running()

    await asyncio.sleep(0.05)
    await janitor.stop()
    assert not janitor.is_running()
    assert janitor.status()["removed_count"] == 1


def test_rate_limiter_blocks_after_limit():
    limiter = InMemoryRateLimiter()
    assert limiter.allow("login:1.2.3.4", limit=2, window_seconds=60)
    assert limiter.allow("login:1.2.3.4", limit=2, window_seconds=60)
    assert not limiter.allow("login:1.2.3.4", limit=2, window_seconds=60)
    assert limiter.allow("login:5.6.7.8", limit=2, window_seconds=60)
    assert limiter.remaining("login:1.2.3.4", limit=2, window_seconds=60) == 0

    limiter.reset()
    assert limiter.remaining("login:1.2.3.4", limit=2, window_seconds=60) == 2


class _Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_rate_limiter_evicts_emptied_windows():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(clock=ticker)
    limiter.allow("refresh:1.2.3.4", limit=5, window_seconds=60)
    assert limiter.tracked_keys() == 1

    ticker.now += 61
    assert limiter.remaining("refresh:1.2.3.4", limit=5, window_seconds=60) == 5
    assert limiter.tracked_keys() == 0


def test_rate_limiter_sweeps_idle_clients():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(clock=ticker)
    for n in range(100):
        limiter.allow(f"login:10.0.0.{n}", limit=10, window_seconds=60)
    ticker.now += 30
    limiter.allow("login:10.0.1.1", limit=10, window_seconds=60)
    assert limiter.tracked_keys() == 101

    ticker.now += 31
    limiter.sweep()
    assert limiter.tracked_keys() == 1


def test_rate_limiter_window_slides():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(clock=ticker)
    assert limiter.allow("k", limit=1, window_seconds=60)
    ticker.now += 59
    assert not limiter.allow("k", limit=1, window_seconds=60)
    ticker.now += 1
    assert limiter.allow("k", limit=1, window_seconds=60)
