"""
Tests for the public-key cache: TTL, single-flight refill, failure handling.
"""
import asyncio

import pytest

from domain.errors import UpstreamError
from services.key_cache import PublicKeyCache


class CountingFetcher:
    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.delay = delay
        self.fail = False

    async def __call__(self, provider_id):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("pubkey endpoint down")
        return f"{provider_id}-key-{self.calls}"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_get_fetches_then_serves_from_cache(fake_clock):
    fetcher = CountingFetcher()
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    assert await cache.get("monobank") == "monobank-key-1"
    fake_clock.advance(59)
    assert await cache.get("monobank") == "monobank-key-1"
    assert fetcher.calls == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entry_expires_at_ttl(fake_clock):
    fetcher = CountingFetcher()
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    await cache.get("monobank")
    fake_clock.advance(60)  # now - fetched_at == ttl is no longer fresh
    assert await cache.get("monobank") == "monobank-key-2"
    assert fetcher.calls == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(fake_clock):
    fetcher = CountingFetcher(delay=0.05)
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    keys = await asyncio.gather(*(cache.get("monobank") for _ in range(20)))

    assert fetcher.calls == 1
    assert cache.fetch_count == 1
    assert set(keys) == {"monobank-key-1"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_providers_are_cached_independently(fake_clock):
    fetcher = CountingFetcher()
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    assert await cache.get("a") == "a-key-1"
    assert await cache.get("b") == "b-key-2"
    assert await cache.get("a") == "a-key-1"
    assert fetcher.calls == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_fetch_raises_upstream_error(fake_clock):
    fetcher = CountingFetcher()
    fetcher.fail = True
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    with pytest.raises(UpstreamError):
        await cache.get("monobank")
    assert cache.peek("monobank") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_refill_keeps_old_entry_but_does_not_serve_it_stale(fake_clock):
    fetcher = CountingFetcher()
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)
    await cache.get("monobank")

    fake_clock.advance(61)
    fetcher.fail = True
    with pytest.raises(UpstreamError):
        await cache.get("monobank")

    # previous entry untouched, but not handed out as fresh
    assert cache.peek("monobank").key == "monobank-key-1"

    fetcher.fail = False
    assert await cache.get("monobank") == "monobank-key-3"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_waiters_all_see_the_failure(fake_clock):
    fetcher = CountingFetcher(delay=0.02)
    fetcher.fail = True
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    results = await asyncio.gather(
        *(cache.get("monobank") for _ in range(5)), return_exceptions=True
    )

    assert fetcher.calls == 1
    assert all(isinstance(r, UpstreamError) for r in results)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalidate_forces_refetch(fake_clock):
    fetcher = CountingFetcher()
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)
    await cache.get("monobank")

    cache.invalidate("monobank")

    assert await cache.get("monobank") == "monobank-key-2"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_fetch(fake_clock):
    fetcher = CountingFetcher(delay=0.05)
    cache = PublicKeyCache(fetcher, ttl_seconds=60, clock=fake_clock)

    first = asyncio.ensure_future(cache.get("monobank"))
    second = asyncio.ensure_future(cache.get("monobank"))
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == "monobank-key-1"
    assert fetcher.calls == 1
