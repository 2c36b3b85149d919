"""
Public-key cache for providers that sign webhooks asymmetrically.

One entry per provider id, replaced wholesale on refill. Concurrent misses
share a single in-flight fetch (single-flight); a failed refill leaves any
previous entry in place but never serves it once it is past its TTL.

The clock is injectable so expiry can be simulated in tests.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from domain.errors import UpstreamError

logger = logging.getLogger(__name__)

KeyFetcher = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class KeyCacheEntry:
    key: Any
    fetched_at: float


class PublicKeyCache:
    """
    Time-bounded, single-flight cache of verification keys.

    Args:
        fetcher: async callable returning key material for a provider id
        ttl_seconds: an entry is fresh while now - fetched_at < ttl
        clock: monotonic time source (seconds)
    """

    def __init__(
        self,
        fetcher: KeyFetcher,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, KeyCacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}
        self.fetch_count = 0

    def peek(self, provider_id: str) -> Optional[KeyCacheEntry]:
        """Current entry, fresh or not (for diagnostics)."""
        return self._entries.get(provider_id)

    def _fresh(self, provider_id: str) -> Optional[KeyCacheEntry]:
        entry = self._entries.get(provider_id)
        if entry is not None and self._clock() - entry.fetched_at < self._ttl:
            return entry
        return None

    async def get(self, provider_id: str) -> Any:
        """
        Return a fresh key for provider_id, fetching it if needed.

        Raises:
            UpstreamError: no fresh key could be obtained
        """
        entry = self._fresh(provider_id)
        if entry is not None:
            return entry.key

        future = self._inflight.get(provider_id)
        if future is None or future.done():
            future = asyncio.ensure_future(self._refill(provider_id))
            self._inflight[provider_id] = future
            future.add_done_callback(
                lambda f, pid=provider_id: self._forget(pid, f)
            )

        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(future)

    def invalidate(self, provider_id: str) -> None:
        """Drop the cached key so the next get() refetches."""
        if self._entries.pop(provider_id, None) is not None:
            logger.info(f"Public key for {provider_id} invalidated")

    def _forget(self, provider_id: str, future: asyncio.Future) -> None:
        if self._inflight.get(provider_id) is future:
            del self._inflight[provider_id]
        if not future.cancelled():
            # mark the exception retrieved; waiters have already re-raised it
            future.exception()

    async def _refill(self, provider_id: str) -> Any:
        self.fetch_count += 1
        try:
            key = await self._fetcher(provider_id)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"Public key fetch failed for {provider_id}: {e}")
            raise UpstreamError(
                "Verification key unavailable",
                details={"provider": provider_id},
            ) from e

        self._entries[provider_id] = KeyCacheEntry(key=key, fetched_at=self._clock())
        logger.info(f"Public key for {provider_id} refreshed (ttl={self._ttl}s)")
        return key
