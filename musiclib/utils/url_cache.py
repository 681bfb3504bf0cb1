"""
Memoizes signed URLs so repeated reads of the same object within a short
window do not re-sign.

Keys are content-addressed, so a cached URL always points at the same bytes;
entries only need to expire well before the URL itself does.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from musiclib.utils.storage import StorageProvider

logger = logging.getLogger(__name__)


@dataclass
class CachedUrl:
    url: str
    expires: float


class UrlCache:
    def __init__(
        self,
        storage: StorageProvider,
        cache_seconds: float = 600,
        default_ttl: int = 900,
        purge_interval: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cache_seconds >= default_ttl:
            raise ValueError(
                f"URL cache duration ({cache_seconds}s) must be shorter than the signed URL TTL ({default_ttl}s)"
            )
        self.storage = storage
        self.cache_seconds = cache_seconds
        self.default_ttl = default_ttl
        self.purge_interval = purge_interval
        self._clock = clock
        self._entries: dict[str, CachedUrl] = {}
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def window_for(self, ttl: int) -> float:
        """How long a URL signed for ttl seconds may be reused.

        Shorter TTLs get a proportionally shorter window, so every URL is
        dropped from the cache at the same fraction of its lifetime.
        """
        return min(self.cache_seconds, ttl * self.cache_seconds / self.default_ttl)

    async def get_url(self, key: str, ttl: int | None = None) -> str:
        ttl = ttl or self.default_ttl
        cache_key = f"{key}_{ttl}"
        now = self._clock()
        cached = self._entries.get(cache_key)
        if cached and now < cached.expires:
            return cached.url

        url = await self.storage.generate_url(key, ttl)
        self._entries[cache_key] = CachedUrl(url=url, expires=now + self.window_for(ttl))
        return url

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, entry in self._entries.items() if now >= entry.expires]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    # ── Lifecycle ────────────────────────────────────────

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._purge_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.clear()

    async def _purge_loop(self) -> None:
        while True:
            await asyncio.sleep(self.purge_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("Purged %d expired signed URLs", removed)
