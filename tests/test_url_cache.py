import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from musiclib.utils.url_cache import UrlCache


@pytest.fixture
def mock_storage():
    storage = MagicMock()
    counter = itertools.count()
    storage.generate_url = AsyncMock(side_effect=lambda key, ttl: f"https://signed/{key}?ttl={ttl}&n={next(counter)}")
    return storage


class TestUrlCache:
    def test_rejects_cache_longer_than_ttl(self, mock_storage):
        with pytest.raises(ValueError):
            UrlCache(mock_storage, cache_seconds=900, default_ttl=900)

    @pytest.mark.asyncio
    async def test_hit_within_window(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)

        first = await cache.get_url("album_art/abc.png")
        clock.advance(599)
        second = await cache.get_url("album_art/abc.png")

        assert first == second
        assert mock_storage.generate_url.await_count == 1

    @pytest.mark.asyncio
    async def test_resigns_after_window(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)

        first = await cache.get_url("album_art/abc.png")
        clock.advance(600)
        second = await cache.get_url("album_art/abc.png")

        assert first != second
        assert mock_storage.generate_url.await_count == 2

    @pytest.mark.asyncio
    async def test_ttl_is_part_of_cache_key(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)

        await cache.get_url("k", ttl=900)
        await cache.get_url("k", ttl=3600)

        assert len(cache) == 2
        mock_storage.generate_url.assert_any_await("k", 3600)

    @pytest.mark.asyncio
    async def test_short_ttl_is_not_served_past_expiry(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)

        first = await cache.get_url("k", ttl=60)
        clock.advance(39)
        assert await cache.get_url("k", ttl=60) == first

        clock.advance(81)
        second = await cache.get_url("k", ttl=60)

        assert second != first
        assert mock_storage.generate_url.await_count == 2

    def test_window_scales_with_ttl(self, mock_storage):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900)

        assert cache.window_for(900) == 600
        assert cache.window_for(3600) == 600
        assert cache.window_for(60) == 40

    @pytest.mark.asyncio
    async def test_purge_expired(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)
        await cache.get_url("a")
        clock.advance(300)
        await cache.get_url("b")
        clock.advance(300)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_stop_clears_entries(self, mock_storage, clock):
        cache = UrlCache(mock_storage, cache_seconds=600, default_ttl=900, clock=clock)
        await cache.get_url("a")
        cache.start()
        await cache.stop()
        assert len(cache) == 0
