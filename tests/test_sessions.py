import asyncio

import pytest

from musiclib.utils.chunks import UploadRole, UploadSession
from musiclib.utils.sessions import UploadSessionRegistry


def _session(upload_id: str, created_at: float) -> UploadSession:
    return UploadSession(
        upload_id=upload_id,
        user_id=1,
        total_chunks=2,
        filename="a.png",
        mime_type="image/png",
        role=UploadRole.ALBUM,
        created_at=created_at,
    )


class TestUploadSessionRegistry:
    def test_capacity_evicts_oldest(self, clock):
        registry = UploadSessionRegistry(max_sessions=3, clock=clock)
        for i in range(3):
            registry.add(_session(f"s{i}", created_at=clock() + i))

        registry.add(_session("s3", created_at=clock() + 10))

        assert len(registry) == 3
        assert "s0" not in registry
        assert all(f"s{i}" in registry for i in (1, 2, 3))

    def test_evicted_session_releases_chunks(self, clock):
        registry = UploadSessionRegistry(max_sessions=1, clock=clock)
        first = _session("first", created_at=clock())
        first.add_chunk(0, "QUJD")
        registry.add(first)
        registry.add(_session("second", created_at=clock() + 1))

        assert first.received_count == 0

    def test_sweep_drops_only_expired(self, clock):
        registry = UploadSessionRegistry(max_age=1800, clock=clock)
        registry.add(_session("old", created_at=clock()))
        clock.advance(1000)
        registry.add(_session("young", created_at=clock()))

        clock.advance(1000)
        assert registry.sweep() == 1
        assert "old" not in registry
        assert "young" in registry

    def test_discard_unknown_is_noop(self, clock):
        registry = UploadSessionRegistry(clock=clock)
        assert registry.discard("missing") is None

    @pytest.mark.asyncio
    async def test_stop_cancels_sweeper_and_clears(self, clock):
        registry = UploadSessionRegistry(sweep_interval=0.01, clock=clock)
        registry.add(_session("a", created_at=clock()))
        registry.start()
        await asyncio.sleep(0)
        await registry.stop()

        assert len(registry) == 0
        assert registry._task is None
