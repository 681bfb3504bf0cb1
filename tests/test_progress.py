import asyncio

import pytest

from musiclib.utils.progress import ActiveUpload, InMemoryProgressManager


def _upload(upload_id: str, start_time: float, user_id: int = 1) -> ActiveUpload:
    return ActiveUpload(upload_id=upload_id, user_id=user_id, username="alice", total_files=2, start_time=start_time)


class TestInMemoryProgressManager:
    @pytest.fixture
    def progress(self, clock):
        return InMemoryProgressManager(max_age=3600, clock=clock)

    @pytest.mark.asyncio
    async def test_complete_removes_batch(self, progress, clock):
        await progress.register(_upload("u1", clock()))
        await progress.update("u1", processed_files=1)
        assert (await progress.get("u1")).processed_files == 1

        await progress.complete("u1")
        assert await progress.get("u1") is None

    @pytest.mark.asyncio
    async def test_abandoned_batches_are_swept(self, progress, clock):
        for i in range(50):
            await progress.register(_upload(f"old-{i}", clock()))
        assert len(progress) == 50

        clock.advance(3601)
        await progress.register(_upload("fresh", clock()))

        assert len(progress) == 1
        assert await progress.get("old-0") is None
        assert await progress.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_sweep_keeps_batches_within_max_age(self, progress, clock):
        await progress.register(_upload("u1", clock()))
        clock.advance(3599)

        assert progress.sweep() == 0
        assert await progress.get("u1") is not None

    @pytest.mark.asyncio
    async def test_sweep_ends_open_subscriptions(self, progress, clock):
        await progress.register(_upload("u1", clock()))
        stream = progress.subscribe("u1")
        first = await stream.__anext__()
        assert '"status": "pending"' in first

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        clock.advance(3601)
        assert progress.sweep() == 1

        last = await asyncio.wait_for(pending, timeout=1)
        assert '"status": "failed"' in last
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_unknown_batch_subscription(self, progress):
        events = [e async for e in progress.subscribe("missing")]
        assert len(events) == 1
        assert '"status": "unknown"' in events[0]
