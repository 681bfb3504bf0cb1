"""
Progress tracking for HTTP song-batch uploads.

Uses Redis pub/sub when available so any worker can report the status of a
batch. Falls back to an in-process asyncio Event mechanism when Redis is
unavailable.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import AsyncGenerator, Callable

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")


@dataclass
class ActiveUpload:
    upload_id: str
    user_id: int
    username: str
    total_files: int
    total_size: int = 0
    processed_files: int = 0
    current_file: str | None = None
    status: str = "pending"
    start_time: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)


def _format_event(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


# ── Redis-backed implementation ──────────────────────────────────────

class RedisProgressManager:
    """
    Progress tracker backed by Redis pub/sub + hash storage.
    Supports multiple workers and multiple SSE subscribers.
    """

    STATE_TTL_SECONDS = 3600

    def __init__(self, redis_url: str, client=None):
        self._redis_url = redis_url
        self._redis = client

    async def _get_redis(self):
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _channel(self, upload_id: str) -> str:
        return f"upload:{upload_id}:progress"

    def _hash_key(self, upload_id: str) -> str:
        return f"upload:{upload_id}:state"

    async def _store(self, upload: ActiveUpload) -> None:
        r = await self._get_redis()
        data = upload.to_dict()
        await r.hset(self._hash_key(upload.upload_id), mapping={"json": json.dumps(data)})
        await r.expire(self._hash_key(upload.upload_id), self.STATE_TTL_SECONDS)
        await r.publish(self._channel(upload.upload_id), json.dumps(data))

    async def register(self, upload: ActiveUpload) -> None:
        await self._store(upload)

    async def get(self, upload_id: str) -> ActiveUpload | None:
        r = await self._get_redis()
        raw = await r.hget(self._hash_key(upload_id), "json")
        if not raw:
            return None
        return ActiveUpload(**json.loads(raw))

    async def update(self, upload_id: str, **changes) -> ActiveUpload | None:
        upload = await self.get(upload_id)
        if upload is None:
            return None
        for name, value in changes.items():
            setattr(upload, name, value)
        await self._store(upload)
        return upload

    async def complete(self, upload_id: str, status: str = "completed") -> None:
        upload = await self.get(upload_id)
        if upload is None:
            return
        upload.status = status
        upload.processed_files = upload.total_files if status == "completed" else upload.processed_files
        upload.current_file = None
        r = await self._get_redis()
        await r.publish(self._channel(upload_id), json.dumps(upload.to_dict()))
        await r.delete(self._hash_key(upload_id))

    async def subscribe(self, upload_id: str) -> AsyncGenerator[str, None]:
        """Yield SSE-formatted progress events via Redis pub/sub."""
        r = await self._get_redis()

        upload = await self.get(upload_id)
        if upload is None:
            yield _format_event("progress", {"upload_id": upload_id, "status": "unknown"})
            return
        yield _format_event("progress", upload.to_dict())

        pubsub = r.pubsub()
        await pubsub.subscribe(self._channel(upload_id))

        try:
            while True:
                msg = await asyncio.wait_for(
                    pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0),
                    timeout=30.0,
                )
                if msg is None:
                    yield ": keepalive\n\n"
                    continue

                if msg["type"] == "message":
                    data = json.loads(msg["data"])
                    yield _format_event("progress", data)
                    if data.get("status") in TERMINAL_STATUSES:
                        break
        except asyncio.TimeoutError:
            yield ": keepalive\n\n"
        finally:
            await pubsub.unsubscribe(self._channel(upload_id))
            await pubsub.aclose()

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# ── In-memory fallback ───────────────────────────────────────────────

@dataclass
class _TrackedUpload:
    upload: ActiveUpload
    event: asyncio.Event = field(default_factory=asyncio.Event)


class InMemoryProgressManager:
    """In-memory progress tracker, single-process fallback.

    Batches that were registered but never completed are dropped once they
    are older than max_age, matching the Redis state TTL.
    """

    def __init__(
        self,
        max_age: float = RedisProgressManager.STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age = max_age
        self._clock = clock
        self._uploads: dict[str, _TrackedUpload] = {}

    def __len__(self) -> int:
        return len(self._uploads)

    def sweep(self) -> int:
        """Drop batches older than max_age. Returns how many were dropped."""
        cutoff = self._clock() - self.max_age
        stale = [uid for uid, t in self._uploads.items() if t.upload.start_time < cutoff]
        for upload_id in stale:
            tracked = self._uploads.pop(upload_id)
            tracked.upload.status = "failed"
            tracked.event.set()
        if stale:
            logger.info("Dropped %d abandoned upload batches", len(stale))
        return len(stale)

    async def register(self, upload: ActiveUpload) -> None:
        self.sweep()
        self._uploads[upload.upload_id] = _TrackedUpload(upload)

    async def get(self, upload_id: str) -> ActiveUpload | None:
        tracked = self._uploads.get(upload_id)
        return tracked.upload if tracked else None

    async def update(self, upload_id: str, **changes) -> ActiveUpload | None:
        tracked = self._uploads.get(upload_id)
        if tracked is None:
            return None
        for name, value in changes.items():
            setattr(tracked.upload, name, value)
        tracked.event.set()
        return tracked.upload

    async def complete(self, upload_id: str, status: str = "completed") -> None:
        tracked = self._uploads.pop(upload_id, None)
        if tracked is None:
            return
        tracked.upload.status = status
        if status == "completed":
            tracked.upload.processed_files = tracked.upload.total_files
        tracked.upload.current_file = None
        tracked.event.set()

    async def subscribe(self, upload_id: str) -> AsyncGenerator[str, None]:
        """Yield SSE-formatted progress events until the batch finishes."""
        tracked = self._uploads.get(upload_id)
        if tracked is None:
            yield _format_event("progress", {"upload_id": upload_id, "status": "unknown"})
            return

        yield _format_event("progress", tracked.upload.to_dict())

        while tracked.upload.status not in TERMINAL_STATUSES:
            tracked.event.clear()
            try:
                await asyncio.wait_for(tracked.event.wait(), timeout=30.0)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield _format_event("progress", tracked.upload.to_dict())

    async def close(self) -> None:
        self._uploads.clear()


ProgressManager = RedisProgressManager | InMemoryProgressManager


async def create_progress_manager(redis_url: str | None) -> ProgressManager:
    """Try Redis first; fall back to in-memory if unavailable."""
    if redis_url:
        try:
            import redis.asyncio as aioredis
            r = aioredis.from_url(redis_url, decode_responses=True, socket_connect_timeout=2)
            await r.ping()
            logger.info("Progress manager: using Redis at %s", redis_url)
            return RedisProgressManager(redis_url, client=r)
        except Exception as e:
            logger.warning("Redis unavailable (%s), falling back to in-memory progress", e)

    logger.info("Progress manager: using in-memory fallback")
    return InMemoryProgressManager()
