"""
In-memory registry of in-flight chunked upload sessions.

The registry is per-process: a restart loses every partial upload, and
replicas behind a load balancer need sticky routing so that all chunks of
one upload reach the same process.
"""

import asyncio
import logging
import time
from typing import Callable

from musiclib.utils.chunks import UploadSession

logger = logging.getLogger(__name__)


class UploadSessionRegistry:
    def __init__(
        self,
        max_sessions: int = 100,
        max_age: float = 30 * 60,
        sweep_interval: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.max_age = max_age
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, upload_id: str) -> bool:
        return upload_id in self._sessions

    def get(self, upload_id: str) -> UploadSession | None:
        return self._sessions.get(upload_id)

    def add(self, session: UploadSession) -> None:
        self._sessions[session.upload_id] = session
        self._enforce_capacity()

    def discard(self, upload_id: str) -> UploadSession | None:
        """Remove a session and release its buffered chunks."""
        session = self._sessions.pop(upload_id, None)
        if session is not None:
            session.release()
        return session

    def _enforce_capacity(self) -> None:
        excess = len(self._sessions) - self.max_sessions
        if excess <= 0:
            return
        oldest = sorted(self._sessions.values(), key=lambda s: s.created_at)[:excess]
        for session in oldest:
            logger.warning("Evicting upload session %s: registry over capacity", session.upload_id)
            self.discard(session.upload_id)

    def sweep(self) -> int:
        """Evict sessions older than max_age. Returns how many were evicted."""
        cutoff = self.clock() - self.max_age
        expired = [s.upload_id for s in self._sessions.values() if s.created_at < cutoff]
        for upload_id in expired:
            logger.info("Evicting expired upload session %s", upload_id)
            self.discard(upload_id)
        return len(expired)

    def clear(self) -> None:
        for upload_id in list(self._sessions):
            self.discard(upload_id)

    # ── Lifecycle ────────────────────────────────────────

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.warning("Upload session sweep failed: %s", e)
