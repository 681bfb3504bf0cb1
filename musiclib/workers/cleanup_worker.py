"""
Periodic cleanup worker — sweeps orphan catalog rows and unreferenced blobs.
Can be run as a cron job or scheduled task.

Blobs become unreferenced when a deletion's best-effort storage cleanup
failed, when an upload stored bytes but its catalog insert was rejected, or
when an orphan artist/album sweep removed the last row pointing at an image.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.config import settings
from musiclib.models.album import Album
from musiclib.models.artist import Artist
from musiclib.models.song import Song
from musiclib.models.user import User
from musiclib.services.deletion_service import DeletionService
from musiclib.utils.storage import CONTENT_FOLDERS, StorageProvider

logger = logging.getLogger(__name__)

LOCATOR_COLUMNS = (Song.file_path, Song.cover_art_url, Album.cover_art_url, Artist.image_url, User.avatar_url)


async def sweep_orphan_rows(
    session_factory: async_sessionmaker[AsyncSession],
    storage: StorageProvider,
) -> tuple[int, int]:
    """Delete albums and artists that nothing references any more."""
    service = DeletionService(session_factory, storage)
    async with session_factory() as session:
        albums, artists = await service.cleanup_orphans(session)
        await session.commit()
    if albums or artists:
        logger.info("Swept %d orphan albums and %d orphan artists", albums, artists)
    return albums, artists


async def referenced_keys(session: AsyncSession, storage: StorageProvider) -> set[str]:
    keys: set[str] = set()
    for column in LOCATOR_COLUMNS:
        rows = await session.execute(select(column).where(column.is_not(None)))
        for locator in rows.scalars():
            key = storage.key_from_locator(locator)
            if key:
                keys.add(key)
    return keys


async def sweep_orphan_blobs(
    session_factory: async_sessionmaker[AsyncSession],
    storage: StorageProvider,
    grace_hours: int = settings.ORPHAN_BLOB_GRACE_HOURS,
    now: datetime | None = None,
) -> int:
    """Delete stored objects no catalog row points at. Returns count removed.

    Objects younger than grace_hours are skipped so uploads still between
    their storage write and their catalog commit are left alone.
    """
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=grace_hours)

    async with session_factory() as session:
        in_use = await referenced_keys(session, storage)

    stale = []
    for folder in CONTENT_FOLDERS:
        for obj in await storage.list_keys(f"{folder}/"):
            if obj.key not in in_use and obj.modified_at < cutoff:
                stale.append(obj.key)

    if stale:
        await storage.delete_files(stale)
        logger.info("Removed %d unreferenced blobs", len(stale))
    return len(stale)


async def cleanup(session_factory: async_sessionmaker[AsyncSession], storage: StorageProvider) -> tuple[int, int, int]:
    albums, artists = await sweep_orphan_rows(session_factory, storage)
    blobs = await sweep_orphan_blobs(session_factory, storage)
    return albums, artists, blobs


def run_cleanup():
    """Synchronous entry point for running all cleanup tasks."""
    import asyncio

    from musiclib.db.session import create_engine, create_session_factory
    from musiclib.utils.storage import create_storage

    async def _main():
        engine = create_engine()
        storage = create_storage(settings)
        try:
            return await cleanup(create_session_factory(engine), storage)
        finally:
            await engine.dispose()

    logger.info("Starting cleanup...")
    albums, artists, blobs = asyncio.run(_main())
    logger.info("Cleanup complete: %d albums, %d artists, %d blobs removed", albums, artists, blobs)
    return albums, artists, blobs


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    run_cleanup()
