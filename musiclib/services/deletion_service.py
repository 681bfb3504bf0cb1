"""
Deletion service — cascading song/album/artist deletes with blob cleanup.

Every deletion runs in one catalog transaction: load, authorize, collect the
storage keys, delete dependent rows, sweep orphan albums/artists, commit.
Blobs are removed only after the commit and after the session has been
released; a storage failure at that point is logged, never raised, because
the catalog change is already durable.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.exceptions import CatalogFailure, MusicLibError, NotFound, Unauthorized
from musiclib.models.album import Album
from musiclib.models.artist import Artist
from musiclib.models.playlist import PlaylistSong
from musiclib.models.song import Song, SongListen
from musiclib.models.user import User
from musiclib.utils.storage import StorageProvider

logger = logging.getLogger(__name__)


@dataclass
class DeletionResult:
    songs_deleted: int = 0
    albums_deleted: int = 0
    deleted_files: int = 0


Plan = Callable[[AsyncSession], Awaitable[tuple[DeletionResult, list[str | None]]]]


def _no_sync(stmt):
    return stmt.execution_options(synchronize_session=False)


class DeletionService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], storage: StorageProvider):
        self.session_factory = session_factory
        self.storage = storage

    # ── Public operations ────────────────────────────────

    async def delete_song(self, song_id: int, user_id: int, is_admin: bool = False) -> DeletionResult:
        async def plan(db: AsyncSession):
            song = await db.get(Song, song_id)
            if song is None:
                raise NotFound("Song not found")
            if song.uploaded_by != user_id and not is_admin:
                raise Unauthorized("You can only delete songs you uploaded")

            locators = [song.file_path, song.cover_art_url]
            await self._delete_songs(db, [song.id])
            return DeletionResult(songs_deleted=1), locators

        return await self._run("song", song_id, user_id, plan)

    async def delete_album(self, album_id: int, user_id: int, is_admin: bool = False) -> DeletionResult:
        async def plan(db: AsyncSession):
            album = await db.get(Album, album_id)
            if album is None:
                raise NotFound("Album not found")

            songs = list((await db.execute(select(Song).where(Song.album_id == album_id))).scalars())
            if not is_admin and not any(s.uploaded_by == user_id for s in songs):
                raise Unauthorized("You can only delete albums containing songs you uploaded")

            locators = self._song_locators(songs) + [album.cover_art_url]
            await self._delete_songs(db, [s.id for s in songs])
            await db.execute(_no_sync(delete(Album).where(Album.id == album_id)))
            return DeletionResult(songs_deleted=len(songs), albums_deleted=1), locators

        return await self._run("album", album_id, user_id, plan)

    async def delete_artist(self, artist_id: int, user_id: int, is_admin: bool = False) -> DeletionResult:
        async def plan(db: AsyncSession):
            artist = await db.get(Artist, artist_id)
            if artist is None:
                raise NotFound("Artist not found")

            albums = list((await db.execute(select(Album).where(Album.artist_id == artist_id))).scalars())
            album_ids = [a.id for a in albums]
            songs = list((await db.execute(
                select(Song).where(or_(Song.artist_id == artist_id, Song.album_id.in_(album_ids)))
            )).scalars())
            if not is_admin and not any(s.uploaded_by == user_id for s in songs):
                raise Unauthorized("You can only delete artists with songs you uploaded")

            locators = self._song_locators(songs)
            locators += [a.cover_art_url for a in albums]
            locators.append(artist.image_url)

            await self._delete_songs(db, [s.id for s in songs])
            await db.execute(_no_sync(delete(Album).where(Album.artist_id == artist_id)))
            await db.execute(_no_sync(delete(Artist).where(Artist.id == artist_id)))
            return DeletionResult(songs_deleted=len(songs), albums_deleted=len(albums)), locators

        return await self._run("artist", artist_id, user_id, plan)

    async def cleanup_orphans(self, db: AsyncSession) -> tuple[int, int]:
        """Delete albums and artists no song references. Returns (albums, artists)."""
        albums = await db.execute(_no_sync(
            delete(Album).where(
                Album.id.not_in(select(Song.album_id).where(Song.album_id.is_not(None)).distinct())
            )
        ))
        artists = await db.execute(_no_sync(
            delete(Artist).where(
                Artist.id.not_in(select(Song.artist_id).where(Song.artist_id.is_not(None)).distinct()),
                Artist.id.not_in(select(Album.artist_id).where(Album.artist_id.is_not(None)).distinct()),
            )
        ))
        return albums.rowcount or 0, artists.rowcount or 0

    # ── Transaction driver ───────────────────────────────

    async def _run(self, kind: str, target_id: int, user_id: int, plan: Plan) -> DeletionResult:
        async with self.session_factory() as db:
            try:
                result, locators = await plan(db)
                orphan_albums, orphan_artists = await self.cleanup_orphans(db)
                keys = await self._releasable_keys(db, locators)
                await db.commit()
            except MusicLibError as e:
                await db.rollback()
                logger.warning("%s deletion %s by user %s refused: %s", kind.capitalize(), target_id, user_id, e.message)
                raise
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("%s deletion %s by user %s failed: %s", kind.capitalize(), target_id, user_id, e)
                raise CatalogFailure(f"Failed to delete {kind}") from e
            except Exception:
                await db.rollback()
                raise

        # Connection is back in the pool; storage cleanup is best-effort from here
        result.deleted_files = len(keys)
        await self._delete_blobs(keys)

        logger.info(
            "%s %s deleted by user %s: %d songs, %d albums, %d files, orphans swept %d albums / %d artists",
            kind.capitalize(), target_id, user_id, result.songs_deleted, result.albums_deleted,
            result.deleted_files, orphan_albums, orphan_artists,
        )
        return result

    # ── Helpers ──────────────────────────────────────────

    @staticmethod
    def _song_locators(songs: list[Song]) -> list[str | None]:
        locators: list[str | None] = []
        for song in songs:
            locators.append(song.file_path)
            locators.append(song.cover_art_url)
        return locators

    async def _delete_songs(self, db: AsyncSession, song_ids: list[int]) -> None:
        """Remove songs and the rows that depend on them, children first."""
        if not song_ids:
            return
        await db.execute(_no_sync(delete(SongListen).where(SongListen.song_id.in_(song_ids))))
        await db.execute(_no_sync(delete(PlaylistSong).where(PlaylistSong.song_id.in_(song_ids))))
        await db.execute(_no_sync(delete(Song).where(Song.id.in_(song_ids))))

    async def _releasable_keys(self, db: AsyncSession, locators: list[str | None]) -> list[str]:
        """Storage keys of the given locators that no surviving row still points at."""
        candidates = list(dict.fromkeys(loc for loc in locators if loc))
        if not candidates:
            return []

        still_used: set[str] = set()
        for column in (Song.file_path, Song.cover_art_url, Album.cover_art_url, Artist.image_url, User.avatar_url):
            rows = await db.execute(select(column).where(column.in_(candidates)))
            still_used.update(value for value in rows.scalars() if value)

        keys = []
        for locator in candidates:
            if locator in still_used:
                continue
            key = self.storage.key_from_locator(locator)
            if key and key not in keys:
                keys.append(key)
        return keys

    async def _delete_blobs(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            await self.storage.delete_files(keys)
            logger.info("Deleted %d storage objects", len(keys))
        except Exception as e:
            logger.error("Storage cleanup failed for %d objects %s: %s", len(keys), keys, e)
