"""Upload service — content-addressed song uploads and catalog insertion."""

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.config import settings
from musiclib.exceptions import (
    CatalogFailure,
    DuplicateFile,
    InvalidFile,
    MusicLibError,
    NotFound,
    UploadCorrupted,
)
from musiclib.models.song import Song
from musiclib.schemas.upload import BatchSummary, BatchUploadResponse, FileResult, SongMetadata
from musiclib.services.song_service import SongService
from musiclib.utils.chunks import UploadRole, clean_chunk
from musiclib.utils.files import content_key, file_extension, sniff_image
from musiclib.utils.progress import ActiveUpload, ProgressManager
from musiclib.utils.storage import StorageProvider

logger = logging.getLogger(__name__)


ALLOWED_AUDIO_MIME = {
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/x-wav", "audio/flac", "audio/x-flac",
    "audio/mp4", "audio/x-m4a", "audio/aac", "audio/ogg",
}
ALLOWED_AUDIO_EXT = {"mp3", "wav", "flac", "m4a", "aac", "ogg", "wma"}


@dataclass
class SongFile:
    filename: str
    content_type: str
    data: bytes


def is_audio_file(filename: str, content_type: str | None) -> bool:
    return (content_type or "") in ALLOWED_AUDIO_MIME or file_extension(filename, default="") in ALLOWED_AUDIO_EXT


class UploadService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: StorageProvider,
        progress: ProgressManager | None = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.progress = progress

    # ── Batch bookkeeping ────────────────────────────────

    async def init_upload(self, file_count: int, total_size: int, user_id: int, username: str) -> str:
        """Register a song batch for status reporting and return its id."""
        if file_count > settings.MAX_FILES_PER_UPLOAD:
            raise InvalidFile(f"Too many files ({file_count}). Max is {settings.MAX_FILES_PER_UPLOAD}.")
        max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024 * file_count
        if total_size > max_bytes:
            raise InvalidFile(f"Upload too large ({total_size} bytes)")

        upload_id = f"upload_{uuid.uuid4().hex}"
        if self.progress is not None:
            await self.progress.register(ActiveUpload(
                upload_id=upload_id,
                user_id=user_id,
                username=username,
                total_files=file_count,
                total_size=total_size,
            ))
        return upload_id

    # ── Single file ──────────────────────────────────────

    async def process_file(self, file: SongFile, metadata: SongMetadata, user_id: int) -> int:
        """Store one song file and create its catalog row. Returns the song id."""
        if not is_audio_file(file.filename, file.content_type):
            raise InvalidFile(f"Only audio files are allowed: {file.filename}")
        if not file.data:
            raise InvalidFile(f"Empty file: {file.filename}")
        if len(file.data) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            raise InvalidFile(f"File too large. Max is {settings.MAX_UPLOAD_SIZE_MB} MB.")
        artwork = self._decode_artwork(metadata.artwork)

        ext = file_extension(file.filename, file.content_type, default="mp3")
        key = content_key("songs", file.data, ext)
        locator = await self.storage.upload_file(file.data, key, file.content_type or "application/octet-stream")
        cover_art_url = await self.upload_artwork(artwork, UploadRole.SONG) if artwork else None

        async with self.session_factory() as db:
            try:
                existing = await db.execute(select(Song.id).where(Song.file_path == locator))
                if existing.first() is not None:
                    raise DuplicateFile(f"File already exists: {file.filename}")

                song_id = await self._create_song(db, metadata, locator, cover_art_url, user_id)
                await db.commit()
            except IntegrityError as e:
                # Lost a race with a concurrent upload of the same bytes
                await db.rollback()
                raise DuplicateFile(f"File already exists: {file.filename}") from e
            except SQLAlchemyError as e:
                await db.rollback()
                raise CatalogFailure(f"Failed to save song: {e}") from e
            except Exception:
                await db.rollback()
                raise

        logger.info("Stored song %s as %s for user %s", song_id, key, user_id)
        return song_id

    async def _create_song(
        self,
        db: AsyncSession,
        metadata: SongMetadata,
        locator: str,
        cover_art_url: str | None,
        user_id: int,
    ) -> int:
        songs = SongService(db)

        artist_id = None
        album = None
        if metadata.artist:
            artist = await songs.find_or_create_artist(metadata.artist, user_id)
            artist_id = artist.id
            if metadata.album:
                album = await songs.find_or_create_album(metadata.album, artist_id, user_id, metadata.year)

        if cover_art_url and album is not None and not album.cover_art_url:
            album.cover_art_url = cover_art_url

        song = Song(
            title=metadata.title or "Unknown Title",
            artist_id=artist_id,
            album_id=album.id if album is not None else None,
            genre=metadata.genre,
            track_number=metadata.track_number,
            duration=metadata.duration,
            file_path=locator,
            cover_art_url=cover_art_url,
            uploaded_by=user_id,
        )
        db.add(song)
        await db.flush()
        return song.id

    @staticmethod
    def _decode_artwork(artwork: str | None) -> bytes | None:
        if not artwork:
            return None
        try:
            data = base64.b64decode(clean_chunk(artwork), validate=True)
        except (binascii.Error, ValueError) as e:
            raise UploadCorrupted(f"Artwork is not valid base64: {e}") from e
        return data or None

    async def upload_artwork(self, data: bytes, role: UploadRole = UploadRole.ALBUM) -> str:
        """Store image bytes in the role's folder and return the locator."""
        ext, mime = sniff_image(data)
        return await self.storage.upload_file(data, content_key(role.folder, data, ext), mime)

    # ── Batch ────────────────────────────────────────────

    async def process_batch(
        self,
        files: list[SongFile],
        metadata: list[SongMetadata],
        user_id: int,
        upload_id: str | None = None,
    ) -> BatchUploadResponse:
        """Process every file independently; one failure never aborts the rest."""
        if upload_id and self.progress is not None:
            tracked = await self.progress.get(upload_id)
            if tracked is not None and tracked.user_id != user_id:
                raise NotFound("Upload not found")

        results: list[FileResult] = []
        try:
            for i, file in enumerate(files):
                await self._report(upload_id, current_file=file.filename, processed_files=i, status="uploading")
                file_meta = metadata[i] if i < len(metadata) else SongMetadata()
                try:
                    song_id = await self.process_file(file, file_meta, user_id)
                    results.append(FileResult(filename=file.filename, success=True, song_id=song_id))
                except MusicLibError as e:
                    logger.warning("Upload of %s failed: %s", file.filename, e.message)
                    results.append(FileResult(filename=file.filename, success=False, error=e.message, code=e.code))
                except Exception as e:
                    logger.exception("Unexpected error processing %s", file.filename)
                    results.append(FileResult(filename=file.filename, success=False, error=str(e), code="INTERNAL_ERROR"))
        finally:
            if upload_id and self.progress is not None:
                await self.progress.complete(upload_id)

        successful = sum(1 for r in results if r.success)
        return BatchUploadResponse(
            upload_id=upload_id,
            results=results,
            summary=BatchSummary(total=len(results), successful=successful, failed=len(results) - successful),
        )

    async def _report(self, upload_id: str | None, **changes) -> None:
        if upload_id and self.progress is not None:
            await self.progress.update(upload_id, **changes)
