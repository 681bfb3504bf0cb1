"""
Chunked image uploads over the event channel.

Chunks are buffered in the session registry; once every index has arrived
the session is assembled, removed from the registry and handed to the
finalizer, which stores the bytes under a content-addressed key.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.exceptions import CatalogFailure, InvalidSession
from musiclib.models.artist import Artist
from musiclib.models.user import User
from musiclib.utils.chunks import UploadRole, UploadSession
from musiclib.utils.files import content_hash, content_key, file_extension, sniff_image
from musiclib.utils.sessions import UploadSessionRegistry
from musiclib.utils.storage import StorageProvider
from musiclib.utils.url_cache import UrlCache

logger = logging.getLogger(__name__)


@dataclass
class CompletedUpload:
    upload_id: str
    role: UploadRole
    key: str
    locator: str
    url: str
    size: int
    sha256: str


class ImageUploadService:
    def __init__(
        self,
        registry: UploadSessionRegistry,
        storage: StorageProvider,
        url_cache: UrlCache,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.registry = registry
        self.storage = storage
        self.url_cache = url_cache
        self.session_factory = session_factory

    async def submit_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        payload: str,
        filename: str,
        mime_type: str,
        user_id: int,
        role: UploadRole = UploadRole.ALBUM,
        target_id: int | None = None,
    ) -> CompletedUpload | None:
        """Buffer one chunk. Returns the stored upload once the last chunk lands, else None."""
        if total_chunks < 1 or not 0 <= chunk_index < total_chunks:
            raise InvalidSession(f"Chunk index {chunk_index} out of range for {total_chunks} chunks")

        session = self.registry.get(upload_id)
        if session is None:
            if chunk_index != 0:
                raise InvalidSession("Upload session not found")
            session = UploadSession(
                upload_id=upload_id,
                user_id=user_id,
                total_chunks=total_chunks,
                filename=filename,
                mime_type=mime_type,
                role=role,
                created_at=self.registry.clock(),
            )
            self.registry.add(session)
        elif session.user_id != user_id:
            raise InvalidSession("Upload session belongs to another user")
        elif session.total_chunks != total_chunks:
            raise InvalidSession(f"totalChunks changed from {session.total_chunks} to {total_chunks}")

        session.add_chunk(chunk_index, payload)
        if not session.is_complete:
            return None

        # Assemble and drop the session before any I/O so it finalizes once
        try:
            data = session.assemble()
        finally:
            self.registry.discard(upload_id)
        return await self._finalize(session, data, target_id)

    def progress(self, upload_id: str) -> float | None:
        session = self.registry.get(upload_id)
        return session.progress if session else None

    def cancel(self, upload_id: str, user_id: int) -> bool:
        """Drop an in-flight session. Nothing is written to storage."""
        session = self.registry.get(upload_id)
        if session is None:
            return False
        if session.user_id != user_id:
            raise InvalidSession("Upload session belongs to another user")
        self.registry.discard(upload_id)
        logger.info("Upload %s cancelled by user %s", upload_id, user_id)
        return True

    async def upload_image(self, data: bytes, filename: str, mime_type: str | None, role: UploadRole) -> CompletedUpload:
        """Single-shot image upload (HTTP multipart)."""
        session = UploadSession(
            upload_id=f"http_{content_hash(data)[:16]}",
            user_id=0,
            total_chunks=1,
            filename=filename,
            mime_type=mime_type or "",
            role=role,
            created_at=self.registry.clock(),
        )
        return await self._finalize(session, data, None)

    async def _finalize(self, session: UploadSession, data: bytes, target_id: int | None) -> CompletedUpload:
        if session.mime_type.startswith("image/"):
            ext = file_extension(session.filename, session.mime_type, default="jpg")
            mime = session.mime_type
        else:
            ext, mime = sniff_image(data)

        key = content_key(session.role.folder, data, ext)
        locator = await self.storage.upload_file(data, key, mime)
        url = await self.url_cache.get_url(locator)

        if session.user_id and self.session_factory is not None:
            await self._attach(session, locator, target_id)

        logger.info("Finalized %s upload %s as %s (%d bytes)", session.role.value, session.upload_id, key, len(data))
        return CompletedUpload(
            upload_id=session.upload_id,
            role=session.role,
            key=key,
            locator=locator,
            url=url,
            size=len(data),
            sha256=content_hash(data),
        )

    async def _attach(self, session: UploadSession, locator: str, target_id: int | None) -> None:
        """Record avatar / artist image locators on their owning rows."""
        if session.role == UploadRole.AVATAR:
            stmt = update(User).where(User.id == session.user_id).values(avatar_url=locator)
        elif session.role == UploadRole.ARTIST and target_id is not None:
            stmt = (
                update(Artist)
                .where(Artist.id == target_id, Artist.created_by == session.user_id)
                .values(image_url=locator)
            )
        else:
            return

        async with self.session_factory() as db:
            try:
                await db.execute(stmt)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise CatalogFailure(f"Failed to record {session.role.value} image: {e}") from e
