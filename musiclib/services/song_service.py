"""Song service — artist/album resolution used when songs are created."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musiclib.models.album import Album
from musiclib.models.artist import Artist


class SongService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_or_create_artist(self, name: str | None, user_id: int) -> Artist:
        """Artists are looked up per uploading user, never globally."""
        name = (name or "").strip() or "Unknown Artist"
        result = await self.db.execute(
            select(Artist).where(Artist.name == name, Artist.created_by == user_id)
        )
        artist = result.scalars().first()
        if artist:
            return artist

        artist = Artist(name=name, created_by=user_id)
        self.db.add(artist)
        await self.db.flush()
        return artist

    async def find_or_create_album(
        self,
        title: str | None,
        artist_id: int,
        user_id: int,
        release_year: int | None = None,
    ) -> Album:
        title = (title or "").strip() or "Unknown Album"
        result = await self.db.execute(
            select(Album).where(
                Album.title == title,
                Album.artist_id == artist_id,
                Album.created_by == user_id,
            )
        )
        album = result.scalars().first()
        if album:
            return album

        album = Album(title=title, artist_id=artist_id, release_year=release_year, created_by=user_id)
        self.db.add(album)
        await self.db.flush()
        return album
