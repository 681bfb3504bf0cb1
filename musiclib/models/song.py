"""Song and song-listen ORM models."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from musiclib.db.base import Base


class Song(Base):
    __tablename__ = "songs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown Title")
    artist_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("artists.id"), nullable=True, index=True)
    album_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("albums.id"), nullable=True, index=True)
    genre: Mapped[str | None] = mapped_column(String(100), nullable=True)
    track_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Locator of the audio blob; content-addressed, so unique per distinct file
    file_path: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    cover_art_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    uploaded_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class SongListen(Base):
    __tablename__ = "song_listens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    song_id: Mapped[int] = mapped_column(Integer, ForeignKey("songs.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    listened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
