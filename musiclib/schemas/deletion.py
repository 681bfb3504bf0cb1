"""Deletion response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class SongDeletionResponse(BaseModel):
    success: bool = True
    deleted_files: int = Field(alias="deletedFiles")

    model_config = ConfigDict(populate_by_name=True)


class AlbumDeletionResponse(BaseModel):
    success: bool = True
    songs_deleted: int = Field(alias="songsDeleted")
    deleted_files: int = Field(alias="deletedFiles")

    model_config = ConfigDict(populate_by_name=True)


class ArtistDeletionResponse(BaseModel):
    success: bool = True
    songs_deleted: int = Field(alias="songsDeleted")
    albums_deleted: int = Field(alias="albumsDeleted")
    deleted_files: int = Field(alias="deletedFiles")

    model_config = ConfigDict(populate_by_name=True)
