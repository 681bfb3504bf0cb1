"""Catalog deletion routes — songs, albums, artists."""

from fastapi import APIRouter, Depends

from musiclib.dependencies import get_current_user, get_deletion_service
from musiclib.models.user import User
from musiclib.schemas.deletion import AlbumDeletionResponse, ArtistDeletionResponse, SongDeletionResponse
from musiclib.services.deletion_service import DeletionService

router = APIRouter(tags=["library"])


@router.delete("/songs/{song_id}", response_model=SongDeletionResponse)
async def delete_song(
    song_id: int,
    user: User = Depends(get_current_user),
    service: DeletionService = Depends(get_deletion_service),
):
    result = await service.delete_song(song_id, user.id, user.is_admin)
    return SongDeletionResponse(deleted_files=result.deleted_files)


@router.delete("/albums/{album_id}", response_model=AlbumDeletionResponse)
async def delete_album(
    album_id: int,
    user: User = Depends(get_current_user),
    service: DeletionService = Depends(get_deletion_service),
):
    result = await service.delete_album(album_id, user.id, user.is_admin)
    return AlbumDeletionResponse(songs_deleted=result.songs_deleted, deleted_files=result.deleted_files)


@router.delete("/artists/{artist_id}", response_model=ArtistDeletionResponse)
async def delete_artist(
    artist_id: int,
    user: User = Depends(get_current_user),
    service: DeletionService = Depends(get_deletion_service),
):
    result = await service.delete_artist(artist_id, user.id, user.is_admin)
    return ArtistDeletionResponse(
        songs_deleted=result.songs_deleted,
        albums_deleted=result.albums_deleted,
        deleted_files=result.deleted_files,
    )
