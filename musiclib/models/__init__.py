from musiclib.models.user import User
from musiclib.models.artist import Artist
from musiclib.models.album import Album
from musiclib.models.song import Song, SongListen
from musiclib.models.playlist import Playlist, PlaylistSong

__all__ = ["User", "Artist", "Album", "Song", "SongListen", "Playlist", "PlaylistSong"]
