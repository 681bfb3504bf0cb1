"""
Chunk assembly for base64 uploads sent over the event channel.

Pure buffering and index bookkeeping: nothing in here touches storage.
Chunks are addressed by index, so arrival order does not matter.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import Enum

from musiclib.exceptions import InvalidSession, UploadCorrupted

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)
_NON_BASE64 = re.compile(r"[^A-Za-z0-9+/=]")


class UploadRole(str, Enum):
    """What an image upload is for; decides the storage folder."""

    AVATAR = "avatar"
    ARTIST = "artist"
    ALBUM = "album"
    SONG = "song"

    @property
    def folder(self) -> str:
        return _ROLE_FOLDERS[self]


_ROLE_FOLDERS = {
    UploadRole.AVATAR: "profiles",
    UploadRole.ARTIST: "artist_images",
    UploadRole.ALBUM: "album_art",
    UploadRole.SONG: "song_art",
}


def clean_chunk(payload: str) -> str:
    """Strip a data-URL prefix and any transport noise from a base64 chunk."""
    payload = _DATA_URL_PREFIX.sub("", payload.strip(), count=1)
    return _NON_BASE64.sub("", payload)


@dataclass
class UploadSession:
    upload_id: str
    user_id: int
    total_chunks: int
    filename: str
    mime_type: str
    role: UploadRole
    created_at: float
    chunks: dict[int, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.total_chunks < 1:
            raise InvalidSession("totalChunks must be at least 1")

    @property
    def received_count(self) -> int:
        return len(self.chunks)

    @property
    def is_complete(self) -> bool:
        return self.received_count == self.total_chunks

    @property
    def progress(self) -> float:
        return round(self.received_count / self.total_chunks * 100, 1)

    def add_chunk(self, index: int, payload: str) -> bool:
        """Buffer a chunk. Returns False when the index was already filled."""
        if not 0 <= index < self.total_chunks:
            raise InvalidSession(f"Chunk index {index} out of range (0..{self.total_chunks - 1})")
        if index in self.chunks:
            return False
        self.chunks[index] = clean_chunk(payload)
        return True

    def missing_indices(self) -> list[int]:
        return [i for i in range(self.total_chunks) if i not in self.chunks]

    def assemble(self) -> bytes:
        """Join every chunk in index order and decode the result as one unit.

        Base64 groups may straddle chunk boundaries, so chunks are never
        decoded individually.
        """
        missing = self.missing_indices()
        if missing:
            raise UploadCorrupted(f"Upload {self.upload_id} is missing chunks {missing}")
        joined = "".join(self.chunks[i] for i in range(self.total_chunks))
        try:
            data = base64.b64decode(joined, validate=True)
        except (binascii.Error, ValueError) as e:
            raise UploadCorrupted(f"Upload {self.upload_id} is not valid base64: {e}") from e
        if not data:
            raise UploadCorrupted(f"Upload {self.upload_id} decoded to zero bytes")
        return data

    def release(self) -> None:
        """Drop buffered chunk data."""
        self.chunks.clear()
