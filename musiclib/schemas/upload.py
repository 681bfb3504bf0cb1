"""Upload request/response schemas."""

from pydantic import BaseModel, ConfigDict, Field

from musiclib.utils.chunks import UploadRole


class SongMetadata(BaseModel):
    """Client-declared tags for one uploaded song."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    year: int | None = None
    genre: str | None = None
    track_number: int | None = Field(default=None, alias="trackNumber")
    duration: float | None = None
    # base64 (or data URL) encoded cover image
    artwork: str | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UploadInitRequest(BaseModel):
    file_count: int = Field(alias="fileCount", ge=1)
    total_size: int = Field(alias="totalSize", ge=0)

    model_config = ConfigDict(populate_by_name=True)


class UploadInitResponse(BaseModel):
    upload_id: str = Field(alias="uploadId")

    model_config = ConfigDict(populate_by_name=True)


class FileResult(BaseModel):
    filename: str
    success: bool
    song_id: int | None = Field(default=None, alias="songId")
    error: str | None = None
    code: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class BatchSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BatchUploadResponse(BaseModel):
    success: bool = True
    upload_id: str | None = Field(default=None, alias="uploadId")
    results: list[FileResult]
    summary: BatchSummary

    model_config = ConfigDict(populate_by_name=True)


class ChunkRequest(BaseModel):
    upload_id: str = Field(alias="uploadId", min_length=1, max_length=200)
    chunk_index: int = Field(alias="chunkIndex", ge=0)
    total_chunks: int = Field(alias="totalChunks", ge=1)
    chunk: str
    filename: str = "image"
    mime_type: str = Field(default="image/jpeg", alias="mimeType")
    role: UploadRole = UploadRole.ALBUM
    target_id: int | None = Field(default=None, alias="targetId")

    model_config = ConfigDict(populate_by_name=True)


class UploadControlRequest(BaseModel):
    upload_id: str = Field(alias="uploadId", min_length=1)
    action: str = Field(pattern="^cancel$")

    model_config = ConfigDict(populate_by_name=True)


class ImageUploadResponse(BaseModel):
    key: str
    locator: str
    url: str
