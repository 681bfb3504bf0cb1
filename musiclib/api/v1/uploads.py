"""Upload API routes — song batches over multipart, single images, batch progress."""

import json

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import ValidationError
from starlette.responses import StreamingResponse

from musiclib.config import settings
from musiclib.dependencies import get_current_user, get_image_upload_service, get_upload_service
from musiclib.models.user import User
from musiclib.schemas.upload import (
    BatchUploadResponse,
    ImageUploadResponse,
    SongMetadata,
    UploadInitRequest,
    UploadInitResponse,
)
from musiclib.services.image_upload_service import ImageUploadService
from musiclib.services.upload_service import SongFile, UploadService
from musiclib.utils.chunks import UploadRole

router = APIRouter(prefix="/upload", tags=["uploads"])


@router.post("/init", response_model=UploadInitResponse, status_code=status.HTTP_201_CREATED)
async def init_upload(
    payload: UploadInitRequest,
    user: User = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    upload_id = await service.init_upload(payload.file_count, payload.total_size, user.id, user.username)
    return UploadInitResponse(upload_id=upload_id)


@router.post("/songs", response_model=BatchUploadResponse)
async def upload_songs(
    files: list[UploadFile] = File(...),
    metadata: str = Form("[]"),
    upload_id: str | None = Form(None, alias="uploadId"),
    user: User = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    """Upload a batch of songs. Always 200; inspect summary.failed for partial failure."""
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files uploaded")
    if len(files) > settings.MAX_FILES_PER_UPLOAD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files. Max is {settings.MAX_FILES_PER_UPLOAD}.",
        )

    try:
        raw = json.loads(metadata or "[]")
        if not isinstance(raw, list):
            raise ValueError("metadata must be a JSON array")
        file_meta = [SongMetadata.model_validate(item or {}) for item in raw]
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid metadata: {e}")

    if not upload_id:
        total_size = sum(f.size or 0 for f in files)
        upload_id = await service.init_upload(len(files), total_size, user.id, user.username)

    songs: list[SongFile] = []
    for i, f in enumerate(files):
        songs.append(SongFile(filename=f.filename or f"file_{i}", content_type=f.content_type or "", data=await f.read()))

    return await service.process_batch(songs, file_meta, user.id, upload_id=upload_id)


@router.get("/{upload_id}/status")
async def upload_status(
    upload_id: str,
    request: Request,
    user: User = Depends(get_current_user),
):
    upload = await request.app.state.progress.get(upload_id)
    if upload is None or upload.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload not found")
    return upload.to_dict()


@router.get("/{upload_id}/progress")
async def stream_upload_progress(
    upload_id: str,
    request: Request,
    user: User = Depends(get_current_user),
):
    """SSE stream of progress updates for a song batch."""
    upload = await request.app.state.progress.get(upload_id)
    if upload is not None and upload.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload not found")
    return StreamingResponse(
        request.app.state.progress.subscribe(upload_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/image", response_model=ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    role: UploadRole = Form(UploadRole.ALBUM),
    user: User = Depends(get_current_user),
    service: ImageUploadService = Depends(get_image_upload_service),
):
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only image files are allowed")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    completed = await service.upload_image(data, file.filename or "image", file.content_type, role)
    return ImageUploadResponse(key=completed.key, locator=completed.locator, url=completed.url)
