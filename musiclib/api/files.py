"""Serves blobs from local storage behind signed, expiring tokens."""

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import FileResponse

from musiclib.exceptions import StorageFailure
from musiclib.utils.security import verify_file_token
from musiclib.utils.storage import LocalStorage

router = APIRouter(tags=["files"])


@router.get("/files/{key:path}")
async def serve_file(key: str, request: Request, token: str = Query(...)):
    storage = request.app.state.storage
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not verify_file_token(token, key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")

    try:
        path = storage.path_for(key)
    except StorageFailure:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(path)
