"""
Real-time event channel.

Clients connect to /ws?token=<access token> and exchange JSON messages:
requests look like {"event": "upload:chunk", "data": {...}} and every request
gets exactly one reply {"event": <same>, "success": bool, ...}.
"""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from musiclib.dependencies import (
    AuthError,
    authenticate_token,
    build_deletion_service,
    build_image_upload_service,
)
from musiclib.exceptions import MusicLibError
from musiclib.models.user import User
from musiclib.schemas.common import EventMessage
from musiclib.schemas.upload import ChunkRequest, UploadControlRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


class _SongRef(BaseModel):
    song_id: int = Field(alias="songId")
    model_config = ConfigDict(populate_by_name=True)


class _AlbumRef(BaseModel):
    album_id: int = Field(alias="albumId")
    model_config = ConfigDict(populate_by_name=True)


class _ArtistRef(BaseModel):
    artist_id: int = Field(alias="artistId")
    model_config = ConfigDict(populate_by_name=True)


class EventDispatcher:
    """Routes event-channel requests for one authenticated connection."""

    def __init__(self, app_state, user: User):
        self.state = app_state
        self.user = user
        self.handlers = {
            "upload:chunk": self.upload_chunk,
            "upload:control": self.upload_control,
            "song:delete": self.delete_song,
            "album:delete": self.delete_album,
            "artist:delete": self.delete_artist,
        }

    async def handle(self, raw: str) -> dict:
        try:
            message = EventMessage.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            return {"event": "error", "success": False, "code": "INVALID_REQUEST", "message": f"Malformed message: {e}"}

        handler = self.handlers.get(message.event)
        if handler is None:
            return self._error(message.event, "UNKNOWN_EVENT", f"Unknown event: {message.event}")

        try:
            payload = await handler(message.data)
        except ValidationError as e:
            return self._error(message.event, "INVALID_REQUEST", str(e))
        except MusicLibError as e:
            return self._error(message.event, e.code, e.message)
        except Exception:
            logger.exception("Event %s failed for user %s", message.event, self.user.id)
            return self._error(message.event, "INTERNAL_ERROR", "Internal server error")
        return {"event": message.event, "success": True, **payload}

    @staticmethod
    def _error(event: str, code: str, message: str) -> dict:
        return {"event": event, "success": False, "code": code, "message": message}

    # ── Uploads ──────────────────────────────────────────

    async def upload_chunk(self, data: dict) -> dict:
        req = ChunkRequest.model_validate(data)
        service = build_image_upload_service(self.state)
        completed = await service.submit_chunk(
            upload_id=req.upload_id,
            chunk_index=req.chunk_index,
            total_chunks=req.total_chunks,
            payload=req.chunk,
            filename=req.filename,
            mime_type=req.mime_type,
            user_id=self.user.id,
            role=req.role,
            target_id=req.target_id,
        )
        if completed is None:
            return {"uploadId": req.upload_id, "done": False, "progress": service.progress(req.upload_id)}
        return {"uploadId": req.upload_id, "done": True, "progress": 100.0, "url": completed.url, "key": completed.key}

    async def upload_control(self, data: dict) -> dict:
        req = UploadControlRequest.model_validate(data)
        cancelled = build_image_upload_service(self.state).cancel(req.upload_id, self.user.id)
        return {"uploadId": req.upload_id, "cancelled": cancelled}

    # ── Deletion ─────────────────────────────────────────

    async def delete_song(self, data: dict) -> dict:
        ref = _SongRef.model_validate(data)
        result = await build_deletion_service(self.state).delete_song(ref.song_id, self.user.id, self.user.is_admin)
        return {"deletedFiles": result.deleted_files}

    async def delete_album(self, data: dict) -> dict:
        ref = _AlbumRef.model_validate(data)
        result = await build_deletion_service(self.state).delete_album(ref.album_id, self.user.id, self.user.is_admin)
        return {"songsDeleted": result.songs_deleted, "deletedFiles": result.deleted_files}

    async def delete_artist(self, data: dict) -> dict:
        ref = _ArtistRef.model_validate(data)
        result = await build_deletion_service(self.state).delete_artist(ref.artist_id, self.user.id, self.user.is_admin)
        return {
            "songsDeleted": result.songs_deleted,
            "albumsDeleted": result.albums_deleted,
            "deletedFiles": result.deleted_files,
        }


@router.websocket("/ws")
async def event_channel(websocket: WebSocket, token: str | None = Query(None)):
    state = websocket.app.state
    try:
        if not token:
            raise AuthError("Authentication required")
        user = await authenticate_token(token, state.session_factory)
    except AuthError as e:
        logger.info("Rejected event channel connection: %s", e)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    dispatcher = EventDispatcher(state, user)
    try:
        while True:
            raw = await websocket.receive_text()
            await websocket.send_json(await dispatcher.handle(raw))
    except WebSocketDisconnect:
        logger.debug("Event channel closed for user %s", user.id)
