"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(request: Request):
    state = request.app.state
    return {
        "status": "ok",
        "storage": type(state.storage).__name__,
        "upload_sessions": len(state.registry),
        "cached_urls": len(state.url_cache),
    }
