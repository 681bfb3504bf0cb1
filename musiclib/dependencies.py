"""FastAPI dependency injection — get_current_user, service factories."""

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.models.user import User
from musiclib.services.deletion_service import DeletionService
from musiclib.services.image_upload_service import ImageUploadService
from musiclib.services.upload_service import UploadService
from musiclib.utils.security import decode_token

security_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    pass


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def authenticate_token(token: str, session_factory: async_sessionmaker[AsyncSession]) -> User:
    """Validate an access token and load its user. Raises AuthError."""
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.PyJWTError:
        raise AuthError("Invalid token")

    if payload.get("type") != "access":
        raise AuthError("Invalid token type")

    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise AuthError("Invalid token subject")

    async with session_factory() as session:
        user = await session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthError("User not found or inactive")
    return user


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
) -> User:
    """Extract and validate JWT, return the authenticated User."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return await authenticate_token(credentials.credentials, get_session_factory(request))
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


def build_upload_service(app_state) -> UploadService:
    return UploadService(app_state.session_factory, app_state.storage, app_state.progress)


def build_image_upload_service(app_state) -> ImageUploadService:
    return ImageUploadService(app_state.registry, app_state.storage, app_state.url_cache, app_state.session_factory)


def build_deletion_service(app_state) -> DeletionService:
    return DeletionService(app_state.session_factory, app_state.storage)


def get_upload_service(request: Request) -> UploadService:
    return build_upload_service(request.app.state)


def get_image_upload_service(request: Request) -> ImageUploadService:
    return build_image_upload_service(request.app.state)


def get_deletion_service(request: Request) -> DeletionService:
    return build_deletion_service(request.app.state)
