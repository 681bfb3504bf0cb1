"""Shared Pydantic schemas."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None


class EventMessage(BaseModel):
    """Envelope of one request on the event channel."""

    event: str
    data: dict = {}
