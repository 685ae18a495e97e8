"""Pydantic schemas for request/response validation."""
from pydantic import BaseModel


class RecordResponse(BaseModel):
    """Outcome of posting a change event."""
    recorded: bool
    queued: bool = False


class ErrorResponse(BaseModel):
    """Response when an event is rejected or cannot be stored."""
    message: str

