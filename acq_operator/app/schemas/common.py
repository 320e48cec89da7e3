"""Shared response envelopes."""
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """HTTPException body for malformed input and auth failures."""

    detail: str = Field(..., description="Error message")


class FailureResponse(BaseModel):
    """Pipeline failure returned with HTTP 200."""

    success: Literal[False] = False
    error: str
    details: Optional[str] = None
