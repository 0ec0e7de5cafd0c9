"""Upload status schema."""

from __future__ import annotations

from pydantic import BaseModel, Field


class UploadStatusResponse(BaseModel):
    """Current state of the long-running operation."""

    status: str
    message: str = ""
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
