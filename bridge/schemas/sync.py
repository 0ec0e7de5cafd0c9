"""Archive upload schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FileActionResponse(BaseModel):
    """One file included in the upload commit."""

    action: str
    path: str


class SyncResponse(BaseModel):
    """Result of a completed upload."""

    status: str
    message: str
    files_written: int = Field(default=0, ge=0)
    commit_id: str | None = None
    branch: str
    repo_name: str
    actions: list[FileActionResponse] = Field(default_factory=list)
