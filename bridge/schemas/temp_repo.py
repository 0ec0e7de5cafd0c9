"""Staging repository schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bridge.schemas.project import RepoName


class TempRepoImportRequest(BaseModel):
    """Request to stage a private repository publicly."""

    source_repo_name: RepoName


class TempRepoImportResponse(BaseModel):
    """Outcome of a staging import."""

    success: bool
    message: str
    temp_repo_id: int | None = None
    temp_repo_name: str | None = None
    import_url: str | None = None
    files_copied: int = Field(default=0, ge=0)
    files_skipped: int = Field(default=0, ge=0)


class TempRepoResponse(BaseModel):
    """A staging repository awaiting deletion."""

    model_config = ConfigDict(from_attributes=True)

    temp_repo_id: int
    original_repo_name: str
    temp_repo_name: str
    owner: str
    created_at: str
    expired: bool = False


class CleanupResponse(BaseModel):
    """Outcome of a cleanup sweep."""

    deleted: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    remaining: list[str] = Field(default_factory=list)
