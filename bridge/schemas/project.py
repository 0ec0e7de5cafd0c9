"""Per-project repository mapping schemas."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

# GitLab project names: letters, digits, underscores, dots, dashes and spaces,
# starting with a letter, digit or underscore.
REPO_NAME_PATTERN = r"^[A-Za-z0-9_][A-Za-z0-9_.\- ]*$"

RepoName = Annotated[str, Field(min_length=1, max_length=255, pattern=REPO_NAME_PATTERN)]
ProjectIdRef = Annotated[str, Field(min_length=1, max_length=255)]


class ProjectSettingUpdate(BaseModel):
    """Request to link a local project to a GitLab repository."""

    repo_name: RepoName
    branch: str = Field(default="main", min_length=1, max_length=255)
    repo_id: int | None = Field(default=None, ge=1)

    @field_validator("branch")
    @classmethod
    def branch_must_be_valid_ref(cls, v: str) -> str:
        """Reject branch names Git would refuse."""
        _ = cls
        stripped = v.strip()
        if not stripped or " " in stripped or ".." in stripped or stripped.startswith("-"):
            raise ValueError(f"Invalid branch name: {v!r}")
        return stripped


class ProjectSettingResponse(BaseModel):
    """Stored repository mapping for one project."""

    model_config = ConfigDict(from_attributes=True)

    project_id: str
    repo_name: str
    repo_id: int | None = None
    branch: str
    updated_at: str
