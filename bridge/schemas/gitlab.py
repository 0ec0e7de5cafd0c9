"""GitLab credential check schemas."""

from __future__ import annotations

from pydantic import BaseModel


class TokenValidationResponse(BaseModel):
    """Result of checking the configured GitLab token."""

    is_valid: bool
    username: str | None = None
    error: str | None = None
