"""GitLab credential check endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from bridge.api.deps import get_context, require_api_key
from bridge.context import BridgeContext
from bridge.schemas.gitlab import TokenValidationResponse

router = APIRouter(
    prefix="/api/gitlab",
    tags=["gitlab"],
    dependencies=[Depends(require_api_key)],
)


@router.get("/validate", response_model=TokenValidationResponse)
async def validate_token(
    context: Annotated[BridgeContext, Depends(get_context)],
    username: Annotated[str | None, Query(max_length=255)] = None,
) -> TokenValidationResponse:
    """Check that the configured token works, optionally for a given username."""
    gitlab = context.require_gitlab()
    if username:
        result = await gitlab.validate_token_and_user(username)
        return TokenValidationResponse(
            is_valid=result.is_valid, username=result.username, error=result.error
        )
    if await gitlab.validate_token():
        return TokenValidationResponse(is_valid=True)
    return TokenValidationResponse(is_valid=False, error="Invalid GitLab token")
