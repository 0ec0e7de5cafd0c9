"""Staging repository endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from bridge.api.deps import get_temp_repo_manager, require_api_key
from bridge.schemas.temp_repo import (
    CleanupResponse,
    TempRepoImportRequest,
    TempRepoImportResponse,
    TempRepoResponse,
)
from bridge.services.datetime_service import now_utc
from bridge.services.temp_repo_service import TempRepoManager

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/temp-repos",
    tags=["temp-repos"],
    dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=list[TempRepoResponse])
async def list_temp_repos(
    manager: Annotated[TempRepoManager, Depends(get_temp_repo_manager)],
) -> list[TempRepoResponse]:
    """List staging repositories that have not been cleaned up yet."""
    now = now_utc()
    records = await manager.list_temp_repos()
    return [
        TempRepoResponse.model_validate(record).model_copy(
            update={"expired": manager.is_expired(record, now)}
        )
        for record in records
    ]


@router.post("/import", response_model=TempRepoImportResponse)
async def import_private_repo(
    body: TempRepoImportRequest,
    manager: Annotated[TempRepoManager, Depends(get_temp_repo_manager)],
) -> TempRepoImportResponse:
    """Copy a private repository into a public staging repository."""
    outcome = await manager.handle_private_repo_import(body.source_repo_name)
    return TempRepoImportResponse(
        success=True,
        message=outcome.message,
        temp_repo_id=outcome.temp_repo_id,
        temp_repo_name=outcome.temp_repo_name,
        import_url=outcome.import_url,
        files_copied=outcome.files_copied,
        files_skipped=outcome.files_skipped,
    )


@router.post("/cleanup", response_model=CleanupResponse)
async def force_cleanup_temp_repos(
    manager: Annotated[TempRepoManager, Depends(get_temp_repo_manager)],
) -> CleanupResponse:
    """Delete every staging repository regardless of age."""
    report = await manager.cleanup_temp_repos(force=True)
    return CleanupResponse(
        deleted=report.deleted,
        failed=report.failed,
        remaining=report.remaining,
    )
