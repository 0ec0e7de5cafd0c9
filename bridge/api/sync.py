"""Archive upload endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from bridge.api.deps import get_settings, get_upload_pipeline, require_api_key
from bridge.config import Settings
from bridge.schemas.sync import FileActionResponse, SyncResponse
from bridge.services.upload_service import SyncRequest, UploadPipeline

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sync",
    tags=["sync"],
    dependencies=[Depends(require_api_key)],
)


@router.post("", response_model=SyncResponse)
async def start_sync(
    pipeline: Annotated[UploadPipeline, Depends(get_upload_pipeline)],
    settings: Annotated[Settings, Depends(get_settings)],
    archive: Annotated[UploadFile, File()],
    project_id: Annotated[str, Form()] = "",
    commit_message: Annotated[str, Form(max_length=5000)] = "",
) -> SyncResponse:
    """Upload a project archive to its linked repository as a single commit."""
    # One byte past the limit is enough for the pipeline to reject it.
    data = await archive.read(settings.max_archive_bytes + 1)

    if pipeline.is_busy:
        raise HTTPException(status_code=409, detail="Another upload is already in progress")

    result = await pipeline.run(
        SyncRequest(
            archive=data,
            project_id=project_id.strip() or None,
            commit_message=commit_message.strip() or settings.default_commit_message,
        )
    )
    return SyncResponse(
        status="success",
        message=result.message,
        files_written=result.files_written,
        commit_id=result.commit_id,
        branch=result.branch,
        repo_name=result.repo_name,
        actions=[
            FileActionResponse(action=str(action.action), path=action.path)
            for action in result.actions
        ],
    )
