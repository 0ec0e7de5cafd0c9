"""Per-project repository mapping endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from bridge.api.deps import get_session, require_api_key
from bridge.schemas.project import ProjectSettingResponse, ProjectSettingUpdate
from bridge.services.project_service import (
    delete_project_setting,
    get_project_setting,
    list_project_settings,
    save_project_setting,
)

router = APIRouter(
    prefix="/api/projects",
    tags=["projects"],
    dependencies=[Depends(require_api_key)],
)

ProjectIdPath = Annotated[str, Path(min_length=1, max_length=255)]


@router.get("", response_model=list[ProjectSettingResponse])
async def list_projects(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[ProjectSettingResponse]:
    settings = await list_project_settings(session)
    return [ProjectSettingResponse.model_validate(s) for s in settings]


@router.get("/{project_id}", response_model=ProjectSettingResponse)
async def get_project(
    project_id: ProjectIdPath,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProjectSettingResponse:
    """Get the repository a project is linked to."""
    setting = await get_project_setting(session, project_id)
    if setting is None:
        raise HTTPException(status_code=404, detail="Project not linked")
    return ProjectSettingResponse.model_validate(setting)


@router.put("/{project_id}", response_model=ProjectSettingResponse)
async def put_project(
    project_id: ProjectIdPath,
    body: ProjectSettingUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProjectSettingResponse:
    """Link a project to a repository and branch."""
    setting = await save_project_setting(
        session,
        project_id,
        body.repo_name,
        branch=body.branch,
        repo_id=body.repo_id,
    )
    return ProjectSettingResponse.model_validate(setting)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: ProjectIdPath,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> None:
    """Remove a project's repository link."""
    if not await delete_project_setting(session, project_id):
        raise HTTPException(status_code=404, detail="Project not linked")
