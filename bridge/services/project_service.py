"""Persisted per-project repository settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from bridge.models.project import ProjectSetting
from bridge.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def get_project_setting(session: AsyncSession, project_id: str) -> ProjectSetting | None:
    """Get the repository mapping for a project, or None if it has none."""
    return await session.get(ProjectSetting, project_id)


async def list_project_settings(session: AsyncSession) -> list[ProjectSetting]:
    stmt = select(ProjectSetting).order_by(ProjectSetting.project_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def save_project_setting(
    session: AsyncSession,
    project_id: str,
    repo_name: str,
    *,
    branch: str = "main",
    repo_id: int | None = None,
) -> ProjectSetting:
    """Create or replace the repository mapping for a project.

    Changing the repository name drops a previously resolved repository id
    unless a new one is given.
    """
    setting = await session.get(ProjectSetting, project_id)
    timestamp = format_datetime(now_utc())
    if setting is None:
        setting = ProjectSetting(
            project_id=project_id,
            repo_name=repo_name,
            repo_id=repo_id,
            branch=branch,
            updated_at=timestamp,
        )
        session.add(setting)
    else:
        if setting.repo_name != repo_name and repo_id is None:
            setting.repo_id = None
        elif repo_id is not None:
            setting.repo_id = repo_id
        setting.repo_name = repo_name
        setting.branch = branch
        setting.updated_at = timestamp
    await session.commit()
    logger.info("Linked project %s to repository %s@%s", project_id, repo_name, branch)
    return setting


async def set_repo_id(session: AsyncSession, project_id: str, repo_id: int) -> None:
    """Record the resolved GitLab project id for a project's repository."""
    setting = await session.get(ProjectSetting, project_id)
    if setting is None:
        return
    setting.repo_id = repo_id
    setting.updated_at = format_datetime(now_utc())
    await session.commit()


async def delete_project_setting(session: AsyncSession, project_id: str) -> bool:
    """Remove a project's mapping. Returns False if there was none."""
    setting = await session.get(ProjectSetting, project_id)
    if setting is None:
        return False
    await session.delete(setting)
    await session.commit()
    logger.info("Unlinked project %s", project_id)
    return True
