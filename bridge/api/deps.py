"""Shared API dependencies: settings, DB session, context, auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bridge.config import Settings
from bridge.context import BridgeContext
from bridge.services.temp_repo_service import TempRepoManager
from bridge.services.upload_service import UploadPipeline

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_context(request: Request) -> BridgeContext:
    """Get the component context from app state."""
    context: BridgeContext = request.app.state.context
    return context


def get_upload_pipeline(request: Request) -> UploadPipeline:
    pipeline: UploadPipeline = request.app.state.upload_pipeline
    return pipeline


def get_temp_repo_manager(request: Request) -> TempRepoManager:
    manager: TempRepoManager = request.app.state.temp_repo_manager
    return manager


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def require_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Require the configured API key as a bearer token. Open when no key is set."""
    if not settings.api_key:
        return
    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), settings.api_key.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
