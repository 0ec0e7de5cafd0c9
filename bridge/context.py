"""Explicit dependency container shared by the bridge components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bridge.exceptions import NotConfiguredError
from bridge.gitlab.client import GitlabClient
from bridge.services.status_service import StatusBroadcaster

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from bridge.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BridgeContext:
    """Everything a component needs, built once at startup and passed in."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    status: StatusBroadcaster
    gitlab: GitlabClient | None = None

    def require_gitlab(self) -> GitlabClient:
        """Return the GitLab client, or raise NotConfiguredError if there is none."""
        if self.gitlab is None:
            msg = "GitLab token and owner are not configured"
            raise NotConfiguredError(msg)
        return self.gitlab

    async def aclose(self) -> None:
        self.status.close()
        if self.gitlab is not None:
            await self.gitlab.aclose()


def create_context(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BridgeContext:
    """Build the context. The GitLab client is omitted when credentials are missing."""
    gitlab: GitlabClient | None = None
    if settings.gitlab_configured:
        gitlab = GitlabClient.from_settings(settings, transport=transport)
    else:
        logger.warning("GITLAB_TOKEN or GITLAB_OWNER not set; GitLab operations are disabled")
    return BridgeContext(
        settings=settings,
        session_factory=session_factory,
        status=StatusBroadcaster(reset_delay=settings.status_reset_delay_seconds),
        gitlab=gitlab,
    )
