"""Archive upload pipeline: decode, filter, classify and commit in one step."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bridge.exceptions import (
    BridgeError,
    NotConfiguredError,
    PayloadTooLargeError,
    SettingsMissingError,
    SyncTimeoutError,
)
from bridge.gitlab.client import COPY_BATCH_SIZE, FileAction, FileActionType
from bridge.services.archive_service import decode_archive
from bridge.services.ignore_service import build_ignore_predicate
from bridge.services.project_service import get_project_setting, set_repo_id
from bridge.services.status_service import StatusReporter

if TYPE_CHECKING:
    from collections.abc import Mapping

    from bridge.context import BridgeContext
    from bridge.gitlab.client import GitlabClient

logger = logging.getLogger(__name__)

# Archives produced by the editor nest everything under this directory.
ARCHIVE_ROOT_PREFIX = "project/"


@dataclass
class SyncRequest:
    """One upload attempt. Discarded once the pipeline finishes."""

    archive: bytes
    project_id: str | None
    commit_message: str = ""


@dataclass
class SyncResult:
    """Outcome of a successful upload."""

    message: str
    repo_name: str
    branch: str
    files_written: int = 0
    commit_id: str | None = None
    actions: list[FileAction] = field(default_factory=list)


def prepare_files(files: Mapping[str, str]) -> dict[str, str]:
    """Turn decoded archive entries into the set of files to upload.

    Drops directory markers and blank files, strips the archive root prefix and
    removes everything the ignore rules match. Paths stay unique; if stripping
    the prefix makes two entries collide, the later one wins.
    """
    should_ignore = build_ignore_predicate(files)
    prepared: dict[str, str] = {}
    for raw_path, content in files.items():
        if raw_path.endswith("/") or not content.strip():
            continue
        path = raw_path.removeprefix(ARCHIVE_ROOT_PREFIX)
        if not path or should_ignore(path):
            continue
        prepared[path] = content
    return prepared


async def classify_files(
    gitlab: GitlabClient,
    project_id: int,
    branch: str,
    files: Mapping[str, str],
) -> list[FileAction]:
    """Check every file once and pick create or update.

    Existence checks run concurrently in batches of ``COPY_BATCH_SIZE``; the
    burst counter is reset before each batch. The first failure other than
    "not found" cancels the checks still in flight and propagates.
    """
    paths = list(files)
    found: list[bool] = []
    for start in range(0, len(paths), COPY_BATCH_SIZE):
        batch = paths[start : start + COPY_BATCH_SIZE]
        gitlab.backoff.reset_request_count()
        try:
            async with asyncio.TaskGroup() as tg:
                checks = [tg.create_task(gitlab.file_exists(project_id, p, branch)) for p in batch]
        except ExceptionGroup as group:
            raise group.exceptions[0] from None
        found.extend(check.result() for check in checks)
    return [
        FileAction(
            action=FileActionType.UPDATE if exists else FileActionType.CREATE,
            path=path,
            content=files[path],
        )
        for path, exists in zip(paths, found, strict=True)
    ]


class UploadPipeline:
    """Uploads a project archive to its linked GitLab repository as one commit.

    Only one upload runs at a time; ``is_busy`` tells callers whether another
    attempt is in flight.
    """

    def __init__(self, context: BridgeContext) -> None:
        self.context = context
        self._lock = asyncio.Lock()

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def run(self, request: SyncRequest) -> SyncResult:
        """Run one upload attempt, reporting status throughout.

        Exactly one terminal status is reported. Failures are re-raised after
        being reported.
        """
        async with self._lock:
            return await self._run(request)

    async def _run(self, request: SyncRequest) -> SyncResult:
        reporter = StatusReporter(self.context.status)
        reporter.start("Starting upload...")
        timeout = self.context.settings.sync_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                result = await self._process(request, reporter)
        except TimeoutError as exc:
            msg = f"Upload timed out after {timeout:g} seconds"
            logger.error(msg)
            reporter.error(msg)
            raise SyncTimeoutError(msg) from exc
        except BridgeError as exc:
            logger.warning("Upload failed (%s): %s", exc.kind, exc.message)
            reporter.error(exc.user_message)
            raise
        except Exception as exc:
            logger.exception("Unexpected error during upload")
            reporter.error(str(exc) or "Upload failed")
            raise

        reporter.success(result.message)
        return result

    async def _process(self, request: SyncRequest, reporter: StatusReporter) -> SyncResult:
        settings = self.context.settings

        if len(request.archive) > settings.max_archive_bytes:
            limit_mb = settings.max_archive_bytes / (1024 * 1024)
            msg = f"Archive too large: maximum size is {limit_mb:g} MB"
            raise PayloadTooLargeError(msg, http_status=413)

        gitlab = self.context.gitlab
        if gitlab is None:
            msg = "GitLab token and owner are not configured"
            raise NotConfiguredError(msg)
        if not request.project_id:
            msg = "Project ID is not set"
            raise NotConfiguredError(msg)

        # Each attempt starts with a fresh burst allowance.
        gitlab.backoff.reset_request_count()

        reporter.progress(0, "Processing archive...")
        files = await asyncio.to_thread(decode_archive, request.archive)

        reporter.progress(10, "Loading project settings...")
        async with self.context.session_factory() as session:
            setting = await get_project_setting(session, request.project_id)
        if setting is None:
            msg = f"No repository is linked to project {request.project_id}"
            raise SettingsMissingError(msg)
        repo_name = setting.repo_name
        branch = setting.branch or settings.default_branch

        repo_id = await self._ensure_repository(
            gitlab, request.project_id, repo_name, setting.repo_id, branch, reporter
        )

        reporter.progress(18, f"Checking branch {branch}...")
        if await gitlab.ensure_branch_exists(repo_id, branch):
            logger.info("Created branch %s in %s", branch, repo_name)

        reporter.progress(20, "Analyzing files...")
        prepared = prepare_files(files)
        if not prepared:
            logger.info("Nothing to upload for project %s after filtering", request.project_id)
            return SyncResult(
                message="Nothing to upload",
                repo_name=repo_name,
                branch=branch,
            )

        actions = await classify_files(gitlab, repo_id, branch, prepared)

        reporter.progress(70, f"Committing {len(actions)} files...")
        commit_message = request.commit_message.strip() or settings.default_commit_message
        commit = await gitlab.commit_files(repo_id, branch, commit_message, actions)

        return SyncResult(
            message=f"Successfully uploaded {len(actions)} files",
            repo_name=repo_name,
            branch=branch,
            files_written=len(actions),
            commit_id=commit.get("id"),
            actions=actions,
        )

    async def _ensure_repository(
        self,
        gitlab: GitlabClient,
        project_id: str,
        repo_name: str,
        repo_id: int | None,
        branch: str,
        reporter: StatusReporter,
    ) -> int:
        """Resolve the repository id, creating and initializing the repository if needed."""
        reporter.progress(15, "Checking repository...")
        if repo_id is not None and not await gitlab.repo_exists(repo_id):
            logger.warning("Repository %s (id=%s) no longer exists", repo_name, repo_id)
            repo_id = None

        if repo_id is None:
            project = await gitlab.find_project_by_name(repo_name)
            if project is None:
                reporter.progress(15, f"Creating repository {repo_name}...")
                project = await gitlab.create_repo(repo_name, visibility="private")
            repo_id = int(project["id"])
            async with self.context.session_factory() as session:
                await set_repo_id(session, project_id, repo_id)

        if await gitlab.is_repo_empty(repo_id):
            reporter.progress(18, "Initializing empty repository...")
            await gitlab.initialize_empty_repo(repo_id, repo_name, branch)
        return repo_id
