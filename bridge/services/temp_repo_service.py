"""Staging repositories: create, populate, publish and expire."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select

from bridge.exceptions import (
    BridgeError,
    GitlabApiError,
    SourceRepoNotFoundError,
    SyncTimeoutError,
)
from bridge.models.temp_repo import TempRepo
from bridge.services.datetime_service import age_seconds, format_datetime, now_utc
from bridge.services.status_service import StatusReporter

if TYPE_CHECKING:
    from datetime import datetime

    from bridge.context import BridgeContext

logger = logging.getLogger(__name__)

TEMP_REPO_PREFIX = "temp-"
TEMP_REPO_DESCRIPTION = "Temporary staging repository; deleted automatically"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

# Overall progress range covered by the file copy.
COPY_PROGRESS_START = 30.0
COPY_PROGRESS_SPAN = 40.0


def make_temp_repo_name(source_repo_name: str, *, now_ms: int | None = None) -> str:
    """Build ``temp-<source>-<epoch ms>-<6 random chars>``."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"{TEMP_REPO_PREFIX}{source_repo_name}-{timestamp}-{suffix}"


@dataclass
class ImportOutcome:
    """Result of a successful staging import."""

    message: str
    temp_repo_id: int
    temp_repo_name: str
    import_url: str
    files_copied: int = 0
    files_skipped: int = 0


@dataclass
class CleanupReport:
    """Names of staging repositories handled by one sweep."""

    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)


class TempRepoManager:
    """Owns the staging repository records and the periodic expiry sweep.

    The manager is the only writer of the ``temp_repos`` table. A record is
    stored as soon as its repository exists on GitLab, so a failed import is
    still cleaned up by a later sweep.
    """

    def __init__(self, context: BridgeContext) -> None:
        self.context = context
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._cleanup_lock = asyncio.Lock()

    @property
    def max_age(self) -> float:
        return self.context.settings.temp_repo_max_age_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Import ───────────────────────────────────────────

    async def handle_private_repo_import(self, source_repo_name: str) -> ImportOutcome:
        """Stage ``source_repo_name`` in a new public repository.

        Reports exactly one terminal status. On failure the error is reported
        and re-raised; any repository already created stays recorded for the
        sweep.
        """
        reporter = StatusReporter(self.context.status)
        reporter.start(f"Preparing {source_repo_name} for import...")
        timeout = self.context.settings.temp_repo_import_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                outcome = await self._import(source_repo_name, reporter)
        except TimeoutError as exc:
            msg = f"Import of {source_repo_name} timed out after {timeout:g} seconds"
            logger.error(msg)
            reporter.error(msg)
            raise SyncTimeoutError(msg) from exc
        except BridgeError as exc:
            logger.warning("Import of %s failed (%s): %s", source_repo_name, exc.kind, exc.message)
            reporter.error(exc.user_message)
            raise
        except Exception as exc:
            logger.exception("Unexpected error importing %s", source_repo_name)
            reporter.error(str(exc) or "Import failed")
            raise

        reporter.success(outcome.message)
        return outcome

    async def _import(self, source_repo_name: str, reporter: StatusReporter) -> ImportOutcome:
        settings = self.context.settings
        gitlab = self.context.require_gitlab()
        owner = settings.gitlab_owner
        branch = settings.default_branch

        reporter.progress(10, "Looking up source repository...")
        source = await gitlab.find_project_by_name(source_repo_name)
        if source is None:
            msg = f"Source repository {source_repo_name!r} not found"
            raise SourceRepoNotFoundError(msg, http_status=404)
        source_ref = source.get("default_branch") or branch

        reporter.progress(20, "Creating temporary repository...")
        temp_name = make_temp_repo_name(source_repo_name)
        project = await gitlab.create_repo(
            temp_name, visibility="private", description=TEMP_REPO_DESCRIPTION
        )
        temp_id = int(project["id"])
        await self._record(temp_id, source_repo_name, temp_name, owner)

        await gitlab.push_file(
            temp_id, ".gitkeep", "", branch, "Initialize repository", check_existing=False
        )

        reporter.progress(COPY_PROGRESS_START, "Copying repository contents...")

        def on_copy_progress(percent: float) -> None:
            reporter.progress(
                COPY_PROGRESS_START + percent * COPY_PROGRESS_SPAN / 100,
                f"Copying files... {percent:.0f}%",
            )

        copied = await gitlab.clone_repo_contents(
            source["id"],
            temp_id,
            source_ref=source_ref,
            target_branch=branch,
            on_progress=on_copy_progress,
        )

        # Public only once every file is in place.
        reporter.progress(COPY_PROGRESS_START + COPY_PROGRESS_SPAN, "Making repository public...")
        await gitlab.update_visibility(temp_id, "public")

        reporter.progress(90, "Opening repository...")
        import_url = settings.import_url_template.format(owner=owner, repo=temp_name)
        logger.info(
            "Staged %s as %s (%d copied, %d skipped)",
            source_repo_name,
            temp_name,
            len(copied.copied),
            len(copied.skipped),
        )
        return ImportOutcome(
            message=f"Repository ready for import: {import_url}",
            temp_repo_id=temp_id,
            temp_repo_name=temp_name,
            import_url=import_url,
            files_copied=len(copied.copied),
            files_skipped=len(copied.skipped),
        )

    async def _record(self, temp_repo_id: int, source: str, temp_name: str, owner: str) -> None:
        async with self.context.session_factory() as session:
            session.add(
                TempRepo(
                    temp_repo_id=temp_repo_id,
                    original_repo_name=source,
                    temp_repo_name=temp_name,
                    owner=owner,
                    created_at=format_datetime(now_utc()),
                )
            )
            await session.commit()
        logger.info("Recorded staging repository %s (id=%d)", temp_name, temp_repo_id)

    # ── Records ──────────────────────────────────────────

    def is_expired(self, record: TempRepo, now: datetime | None = None) -> bool:
        return age_seconds(record.created_at, now) > self.max_age

    async def list_temp_repos(self) -> list[TempRepo]:
        async with self.context.session_factory() as session:
            result = await session.execute(select(TempRepo).order_by(TempRepo.created_at))
            return list(result.scalars().all())

    # ── Cleanup ──────────────────────────────────────────

    async def cleanup_temp_repos(
        self, *, force: bool = False, now: datetime | None = None
    ) -> CleanupReport:
        """Delete expired staging repositories, or all of them when ``force`` is set.

        Best-effort: a failed remote delete is logged and does not stop the
        others. Every record selected for deletion is dropped from storage,
        whether or not its remote delete succeeded.
        """
        gitlab = self.context.require_gitlab()
        report = CleanupReport()
        async with self._cleanup_lock, self.context.session_factory() as session:
            result = await session.execute(select(TempRepo).order_by(TempRepo.created_at))
            for record in result.scalars().all():
                if not force and not self.is_expired(record, now):
                    report.remaining.append(record.temp_repo_name)
                    continue

                try:
                    await gitlab.delete_repo(record.temp_repo_id)
                except GitlabApiError as exc:
                    if exc.is_not_found:
                        logger.info("Staging repository %s already deleted", record.temp_repo_name)
                        report.deleted.append(record.temp_repo_name)
                    else:
                        logger.warning(
                            "Failed to delete staging repository %s: %s",
                            record.temp_repo_name,
                            exc.user_message,
                        )
                        report.failed.append(record.temp_repo_name)
                except BridgeError as exc:
                    logger.warning(
                        "Failed to delete staging repository %s: %s",
                        record.temp_repo_name,
                        exc.user_message,
                    )
                    report.failed.append(record.temp_repo_name)
                else:
                    report.deleted.append(record.temp_repo_name)

                await session.delete(record)
            await session.commit()

        if report.deleted or report.failed:
            logger.info(
                "Staging cleanup: %d deleted, %d failed, %d remaining",
                len(report.deleted),
                len(report.failed),
                len(report.remaining),
            )
        return report

    # ── Periodic sweep ───────────────────────────────────

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._running:
            logger.warning("Staging repository sweep already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Staging repository sweep started (interval=%gs, max_age=%gs)",
            self.context.settings.temp_repo_sweep_interval_seconds,
            self.max_age,
        )

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Staging repository sweep stopped")

    async def _run_loop(self) -> None:
        interval = self.context.settings.temp_repo_sweep_interval_seconds
        while self._running:
            try:
                await self.cleanup_temp_repos()
            except Exception:
                logger.exception("Staging repository sweep failed")
            await asyncio.sleep(interval)
