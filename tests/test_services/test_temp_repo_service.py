"""Tests for staging repository import and cleanup."""

from __future__ import annotations

import asyncio
import re
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from bridge.exceptions import (
    GitlabApiError,
    NotConfiguredError,
    SourceRepoNotFoundError,
)
from bridge.models.temp_repo import TempRepo
from bridge.services.datetime_service import format_datetime, now_utc
from bridge.services.status_service import ProcessingStatus
from bridge.services.temp_repo_service import (
    TEMP_REPO_DESCRIPTION,
    TempRepoManager,
    make_temp_repo_name,
)

if TYPE_CHECKING:
    from datetime import datetime

    from bridge.context import BridgeContext
    from tests.fake_gitlab import FakeGitlab


async def _store_record(
    context: BridgeContext, temp_repo_id: int, name: str, created_at: datetime
) -> None:
    async with context.session_factory() as session:
        session.add(
            TempRepo(
                temp_repo_id=temp_repo_id,
                original_repo_name="source",
                temp_repo_name=name,
                owner="alice",
                created_at=format_datetime(created_at),
            )
        )
        await session.commit()


class TestTempRepoName:
    def test_name_format(self) -> None:
        name = make_temp_repo_name("my-app", now_ms=1700000000000)
        assert re.fullmatch(r"temp-my-app-1700000000000-[a-z0-9]{6}", name)

    def test_names_differ_within_same_millisecond(self) -> None:
        names = {make_temp_repo_name("x", now_ms=1) for _ in range(20)}
        assert len(names) > 1


class TestImport:
    async def test_copies_files_then_flips_visibility_once(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        fake_gitlab.add_project(
            "private-app", files={"a.txt": "a", "src/b.txt": "b", "src/c/d.txt": "d"}
        )
        manager = TempRepoManager(bridge_context)

        outcome = await manager.handle_private_repo_import("private-app")

        temp = fake_gitlab.projects[outcome.temp_repo_id]
        assert temp.name == outcome.temp_repo_name
        assert temp.description == TEMP_REPO_DESCRIPTION
        assert temp.visibility == "public"
        assert sorted(fake_gitlab.writes(temp.id)) == ["a.txt", "src/b.txt", "src/c/d.txt"]
        assert temp.branches["main"]["src/c/d.txt"] == "d"
        assert outcome.files_copied == 3
        assert outcome.files_skipped == 0

        temp_events = [e for e in fake_gitlab.events if e[1] == temp.id]
        visibility = [e for e in temp_events if e[0] == "visibility"]
        assert visibility == [("visibility", temp.id, "public")]
        # Nothing is written after the repository goes public.
        assert temp_events[-1][0] == "visibility"

    async def test_import_url_and_record(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        fake_gitlab.add_project("private-app", files={"a.txt": "a"})
        manager = TempRepoManager(bridge_context)

        outcome = await manager.handle_private_repo_import("private-app")

        assert outcome.import_url == (
            f"https://bolt.new/~/gitlab.com/alice/{outcome.temp_repo_name}"
        )
        records = await manager.list_temp_repos()
        assert [(r.temp_repo_id, r.original_repo_name) for r in records] == [
            (outcome.temp_repo_id, "private-app")
        ]
        assert bridge_context.status.current.status is ProcessingStatus.SUCCESS
        assert bridge_context.status.current.progress == 100.0

    async def test_file_missing_on_read_is_skipped(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        fake_gitlab.add_project("private-app", files={"a.txt": "a", "gone.txt": "g"})
        fake_gitlab.missing_on_read.add("gone.txt")

        outcome = await TempRepoManager(bridge_context).handle_private_repo_import("private-app")

        assert outcome.files_copied == 1
        assert outcome.files_skipped == 1
        assert fake_gitlab.projects[outcome.temp_repo_id].visibility == "public"

    async def test_missing_source_creates_nothing(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        manager = TempRepoManager(bridge_context)

        with pytest.raises(SourceRepoNotFoundError) as exc_info:
            await manager.handle_private_repo_import("nope")

        assert exc_info.value.http_status == 404
        assert fake_gitlab.projects == {}
        assert await manager.list_temp_repos() == []
        assert bridge_context.status.current.status is ProcessingStatus.ERROR

    async def test_failed_copy_leaves_record_for_sweep(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        fake_gitlab.add_project("private-app", files={"a.txt": "a", "b.txt": "b"})
        fake_gitlab.fail_probe["b.txt"] = 500
        manager = TempRepoManager(bridge_context)

        with pytest.raises(GitlabApiError):
            await manager.handle_private_repo_import("private-app")

        records = await manager.list_temp_repos()
        assert len(records) == 1
        temp = fake_gitlab.projects[records[0].temp_repo_id]
        assert temp.visibility == "private"
        assert bridge_context.status.current.status is ProcessingStatus.ERROR

    async def test_requires_gitlab(self, bridge_context: BridgeContext) -> None:
        bridge_context.gitlab = None
        with pytest.raises(NotConfiguredError):
            await TempRepoManager(bridge_context).handle_private_repo_import("x")


class TestCleanup:
    async def test_forced_cleanup_survives_a_failed_delete(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        ok = fake_gitlab.add_project("temp-ok")
        broken = fake_gitlab.add_project("temp-broken")
        fake_gitlab.fail_delete.add(broken.id)
        created = now_utc()
        await _store_record(bridge_context, ok.id, ok.name, created)
        await _store_record(bridge_context, broken.id, broken.name, created)
        manager = TempRepoManager(bridge_context)

        report = await manager.cleanup_temp_repos(force=True)

        assert report.deleted == ["temp-ok"]
        assert report.failed == ["temp-broken"]
        assert report.remaining == []
        assert ok.id not in fake_gitlab.projects
        assert await manager.list_temp_repos() == []

    async def test_sweep_only_deletes_expired(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        old = fake_gitlab.add_project("temp-old")
        fresh = fake_gitlab.add_project("temp-fresh")
        now = now_utc()
        await _store_record(bridge_context, old.id, old.name, now - timedelta(seconds=120))
        await _store_record(bridge_context, fresh.id, fresh.name, now - timedelta(seconds=10))
        manager = TempRepoManager(bridge_context)

        report = await manager.cleanup_temp_repos(now=now)

        assert report.deleted == ["temp-old"]
        assert report.remaining == ["temp-fresh"]
        assert fresh.id in fake_gitlab.projects
        assert [r.temp_repo_name for r in await manager.list_temp_repos()] == ["temp-fresh"]

    async def test_already_deleted_repository_counts_as_deleted(
        self, bridge_context: BridgeContext
    ) -> None:
        await _store_record(bridge_context, 999, "temp-gone", now_utc())

        report = await TempRepoManager(bridge_context).cleanup_temp_repos(force=True)

        assert report.deleted == ["temp-gone"]
        assert report.failed == []

    async def test_expiry_boundary(self, bridge_context: BridgeContext) -> None:
        manager = TempRepoManager(bridge_context)
        created = now_utc()
        record = TempRepo(
            temp_repo_id=1,
            original_repo_name="s",
            temp_repo_name="temp-s",
            owner="alice",
            created_at=format_datetime(created),
        )
        assert not manager.is_expired(record, created + timedelta(seconds=60))
        assert manager.is_expired(record, created + timedelta(seconds=61))


class TestSweepLifecycle:
    async def test_start_runs_sweep_and_stop_cancels(
        self, bridge_context: BridgeContext, fake_gitlab: FakeGitlab
    ) -> None:
        bridge_context.settings.temp_repo_sweep_interval_seconds = 0.01
        bridge_context.settings.temp_repo_max_age_seconds = 0
        old = fake_gitlab.add_project("temp-old")
        await _store_record(bridge_context, old.id, old.name, now_utc() - timedelta(seconds=5))
        manager = TempRepoManager(bridge_context)

        await manager.start()
        assert manager.is_running
        for _ in range(50):
            if old.id not in fake_gitlab.projects:
                break
            await asyncio.sleep(0.01)
        await manager.stop()

        assert not manager.is_running
        assert old.id not in fake_gitlab.projects

    async def test_sweep_keeps_running_after_failure(
        self, bridge_context: BridgeContext
    ) -> None:
        bridge_context.settings.temp_repo_sweep_interval_seconds = 0.01
        manager = TempRepoManager(bridge_context)
        calls = 0

        async def failing_cleanup(**kwargs: object) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        manager.cleanup_temp_repos = failing_cleanup  # type: ignore[method-assign]

        await manager.start()
        for _ in range(50):
            if calls >= 2:
                break
            await asyncio.sleep(0.01)
        await manager.stop()

        assert calls >= 2

    async def test_double_start_is_ignored(self, bridge_context: BridgeContext) -> None:
        manager = TempRepoManager(bridge_context)
        await manager.start()
        first_task = manager._task
        await manager.start()
        assert manager._task is first_task
        await manager.stop()
