"""GitLab REST API v4 client with request pacing and throttling recovery."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from bridge.exceptions import GitlabApiError, RemoteInconsistencyError
from bridge.services.rate_limit_service import BackoffController
from bridge.services.task_queue import SerialTaskQueue

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from bridge.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://gitlab.com/api/v4"
DEFAULT_TIMEOUT = 30.0
DEFAULT_BRANCH = "main"
TREE_PAGE_SIZE = 100
PROJECT_PAGE_SIZE = 100
# Burst counter is reset after this many copied files.
COPY_BATCH_SIZE = 10

HTTP_NO_CONTENT = 204
HTTP_BAD_REQUEST = 400
HTTP_CONFLICT = 409

PLACEHOLDER_README = """# {repo}

## Feel free to delete this file and replace it with your own content.

## Repository Initialization Notice

This repository was automatically initialized by the GitLab bridge.

**Auto-Generated Repository**
- Created to ensure a valid Git repository structure
- Serves as an initial commit point for your project
"""


class FileActionType(StrEnum):
    """Commit action for a single file."""

    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class FileAction:
    """One file change inside a commit."""

    action: FileActionType
    path: str
    content: str
    encoding: str = "text"

    def to_payload(self) -> dict[str, str]:
        payload = {
            "action": str(self.action),
            "file_path": self.path,
            "content": self.content,
        }
        if self.encoding != "text":
            payload["encoding"] = self.encoding
        return payload


@dataclass
class RepoInfo:
    """Summary of a GitLab project, or a placeholder when it does not exist."""

    name: str
    exists: bool
    description: str | None = None
    visibility: str | None = None
    default_branch: str | None = None
    web_url: str | None = None


@dataclass
class TreeEntry:
    """A file in a repository tree listing."""

    path: str
    sha: str = ""


@dataclass
class RemoteFile:
    """File content as returned by the repository files API."""

    path: str
    content: str
    encoding: str = "base64"


@dataclass
class CloneResult:
    """Outcome of copying one project's files into another."""

    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class TokenValidation:
    """Result of checking the configured token."""

    is_valid: bool
    username: str | None = None
    error: str | None = None


def encode_path(value: str | int) -> str:
    """Percent-encode an id or path for use as a single URL segment."""
    return quote(str(value), safe="")


def _flatten_message(detail: Any) -> str:
    if isinstance(detail, dict):
        parts = []
        for key, value in detail.items():
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            parts.append(f"{key} {value}")
        return "; ".join(parts)
    if isinstance(detail, list):
        return ", ".join(str(v) for v in detail)
    return str(detail)


def _error_message(response: httpx.Response) -> str:
    """Extract GitLab's own error text from a failed response."""
    try:
        data = response.json()
    except ValueError:
        text = response.text[:200] if response.text else ""
        return text or response.reason_phrase or "Unknown GitLab API error"

    if isinstance(data, dict):
        for key in ("message", "error", "error_description"):
            detail = data.get(key)
            if detail:
                return _flatten_message(detail)
    return response.reason_phrase or "Unknown GitLab API error"


def _api_error(response: httpx.Response) -> GitlabApiError:
    original = _error_message(response)
    return GitlabApiError(
        f"GitLab API error ({response.status_code}): {original}",
        http_status=response.status_code,
        original_message=original,
        headers=response.headers,
    )


def _next_page(response: httpx.Response, page: int) -> int | None:
    """Return the next page number from GitLab pagination headers, if any."""
    next_page = response.headers.get("x-next-page", "").strip()
    if next_page:
        return int(next_page)
    total_pages = response.headers.get("x-total-pages", "").strip()
    if total_pages and page < int(total_pages):
        return page + 1
    return None


class GitlabClient:
    """Typed wrapper over the GitLab projects, branches, files, commits and tree APIs.

    Every request passes through the client's ``BackoffController``. A 429
    response is retried after the controller's computed wait; any other
    non-success response raises ``GitlabApiError``.
    """

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        backoff: BackoffController | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.backoff = backoff or BackoffController()
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "PRIVATE-TOKEN": token,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GitlabClient:
        """Build a client with pacing limits taken from settings."""
        backoff = BackoffController(
            burst_limit=settings.rate_limit_burst,
            min_interval=settings.rate_limit_min_interval_seconds,
            max_retries=settings.rate_limit_max_retries,
            max_backoff=settings.rate_limit_max_backoff_seconds,
        )
        return cls(
            settings.gitlab_token,
            settings.gitlab_api_url,
            timeout=settings.gitlab_timeout_seconds,
            backoff=backoff,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GitlabClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ── Transport ────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying while GitLab answers 429."""
        while True:
            await self.backoff.before_request()
            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.HTTPError as exc:
                logger.error("GitLab request %s %s failed: %s", method, path, exc)
                msg = f"GitLab request failed: {exc}"
                raise GitlabApiError(msg, original_message=str(exc) or None) from exc

            if response.status_code == 429:
                await self.backoff.handle_rate_limit(response.headers)
                continue
            if response.is_error:
                error = _api_error(response)
                if not error.is_not_found:
                    logger.warning(
                        "GitLab API error %s %s: %d %s",
                        method,
                        path,
                        response.status_code,
                        error.original_message,
                    )
                raise error

            self.backoff.reset_retry_count()
            return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and decode the JSON body, or None when there is none."""
        response = await self._send(method, path, params=params, json=json)
        if response.status_code == HTTP_NO_CONTENT or not response.content:
            return None
        return response.json()

    # ── Projects ─────────────────────────────────────────

    async def get_project(self, project_id: str | int) -> dict[str, Any]:
        data: dict[str, Any] = await self._request("GET", f"/projects/{encode_path(project_id)}")
        return data

    async def repo_exists(self, project_id: str | int) -> bool:
        """Return True if the project is visible to the token."""
        try:
            await self.get_project(project_id)
        except GitlabApiError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    async def get_repo_info(self, project_id: str | int, repo_name: str) -> RepoInfo:
        try:
            data = await self.get_project(project_id)
        except GitlabApiError as exc:
            if exc.is_not_found:
                return RepoInfo(name=repo_name, exists=False)
            raise
        return RepoInfo(
            name=data.get("name", repo_name),
            exists=True,
            description=data.get("description"),
            visibility=data.get("visibility"),
            default_branch=data.get("default_branch"),
            web_url=data.get("web_url"),
        )

    async def find_project_by_name(self, name: str) -> dict[str, Any] | None:
        """Find a project the token can write to whose name matches exactly.

        Search results are fuzzy, so every page is scanned until a match turns up.
        """
        page: int | None = 1
        while page is not None:
            response = await self._send(
                "GET",
                "/projects",
                params={
                    "membership": "true",
                    "min_access_level": 30,
                    "per_page": PROJECT_PAGE_SIZE,
                    "order_by": "updated_at",
                    "search": name,
                    "page": page,
                },
            )
            for project in response.json() or []:
                if project.get("name") == name:
                    matched: dict[str, Any] = project
                    return matched
            page = _next_page(response, page)
        return None

    async def create_repo(
        self,
        name: str,
        *,
        visibility: str = "private",
        description: str | None = None,
        initialize_with_readme: bool = False,
    ) -> dict[str, Any]:
        """Create a project in the token owner's namespace."""
        body: dict[str, Any] = {
            "name": name,
            "visibility": visibility,
            "initialize_with_readme": initialize_with_readme,
        }
        if description:
            body["description"] = description
        data = await self._request("POST", "/projects", json=body)
        if not isinstance(data, dict) or "id" not in data:
            msg = f"GitLab did not return a project id for new repository {name!r}"
            raise RemoteInconsistencyError(msg)
        logger.info("Created GitLab project %s (id=%s)", name, data["id"])
        return data

    async def delete_repo(self, project_id: str | int) -> None:
        await self._request("DELETE", f"/projects/{encode_path(project_id)}")
        logger.info("Deleted GitLab project %s", project_id)

    async def update_visibility(self, project_id: str | int, visibility: str) -> None:
        await self._request(
            "PUT",
            f"/projects/{encode_path(project_id)}",
            json={"visibility": visibility},
        )
        logger.info("Set visibility of GitLab project %s to %s", project_id, visibility)

    async def is_repo_empty(self, project_id: str | int) -> bool:
        """Return True when the repository has no commits yet."""
        try:
            commits = await self._request(
                "GET",
                f"/projects/{encode_path(project_id)}/repository/commits",
                params={"per_page": 1},
            )
        except GitlabApiError as exc:
            # GitLab answers 409 for repositories without any commit.
            if exc.http_status == HTTP_CONFLICT:
                return True
            raise
        return not commits

    async def initialize_empty_repo(
        self, project_id: str | int, repo_name: str, branch: str
    ) -> None:
        """Push a placeholder README so that ``branch`` exists."""
        await self.push_file(
            project_id,
            "README.md",
            PLACEHOLDER_README.format(repo=repo_name),
            branch,
            "Initialize repository with auto-generated README",
            check_existing=False,
        )

    # ── Branches ─────────────────────────────────────────

    async def branch_exists(self, project_id: str | int, branch: str) -> bool:
        try:
            await self._request(
                "GET",
                f"/projects/{encode_path(project_id)}/repository/branches/{encode_path(branch)}",
            )
        except GitlabApiError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    async def create_branch(self, project_id: str | int, branch: str, ref: str) -> None:
        await self._request(
            "POST",
            f"/projects/{encode_path(project_id)}/repository/branches",
            params={"branch": branch, "ref": ref},
        )
        logger.info("Created branch %s from %s in project %s", branch, ref, project_id)

    async def ensure_branch_exists(self, project_id: str | int, branch: str) -> bool:
        """Create ``branch`` from the default branch if needed. Returns True if created."""
        if await self.branch_exists(project_id, branch):
            return False
        project = await self.get_project(project_id)
        default_branch = project.get("default_branch") or DEFAULT_BRANCH
        await self.create_branch(project_id, branch, default_branch)
        return True

    # ── Files and commits ────────────────────────────────

    def _file_url(self, project_id: str | int, path: str) -> str:
        return f"/projects/{encode_path(project_id)}/repository/files/{encode_path(path)}"

    async def file_exists(self, project_id: str | int, path: str, ref: str) -> bool:
        """Probe a file on ``ref``. A 404 means absent; other failures propagate."""
        try:
            await self._request("GET", self._file_url(project_id, path), params={"ref": ref})
        except GitlabApiError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    async def get_file_content(self, project_id: str | int, path: str, ref: str) -> RemoteFile:
        data = await self._request("GET", self._file_url(project_id, path), params={"ref": ref})
        if not isinstance(data, dict) or "content" not in data:
            msg = f"GitLab returned no content for {path!r}"
            raise RemoteInconsistencyError(msg)
        return RemoteFile(
            path=data.get("file_path", path),
            content=data["content"],
            encoding=data.get("encoding", "base64"),
        )

    async def create_file(
        self,
        project_id: str | int,
        path: str,
        content: str,
        branch: str,
        message: str,
        *,
        encoding: str = "text",
    ) -> None:
        await self._request(
            "POST",
            self._file_url(project_id, path),
            json={
                "branch": branch,
                "content": content,
                "commit_message": message,
                "encoding": encoding,
            },
        )

    async def update_file(
        self,
        project_id: str | int,
        path: str,
        content: str,
        branch: str,
        message: str,
        *,
        encoding: str = "text",
    ) -> None:
        await self._request(
            "PUT",
            self._file_url(project_id, path),
            json={
                "branch": branch,
                "content": content,
                "commit_message": message,
                "encoding": encoding,
            },
        )

    async def commit_files(
        self,
        project_id: str | int,
        branch: str,
        message: str,
        actions: Sequence[FileAction],
    ) -> dict[str, Any]:
        """Apply every action in one commit. GitLab applies all of them or none."""
        data = await self._request(
            "POST",
            f"/projects/{encode_path(project_id)}/repository/commits",
            json={
                "branch": branch,
                "commit_message": message,
                "actions": [action.to_payload() for action in actions],
            },
        )
        result: dict[str, Any] = data or {}
        logger.info(
            "Committed %d file(s) to %s@%s (commit=%s)",
            len(actions),
            project_id,
            branch,
            result.get("id"),
        )
        return result

    async def push_file(
        self,
        project_id: str | int,
        path: str,
        content: str,
        branch: str,
        message: str,
        *,
        check_existing: bool = True,
        encoding: str = "text",
    ) -> dict[str, Any]:
        """Create or update a single file in its own commit.

        With ``check_existing`` the file is probed first to pick the action;
        without it the file is always created.
        """
        action = FileActionType.CREATE
        if check_existing and await self.file_exists(project_id, path, branch):
            action = FileActionType.UPDATE
        return await self.commit_files(
            project_id,
            branch,
            message,
            [FileAction(action=action, path=path, content=content, encoding=encoding)],
        )

    async def list_tree(self, project_id: str | int, ref: str) -> list[TreeEntry]:
        """List every file (blob) in the repository, following pagination."""
        entries: list[TreeEntry] = []
        page: int | None = 1
        while page is not None:
            response = await self._send(
                "GET",
                f"/projects/{encode_path(project_id)}/repository/tree",
                params={
                    "ref": ref,
                    "recursive": "true",
                    "per_page": TREE_PAGE_SIZE,
                    "page": page,
                },
            )
            for item in response.json():
                if item.get("type") == "blob":
                    entries.append(TreeEntry(path=item["path"], sha=item.get("id", "")))
            page = _next_page(response, page)
        return entries

    # ── Repository copy ──────────────────────────────────

    async def _write_copied_file(
        self, project_id: str | int, path: str, content: str, branch: str
    ) -> None:
        message = f"Copy {path} from source project"
        try:
            await self.create_file(project_id, path, content, branch, message, encoding="base64")
        except GitlabApiError as exc:
            already_exists = "already exists" in (exc.original_message or "").lower()
            if exc.http_status != HTTP_BAD_REQUEST or not already_exists:
                raise
            await self.update_file(project_id, path, content, branch, message, encoding="base64")

    async def clone_repo_contents(
        self,
        source_project: str | int,
        target_project: str | int,
        *,
        source_ref: str = DEFAULT_BRANCH,
        target_branch: str = DEFAULT_BRANCH,
        on_progress: Callable[[float], None] | None = None,
    ) -> CloneResult:
        """Copy every file of ``source_project`` into ``target_project``.

        Files are written one at a time through a serial queue. A file that
        disappeared from the source (404) is skipped; any other failure aborts
        the copy.
        """
        files = await self.list_tree(source_project, source_ref)
        total = len(files)
        logger.info(
            "Copying %d file(s) from project %s to %s", total, source_project, target_project
        )

        self.backoff.reset_request_count()
        result = CloneResult()
        queue = SerialTaskQueue()
        aborted = False

        async def copy_file(index: int, entry: TreeEntry) -> None:
            nonlocal aborted
            if aborted:
                return
            try:
                remote = await self.get_file_content(source_project, entry.path, source_ref)
            except GitlabApiError as exc:
                if not exc.is_not_found:
                    aborted = True
                    raise
                logger.warning("File %s not found in source project, skipping", entry.path)
                result.skipped.append(entry.path)
            else:
                try:
                    await self._write_copied_file(
                        target_project, entry.path, remote.content, target_branch
                    )
                except Exception:
                    aborted = True
                    raise
                result.copied.append(entry.path)

            if (index + 1) % COPY_BATCH_SIZE == 0:
                self.backoff.reset_request_count()
            if on_progress is not None:
                on_progress((index + 1) / total * 100)

        futures = [queue.add(functools.partial(copy_file, i, entry)) for i, entry in enumerate(files)]
        try:
            for future in futures:
                await future
        except BaseException:
            queue.close()
            raise

        if total == 0 and on_progress is not None:
            on_progress(100.0)
        return result

    # ── Token ────────────────────────────────────────────

    async def get_current_user(self) -> dict[str, Any]:
        data: dict[str, Any] = await self._request("GET", "/user")
        return data

    async def validate_token(self) -> bool:
        """Return True if the token authenticates."""
        try:
            await self.get_current_user()
        except GitlabApiError:
            logger.warning("GitLab token validation failed", exc_info=True)
            return False
        return True

    async def validate_token_and_user(self, username: str) -> TokenValidation:
        """Check that the token authenticates as ``username``."""
        try:
            user = await self.get_current_user()
        except GitlabApiError as exc:
            if exc.is_not_found:
                return TokenValidation(is_valid=False, error="Invalid GitLab username or group")
            return TokenValidation(is_valid=False, error="Invalid GitLab token")

        login = user.get("username")
        if not login:
            return TokenValidation(is_valid=False, error="Invalid GitLab token")
        if login.lower() == username.lower():
            return TokenValidation(is_valid=True, username=login)
        return TokenValidation(
            is_valid=False,
            username=login,
            error="Token can only be used with your GitLab username or groups you have access to",
        )
