"""CLI client for the GitLab bridge server."""

from __future__ import annotations

import argparse
import io
import json
import os
import sys
import zipfile
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

CONFIG_FILE = ".gitlab-bridge.json"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}
# Never packed into an upload archive.
_SKIPPED_DIRS = {".git"}


class BridgeClientError(Exception):
    """The server rejected a request."""

    def __init__(self, status_code: int, detail: str, kind: str | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.kind = kind


def build_archive(project_dir: Path) -> bytes:
    """Zip a project directory in memory.

    Paths are stored relative to ``project_dir`` with forward slashes. The
    ``.git`` directory and the CLI's own config file are left out; the server
    applies ignore rules itself.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for root, dirs, files in os.walk(project_dir):
            dirs[:] = sorted(d for d in dirs if d not in _SKIPPED_DIRS)
            for filename in sorted(files):
                full = Path(root) / filename
                rel = full.relative_to(project_dir).as_posix()
                if rel == CONFIG_FILE:
                    continue
                archive.write(full, rel)
    return buffer.getvalue()


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    detail: Any = resp.reason_phrase
    kind: str | None = None
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        detail = data.get("detail", detail)
        kind = data.get("kind")
    if isinstance(detail, list):
        detail = "; ".join(f"{e.get('field')}: {e.get('message')}" for e in detail)
    raise BridgeClientError(resp.status_code, str(detail), kind)


class BridgeClient:
    """Client for the GitLab bridge HTTP API."""

    def __init__(
        self,
        server_url: str,
        api_key: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        # Uploads and imports run to completion before the server answers.
        self.client = httpx.Client(
            base_url=self.server_url, headers=headers, timeout=330.0, transport=transport
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> BridgeClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _json(self, resp: httpx.Response) -> Any:
        _raise_for_status(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def link(self, project_id: str, repo_name: str, branch: str = "main") -> dict[str, Any]:
        """Link a project to a GitLab repository."""
        result: dict[str, Any] = self._json(
            self.client.put(
                f"/api/projects/{project_id}",
                json={"repo_name": repo_name, "branch": branch},
            )
        )
        return result

    def upload(self, project_id: str, archive: bytes, commit_message: str = "") -> dict[str, Any]:
        """Upload a project archive."""
        data = {"project_id": project_id}
        if commit_message:
            data["commit_message"] = commit_message
        result: dict[str, Any] = self._json(
            self.client.post(
                "/api/sync",
                data=data,
                files={"archive": ("project.zip", archive, "application/zip")},
            )
        )
        return result

    def status(self) -> dict[str, Any]:
        result: dict[str, Any] = self._json(self.client.get("/api/status"))
        return result

    def import_repo(self, source_repo_name: str) -> dict[str, Any]:
        """Stage a private repository in a public temporary repository."""
        result: dict[str, Any] = self._json(
            self.client.post(
                "/api/temp-repos/import",
                json={"source_repo_name": source_repo_name},
            )
        )
        return result

    def cleanup(self) -> dict[str, Any]:
        """Delete every staging repository."""
        result: dict[str, Any] = self._json(self.client.post("/api/temp-repos/cleanup"))
        return result

    def list_temp_repos(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._json(self.client.get("/api/temp-repos"))
        return result


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, str]:
    """Load client config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    """Save client config to file."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def _print_status(status: dict[str, Any]) -> None:
    print(f"Status:   {status.get('status')}")
    print(f"Progress: {status.get('progress', 0):.0f}%")
    if status.get("message"):
        print(f"Message:  {status['message']}")


def run_command(args: argparse.Namespace, client: BridgeClient, project_dir: Path) -> None:
    """Execute one command against the server."""
    config = load_config(project_dir)
    project_id = args.project_id or config.get("project_id")

    if args.command == "link":
        if not project_id:
            raise ValueError("No project id configured. Pass --project-id or run init.")
        setting = client.link(project_id, args.repo_name, args.branch)
        print(f"Linked {project_id} to {setting['repo_name']}@{setting['branch']}")

    elif args.command == "upload":
        if not project_id:
            raise ValueError("No project id configured. Pass --project-id or run init.")
        archive = build_archive(project_dir)
        print(f"Uploading {len(archive)} bytes from {project_dir}...")
        result = client.upload(project_id, archive, args.message or "")
        for action in result.get("actions", []):
            marker = "+" if action["action"] == "create" else "~"
            print(f"  {marker} {action['path']}")
        print(result["message"])
        if result.get("commit_id"):
            print(f"Commit: {result['commit_id']} on {result['repo_name']}@{result['branch']}")

    elif args.command == "import":
        result = client.import_repo(args.source_repo_name)
        print(f"Staged {args.source_repo_name} as {result['temp_repo_name']}")
        print(f"  {result['files_copied']} file(s) copied, {result['files_skipped']} skipped")
        print(f"Open: {result['import_url']}")

    elif args.command == "cleanup":
        report = client.cleanup()
        for name in report.get("deleted", []):
            print(f"  Deleted: {name}")
        for name in report.get("failed", []):
            print(f"  Failed:  {name}")
        print(
            f"Cleanup complete. {len(report.get('deleted', []))} deleted, "
            f"{len(report.get('failed', []))} failed."
        )

    elif args.command == "status":
        _print_status(client.status())

    elif args.command == "temp-repos":
        repos = client.list_temp_repos()
        if not repos:
            print("No staging repositories.")
        for repo in repos:
            state = "expired" if repo.get("expired") else "active"
            print(f"  {repo['temp_repo_name']} ({repo['original_repo_name']}, {state})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitlab-bridge",
        description="Upload projects to GitLab and stage private repositories",
    )
    parser.add_argument("--dir", "-d", default=".", help="Project directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--api-key", help="API key for the bridge server")
    parser.add_argument("--project-id", help="Project identifier (default: from config)")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Initialize client configuration")

    link = subparsers.add_parser("link", help="Link the project to a GitLab repository")
    link.add_argument("repo_name", help="GitLab repository name")
    link.add_argument("--branch", "-b", default="main", help="Target branch (default: main)")

    upload = subparsers.add_parser("upload", help="Upload the project directory")
    upload.add_argument("--message", "-m", help="Commit message")

    import_cmd = subparsers.add_parser("import", help="Stage a private repository publicly")
    import_cmd.add_argument("source_repo_name", help="Name of the private repository")

    subparsers.add_parser("cleanup", help="Delete all staging repositories now")
    subparsers.add_parser("status", help="Show the current upload status")
    subparsers.add_parser("temp-repos", help="List staging repositories")
    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    project_dir = Path(args.dir).resolve()

    if args.command == "init":
        if not args.server:
            print("Error: --server required for init")
            sys.exit(1)
        try:
            server_url = validate_server_url(args.server, args.allow_insecure_http)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        config = {"server": server_url}
        if args.project_id:
            config["project_id"] = args.project_id
        if args.api_key:
            config["api_key"] = args.api_key
        save_config(project_dir, config)
        print(f"Initialized config in {project_dir / CONFIG_FILE}")
        return

    if args.command is None:
        parser.print_help()
        return

    config = load_config(project_dir)
    configured_server_url = args.server or config.get("server")
    if not configured_server_url:
        print("Error: No server configured. Run 'gitlab-bridge init --server <url>' first.")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    api_key = args.api_key or config.get("api_key")
    with BridgeClient(server_url, api_key) as client:
        try:
            run_command(args, client, project_dir)
        except BridgeClientError as exc:
            print(f"Error ({exc.status_code}): {exc.detail}")
            sys.exit(1)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: request failed: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
