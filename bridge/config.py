"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """GitLab bridge settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False
    api_key: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/gitlab_bridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=list)

    # GitLab
    gitlab_api_url: str = "https://gitlab.com/api/v4"
    gitlab_token: str = ""
    gitlab_owner: str = ""
    gitlab_timeout_seconds: float = Field(default=30.0, gt=0)

    # Request pacing and throttling recovery
    rate_limit_burst: int = Field(default=10, ge=0)
    rate_limit_min_interval_seconds: float = Field(default=1.0, ge=0)
    rate_limit_max_retries: int = Field(default=5, ge=0)
    rate_limit_max_backoff_seconds: float = Field(default=60.0, gt=0)

    # Archive uploads
    max_archive_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    sync_timeout_seconds: float = Field(default=120.0, gt=0)
    status_reset_delay_seconds: float = Field(default=5.0, ge=0)
    default_commit_message: str = "Commit from Bolt to GitLab"
    default_branch: str = "main"

    # Staging repositories
    temp_repo_sweep_interval_seconds: float = Field(default=30.0, gt=0)
    temp_repo_max_age_seconds: float = Field(default=60.0, ge=0)
    temp_repo_import_timeout_seconds: float = Field(default=300.0, gt=0)
    import_url_template: str = "https://bolt.new/~/gitlab.com/{owner}/{repo}"

    @property
    def gitlab_configured(self) -> bool:
        """True when both a token and an owner are available."""
        return bool(self.gitlab_token and self.gitlab_owner)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.api_key) < 32:
            violations.append("API_KEY must be set to a high-entropy value (>=32 chars)")
        if self.gitlab_api_url.startswith("http://"):
            violations.append("GITLAB_API_URL must use https outside debug mode")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
