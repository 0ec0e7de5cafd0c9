"""Tests for application configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from bridge.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.gitlab_api_url == "https://gitlab.com/api/v4"
        assert s.max_archive_bytes == 50 * 1024 * 1024
        assert s.temp_repo_max_age_seconds == 60
        assert s.temp_repo_sweep_interval_seconds == 30
        assert s.rate_limit_burst == 10
        assert s.default_commit_message == "Commit from Bolt to GitLab"

    def test_settings_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITLAB_TOKEN", "glpat-env")
        monkeypatch.setenv("GITLAB_OWNER", "carol")
        monkeypatch.setenv("SYNC_TIMEOUT_SECONDS", "15")
        s = Settings(_env_file=None)
        assert s.gitlab_token == "glpat-env"
        assert s.gitlab_owner == "carol"
        assert s.sync_timeout_seconds == 15.0

    def test_gitlab_configured_needs_token_and_owner(self) -> None:
        assert not Settings(_env_file=None, gitlab_token="t").gitlab_configured
        assert not Settings(_env_file=None, gitlab_owner="o").gitlab_configured
        assert Settings(_env_file=None, gitlab_token="t", gitlab_owner="o").gitlab_configured

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.gitlab_configured
        assert test_settings.rate_limit_min_interval_seconds == 0


class TestRuntimeSecurity:
    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_production_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="API_KEY"):
            Settings(_env_file=None).validate_runtime_security()

    def test_production_rejects_plain_http_gitlab(self) -> None:
        s = Settings(_env_file=None, api_key="k" * 32, gitlab_api_url="http://gitlab.local/api/v4")
        with pytest.raises(ValueError, match="GITLAB_API_URL"):
            s.validate_runtime_security()

    def test_production_settings_accepted(self) -> None:
        Settings(_env_file=None, api_key="k" * 32).validate_runtime_security()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from bridge.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "bridge.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            if original_settings is None:
                del app.state.settings
            else:
                app.state.settings = original_settings
