"""Tests for configuration settings."""

from pathlib import Path

import pytest

from jira_sync_db.config import Settings, get_settings
from jira_sync_db.errors import ConfigError, ErrorType
from jira_sync_db.status import StatusCategory


class TestSettingsDefaults:
    """Tests for default values."""

    def test_settings_defaults(self):
        """Test default values are correct."""
        settings = Settings(_env_file=None)

        assert settings.remote_base_url == ""
        assert settings.configured_projects == []
        assert settings.environment == "development"
        assert settings.log_level == "INFO"
        assert settings.database_url is None

    def test_custom_field_defaults(self):
        """Instance-specific custom fields have the Jira Cloud defaults."""
        settings = Settings(_env_file=None)

        assert settings.story_points_field == "customfield_10016"
        assert settings.sprint_field == "customfield_10020"
        assert settings.epic_link_field == "customfield_10008"

    def test_freshness_and_analysis_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.cache_ttl_long == 5 * 24 * 3600
        assert settings.cache_ttl_short == 12 * 3600
        assert settings.stale_days_threshold == 3
        assert settings.qa_bounce_threshold == 3
        assert settings.sprint_lookback_count == 3

    def test_resilience_defaults(self):
        """Retry, breaker and paging defaults."""
        settings = Settings(_env_file=None)

        assert settings.retry.max_attempts == 3
        assert settings.retry.delay_ms == 1000
        assert settings.circuit_breaker.failure_threshold == 5
        assert settings.circuit_breaker.timeout_ms == 60000
        assert settings.http.default_timeout_s == 30
        assert settings.http.health_timeout_s == 10
        assert settings.pagination.page_size == 50
        assert settings.pagination.batch_chunk_size == 100
        assert settings.pagination.max_pages == 50

    def test_status_mappings_default(self):
        """Every category has seed status names."""
        mappings = Settings(_env_file=None).status_mappings

        assert set(mappings) == set(StatusCategory)
        assert "Done" in mappings[StatusCategory.DONE]
        assert "In QA" in mappings[StatusCategory.QA]


class TestSettingsFromEnv:
    """Tests for environment variable loading."""

    def test_settings_from_env(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("REMOTE_BASE_URL", "https://acme.atlassian.net/")
        monkeypatch.setenv("REMOTE_EMAIL", "bot@acme.test")
        monkeypatch.setenv("REMOTE_API_TOKEN", "secret")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = Settings(_env_file=None)

        assert settings.remote_base_url == "https://acme.atlassian.net"
        assert settings.remote_email == "bot@acme.test"
        assert settings.remote_api_token == "secret"
        assert settings.environment == "production"
        assert settings.log_level == "DEBUG"

    def test_configured_projects_comma_separated(self, monkeypatch):
        monkeypatch.setenv("CONFIGURED_PROJECTS", "ABC, DEF ,GHI")

        settings = Settings(_env_file=None)

        assert settings.configured_projects == ["ABC", "DEF", "GHI"]

    def test_configured_projects_json_list(self, monkeypatch):
        monkeypatch.setenv("CONFIGURED_PROJECTS", '["ABC", "DEF"]')

        settings = Settings(_env_file=None)

        assert settings.configured_projects == ["ABC", "DEF"]

    def test_nested_settings_from_env(self, monkeypatch):
        """Nested sections use the __ delimiter."""
        monkeypatch.setenv("RETRY__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CIRCUIT_BREAKER__FAILURE_THRESHOLD", "2")
        monkeypatch.setenv("PAGINATION__PAGE_SIZE", "25")

        settings = Settings(_env_file=None)

        assert settings.retry.max_attempts == 5
        assert settings.circuit_breaker.failure_threshold == 2
        assert settings.pagination.page_size == 25

    def test_settings_environment_validation(self, monkeypatch):
        """Test that invalid environment value is rejected."""
        monkeypatch.setenv("ENVIRONMENT", "invalid")

        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_retry_bounds_validated(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, retry={"max_attempts": 0})


class TestDerivedPaths:
    """Tests for state directory derived paths."""

    def test_paths_under_state_dir(self, tmp_path: Path):
        settings = Settings(_env_file=None, state_dir=tmp_path)

        assert settings.db_path == tmp_path / "db" / "jira_sync.db"
        assert settings.cache_path == tmp_path / "cache" / "cache.json"
        assert settings.resolved_database_url == f"sqlite+aiosqlite:///{tmp_path / 'db' / 'jira_sync.db'}"

    def test_database_url_override(self, tmp_path: Path):
        settings = Settings(_env_file=None, state_dir=tmp_path, database_url="sqlite+aiosqlite:///:memory:")

        assert settings.resolved_database_url == "sqlite+aiosqlite:///:memory:"

    def test_state_dir_follows_xdg(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))

        settings = Settings(_env_file=None)

        assert settings.state_dir == tmp_path / "jira-sync"


class TestRemoteValidation:
    """Tests for validate_remote / ensure_valid."""

    def test_complete_settings_have_no_problems(self, settings):
        assert settings.validate_remote() == []
        settings.ensure_valid()

    def test_lists_every_problem(self):
        problems = Settings(_env_file=None).validate_remote()

        assert len(problems) == 4
        assert any("remote_base_url" in p for p in problems)
        assert any("configured_projects" in p for p in problems)

    def test_rejects_non_http_url(self, settings):
        settings.remote_base_url = "ftp://example.com"

        problems = settings.validate_remote()

        assert problems == ["remote_base_url must start with http:// or https://"]

    def test_ensure_valid_raises_config_error(self, incomplete_settings):
        with pytest.raises(ConfigError) as exc_info:
            incomplete_settings.ensure_valid()

        error = exc_info.value
        assert error.error_type is ErrorType.CONFIG
        assert error.retryable is False
        assert len(error.problems) == 4
        assert error.context == "config"


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_cached(self):
        """Test that get_settings returns cached instance."""
        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2
