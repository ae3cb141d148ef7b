"""Tests for the jirasync CLI."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from jira_sync_db.cli.app import app
from jira_sync_db.config import get_settings
from jira_sync_db.errors import ApiError
from jira_sync_db.sync import AccessReport, PhaseError, SyncResult, SyncRunState, SyncType
from tests.conftest import JAN_20

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Point settings at a temporary state dir with no remote credentials."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for name in ("REMOTE_BASE_URL", "REMOTE_EMAIL", "REMOTE_API_TOKEN", "CONFIGURED_PROJECTS"):
        monkeypatch.setenv(name, "")
    return tmp_path / "state"


def fake_context(orchestrator):
    """Stand-in for open_context yielding only an orchestrator."""

    @asynccontextmanager
    async def open_context(**_):
        yield SimpleNamespace(orchestrator=orchestrator)

    return open_context


def finished(state: SyncRunState, errors=None) -> SyncResult:
    return SyncResult(
        sync_type=SyncType.FULL,
        state=state,
        data={"projects": [{"key": "ABC"}]},
        errors=errors or [],
        started_at=JAN_20,
        completed_at=JAN_20,
    )


class TestGlobalFlags:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "jirasync version 0.1.0" in result.stdout

    def test_help_lists_command_groups(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for group in ("sync", "db", "cache"):
            assert group in result.stdout
        assert "--verbose" in result.stdout

    def test_verbose_and_quiet_conflict(self):
        result = runner.invoke(app, ["--verbose", "--quiet", "cache", "status"])

        assert result.exit_code != 0


# -----------------------------------------------------------------------------
# db commands
# -----------------------------------------------------------------------------
class TestDbCommands:
    """Store maintenance needs no remote credentials."""

    def test_init_then_health(self, cli_env):
        init = runner.invoke(app, ["db", "init"])

        assert init.exit_code == 0
        assert "Database ready" in init.stdout
        assert (cli_env / "db" / "jira_sync.db").exists()

        health = runner.invoke(app, ["db", "health", "--format", "json"])
        assert health.exit_code == 0
        assert '"healthy": true' in health.stdout

    def test_health_of_missing_database(self, cli_env):
        result = runner.invoke(app, ["db", "health"])

        assert result.exit_code == 1
        assert not (cli_env / "db" / "jira_sync.db").exists()

    def test_repair_complete_schema(self):
        runner.invoke(app, ["db", "init"])

        result = runner.invoke(app, ["db", "repair"])

        assert result.exit_code == 0
        assert "nothing to repair" in result.stdout

    def test_seed_statuses_reloads_configured_mappings(self, monkeypatch):
        runner.invoke(app, ["db", "init"])
        monkeypatch.setenv("STATUS_MAPPINGS", '{"done": ["Shipped"]}')
        get_settings.cache_clear()  # each real CLI run is a fresh process

        result = runner.invoke(app, ["db", "seed-statuses"])

        assert result.exit_code == 0
        assert "Loaded 1 status mappings" in result.stdout
        assert "Updated 0 tickets" in result.stdout

        unmapped = runner.invoke(app, ["db", "unmapped"])
        assert unmapped.exit_code == 0

    def test_delete_unknown_project(self):
        result = runner.invoke(app, ["db", "delete-project", "XYZ", "--yes"])

        assert result.exit_code == 0
        assert "not found" in result.stdout


# -----------------------------------------------------------------------------
# sync commands
# -----------------------------------------------------------------------------
class TestSyncCommands:
    def test_missing_config_fails(self):
        result = runner.invoke(app, ["sync", "full"])

        assert result.exit_code == 1
        assert "config" in result.stdout

    def test_successful_run(self):
        orchestrator = MagicMock()
        orchestrator.full_sync = AsyncMock(return_value=finished(SyncRunState.DONE))

        with patch("jira_sync_db.cli.sync.open_context", fake_context(orchestrator)):
            result = runner.invoke(app, ["sync", "full"])

        assert result.exit_code == 0
        assert "Full sync" in result.stdout
        assert "projects" in result.stdout

    def test_critical_error_exits_nonzero(self):
        error = PhaseError("users", ApiError("Internal error", status_code=500))
        orchestrator = MagicMock()
        orchestrator.full_sync = AsyncMock(return_value=finished(SyncRunState.DONE_WITH_ERRORS, [error]))

        with patch("jira_sync_db.cli.sync.open_context", fake_context(orchestrator)):
            result = runner.invoke(app, ["sync", "full"])

        assert result.exit_code == 1
        assert "Internal error" in result.stdout

    def test_incremental_rejects_bad_date(self):
        result = runner.invoke(app, ["sync", "incremental", "--since", "yesterday"])

        assert result.exit_code == 1
        assert "Invalid date format" in result.stdout

    def test_incremental_passes_since(self):
        orchestrator = MagicMock()
        orchestrator.incremental_sync = AsyncMock(return_value=finished(SyncRunState.DONE))

        with patch("jira_sync_db.cli.sync.open_context", fake_context(orchestrator)):
            result = runner.invoke(app, ["sync", "incremental", "--since", "2024-01-15"])

        assert result.exit_code == 0
        [since] = orchestrator.incremental_sync.await_args.args
        assert since.isoformat() == "2024-01-15T00:00:00"

    def test_validate_reports_invalid_project(self):
        orchestrator = MagicMock()
        orchestrator.validate_access = AsyncMock(
            return_value=AccessReport(
                api_accessible=True,
                current_user="Sync Bot",
                valid_projects=["ABC"],
                invalid_projects=[{"key": "DEF", "error": "Not found", "type": "api"}],
            )
        )

        with patch("jira_sync_db.cli.sync.open_context", fake_context(orchestrator)):
            result = runner.invoke(app, ["sync", "validate"])

        assert result.exit_code == 1
        assert "DEF" in result.stdout


# -----------------------------------------------------------------------------
# cache commands
# -----------------------------------------------------------------------------
class TestCacheCommands:
    def test_unknown_key(self):
        result = runner.invoke(app, ["cache", "show", "tickets"])

        assert result.exit_code == 1
        assert "Unknown cache key" in result.stdout

    def test_status_without_credentials(self):
        result = runner.invoke(app, ["cache", "status"])

        assert result.exit_code == 0
        assert "Cache freshness" in result.stdout
