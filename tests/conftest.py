"""Pytest configuration and shared fixtures.

Usage Guide:
- For store and repository tests: use the `store` / `repos` fixtures
  (fresh SQLite file per test) and the row helpers in tests.factories
- For schema and ingestion tests: build payloads with the issue/sprint
  factories in tests.factories
- For gateway tests: use `make_client` with an httpx.MockTransport handler
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest

from jira_sync_db.config import RetryConfig, Settings, get_settings
from jira_sync_db.db import Repositories, Store
from jira_sync_db.jira import CircuitBreakerRegistry, JiraClient

# -----------------------------------------------------------------------------
# Test Timeline Constants
#
# The store keeps naive UTC datetimes; API payloads carry Jira's
# "+0000" offset strings. Every hardcoded date references these.
# -----------------------------------------------------------------------------

JAN_10 = datetime(2024, 1, 10, 9, 0, 0)   # Ticket created
JAN_12 = datetime(2024, 1, 12, 16, 0, 0)  # Moved to In Progress
JAN_15 = datetime(2024, 1, 15, 10, 0, 0)  # Moved to QA, sprint start
JAN_16 = datetime(2024, 1, 16, 14, 0, 0)  # Ticket updated
JAN_20 = datetime(2024, 1, 20, 12, 0, 0)  # "Now" for clock-driven tests

JAN_10_JIRA = "2024-01-10T09:00:00.000+0000"
JAN_12_JIRA = "2024-01-12T16:00:00.000+0000"
JAN_15_JIRA = "2024-01-15T10:00:00.000+0000"
JAN_16_JIRA = "2024-01-16T14:00:00.000+0000"
JAN_20_JIRA = "2024-01-20T12:00:00.000+0000"

PROJECTS = ["ABC", "DEF"]
BASE_URL = "https://example.atlassian.net"


def fixed_clock(at: datetime = JAN_20) -> Callable[[], datetime]:
    """Clock returning a constant naive UTC time."""
    return lambda: at


class MutableClock:
    """Clock that tests can move forward."""

    def __init__(self, start: datetime = JAN_20) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# -----------------------------------------------------------------------------
# Settings Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """get_settings() is cached per process; start every test clean."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_settings(state_dir: Path, **overrides) -> Settings:
    """Complete settings pointing at a temporary state directory."""
    values = {
        "remote_base_url": BASE_URL,
        "remote_email": "sync-bot@example.com",
        "remote_api_token": "test-token",
        "configured_projects": list(PROJECTS),
        "state_dir": state_dir,
        "retry": RetryConfig(max_attempts=3, delay_ms=0),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Valid settings with two configured projects and no retry delay."""
    return make_settings(tmp_path / "state")


@pytest.fixture
def incomplete_settings(tmp_path: Path) -> Settings:
    """Settings missing every remote credential."""
    return Settings(_env_file=None, state_dir=tmp_path / "state")


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'db' / 'test.db'}"


@pytest.fixture
async def store(database_url: str):
    """Store over a fresh SQLite file with the full schema.

    A file database (rather than :memory:) matches production pooling, so
    concurrent readers never share one connection.
    """
    instance = Store(database_url, max_attempts=2, retry_delay_ms=0)
    await instance.init_schema()
    yield instance
    await instance.close()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def repos(store: Store, clock: MutableClock) -> Repositories:
    """Every repository over the test store, stamped with the test clock."""
    return Repositories(store, clock=clock)


# -----------------------------------------------------------------------------
# Gateway Fixtures
# -----------------------------------------------------------------------------
def make_client(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
    breakers: CircuitBreakerRegistry | None = None,
) -> JiraClient:
    """JiraClient whose requests are answered by `handler`."""
    return JiraClient(
        settings,
        breakers if breakers is not None else CircuitBreakerRegistry.from_config(settings.circuit_breaker),
        transport=httpx.MockTransport(handler),
    )
