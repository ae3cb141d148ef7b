"""Configuration settings for Jira Sync DB."""

import json
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from jira_sync_db.errors import ConfigError
from jira_sync_db.status import StatusCategory

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def default_state_dir() -> Path:
    """Per-user state directory ($XDG_STATE_HOME/jira-sync)."""
    base = os.environ.get("XDG_STATE_HOME")
    root = Path(base) if base else Path.home() / ".local" / "state"
    return root / "jira-sync"


def default_status_mappings() -> dict[StatusCategory, list[str]]:
    """Seed mapping of raw status names per category."""
    return {
        StatusCategory.NOT_STARTED: ["Open", "Backlog", "To Do", "New"],
        StatusCategory.IN_PROGRESS: ["In Progress", "In Development", "In Code Review"],
        StatusCategory.QA: ["In QA", "Testing", "Ready for QA", "QA Review"],
        StatusCategory.DONE: ["Done", "Released", "Closed", "Resolved"],
    }


class RetryConfig(BaseModel):
    """Configuration for retrying transient remote failures."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per logical call (including the first)",
    )
    delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Milliseconds to wait between attempts",
    )
    backoff_multiplier: float = Field(
        default=1.0,
        ge=1.0,
        le=10.0,
        description="Delay multiplier per attempt (1.0 = fixed delay)",
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for the remote API circuit breaker."""

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before the circuit opens",
    )
    timeout_ms: int = Field(
        default=60000,
        ge=0,
        description="Milliseconds an open circuit waits before allowing a trial call",
    )


class HttpConfig(BaseModel):
    """Per-call timeouts for the API gateway."""

    default_timeout_s: float = Field(default=30.0, gt=0, description="Default call timeout")
    batch_timeout_s: float = Field(default=45.0, gt=0, description="Timeout for search/batch calls")
    health_timeout_s: float = Field(default=10.0, gt=0, description="Timeout for health checks")


class PaginationConfig(BaseModel):
    """Configuration for pagination and identifier batching.

    Controls page sizes, safety ceilings, and chunk concurrency.
    """

    page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Items per page for listing endpoints (users, sprints)",
    )
    search_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Items per page for issue searches",
    )
    max_pages: int = Field(
        default=50,
        ge=1,
        description="Page ceiling before a listing is treated as runaway",
    )
    batch_chunk_size: int = Field(
        default=100,
        ge=1,
        description="Identifiers per chunk for multi-issue queries",
    )
    changelog_chunk_size: int = Field(
        default=50,
        ge=1,
        description="Identifiers per chunk for changelog queries",
    )
    max_concurrent_requests: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum chunk queries in flight at once",
    )


class StoreConfig(BaseModel):
    """Configuration for local store retries."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts per store operation")
    retry_delay_ms: int = Field(default=500, ge=0, description="Delay between store attempts")


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Remote API
    # --------------------------------------------------------------------------
    remote_base_url: str = Field(
        default="",
        description="Base URL of the Jira instance (https://example.atlassian.net)",
    )
    remote_email: str = Field(
        default="",
        description="Account email used for basic auth",
    )
    remote_api_token: str = Field(
        default="",
        description="API token used for basic auth",
    )
    configured_projects: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Project keys to sync (JSON list or comma-separated)",
    )

    # Custom field ids differ per Jira instance
    story_points_field: str = Field(default="customfield_10016")
    sprint_field: str = Field(default="customfield_10020")
    epic_link_field: str = Field(default="customfield_10008")

    # --------------------------------------------------------------------------
    # Freshness & Analysis
    # --------------------------------------------------------------------------
    cache_ttl_long: int = Field(
        default=5 * 24 * 3600,
        ge=0,
        description="Seconds before projects/users are refetched",
    )
    cache_ttl_short: int = Field(
        default=12 * 3600,
        ge=0,
        description="Seconds before epics/sprints are refetched",
    )
    stale_days_threshold: int = Field(
        default=3,
        ge=1,
        description="Days without update before an open ticket is stale",
    )
    qa_bounce_threshold: int = Field(
        default=3,
        ge=1,
        description="QA rejections before a ticket is flagged",
    )
    sprint_lookback_count: int = Field(
        default=3,
        ge=1,
        description="Completed sprints considered for velocity",
    )
    status_mappings: dict[StatusCategory, list[str]] = Field(
        default_factory=default_status_mappings,
        description="Raw status names per canonical category",
    )

    # --------------------------------------------------------------------------
    # Storage
    # --------------------------------------------------------------------------
    state_dir: Path = Field(
        default_factory=default_state_dir,
        description="Directory holding the database and cache blob",
    )
    database_url: str | None = Field(
        default=None,
        description="Override for the async SQLite connection string",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )

    @field_validator("remote_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("configured_projects", mode="before")
    @classmethod
    def _split_projects(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                return json.loads(text)
            return [part.strip() for part in text.split(",") if part.strip()]
        return value

    # --------------------------------------------------------------------------
    # Derived paths
    # --------------------------------------------------------------------------
    @property
    def db_path(self) -> Path:
        """SQLite database file used when no database_url override is set."""
        return self.state_dir / "db" / "jira_sync.db"

    @property
    def cache_path(self) -> Path:
        """JSON cache blob location."""
        return self.state_dir / "cache" / "cache.json"

    @property
    def resolved_database_url(self) -> str:
        return self.database_url or f"sqlite+aiosqlite:///{self.db_path}"

    # --------------------------------------------------------------------------
    # Validation
    # --------------------------------------------------------------------------
    def validate_remote(self) -> list[str]:
        """List every problem that prevents calling the remote API."""
        problems: list[str] = []
        if not self.remote_base_url:
            problems.append("remote_base_url is required")
        elif not _URL_PATTERN.match(self.remote_base_url):
            problems.append("remote_base_url must start with http:// or https://")
        if not self.remote_email:
            problems.append("remote_email is required")
        if not self.remote_api_token:
            problems.append("remote_api_token is required")
        if not self.configured_projects:
            problems.append("configured_projects must list at least one project")
        return problems

    def ensure_valid(self) -> None:
        """Raise ConfigError if the remote configuration is incomplete."""
        problems = self.validate_remote()
        if problems:
            raise ConfigError(
                "Invalid configuration: " + "; ".join(problems),
                problems=problems,
                context="config",
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
