"""Async Jira REST API gateway built on httpx.

Every logical call is validated, gated by the circuit breaker, bounded by a
timeout, classified on failure, and retried per the retry policy.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from jira_sync_db.errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    SyncError,
    classify_exception,
)
from jira_sync_db.logging import get_logger

from .jql import build_query_params
from .retry import RetryPolicy

if TYPE_CHECKING:
    from jira_sync_db.config import Settings

    from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry

logger = get_logger(__name__)

SERVICE_NAME = "jira_api"


@dataclass
class HealthStatus:
    """Result of probing the remote API."""

    ok: bool
    error: SyncError | None = None
    user: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error.to_dict() if self.error else None,
            "user": (self.user or {}).get("displayName"),
        }


def _path(value: str | int) -> str:
    return quote(str(value), safe="")


def _error_messages(payload: Any) -> list[str]:
    """Collect messages from a Jira error payload."""
    if not isinstance(payload, dict):
        return []
    messages = [str(m) for m in payload.get("errorMessages") or []]
    errors = payload.get("errors")
    if isinstance(errors, dict):
        messages.extend(f"{field}: {msg}" for field, msg in errors.items())
    return messages


class JiraClient:
    """Async Jira API client.

    Usage:
        async with JiraClient(settings, breakers) as client:
            projects = await client.get_projects()

    Or without context manager:
        client = JiraClient(settings, breakers)
        me = await client.get_myself()
        await client.close()
    """

    def __init__(
        self,
        settings: Settings,
        breakers: CircuitBreakerRegistry,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Application settings (URL, credentials, timeouts)
            breakers: Registry providing the breaker for this service
            transport: Optional httpx transport (tests use httpx.MockTransport)
            retry_policy: Override for the configured retry policy
        """
        self._settings = settings
        cb = settings.circuit_breaker
        self._breaker = breakers.get(SERVICE_NAME, cb.failure_threshold, cb.timeout_ms)
        self._retry = retry_policy or RetryPolicy.from_config(settings.retry)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._settings.remote_base_url,
                auth=httpx.BasicAuth(self._settings.remote_email, self._settings.remote_api_token),
                headers={"Accept": "application/json"},
                transport=self._transport,
                timeout=None,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> JiraClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Core request path
    # -------------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        context: str | None = None,
        retry: bool = True,
    ) -> Any:
        """Issue a GET request and return the decoded JSON payload.

        Args:
            endpoint: Path relative to the base URL (e.g. /rest/api/2/project)
            params: Query parameters (sequences are comma-joined)
            timeout: Seconds before the call fails with TIMEOUT
            context: Label for logs and errors (defaults to the endpoint)
            retry: Apply the retry policy

        Raises:
            ConfigError: Settings incomplete, no request made
            CircuitOpenError: Breaker open, no request made
            SyncError: Classified failure (possibly RetryExhaustedError)
        """
        label = context or endpoint
        seconds = timeout or self._settings.http.default_timeout_s

        async def attempt() -> Any:
            return await self._dispatch(endpoint, params, seconds, label)

        if not retry:
            return await attempt()
        return await self._retry.run(attempt, context=label)

    async def _dispatch(
        self,
        endpoint: str,
        params: dict[str, Any] | None,
        timeout: float,
        label: str,
    ) -> Any:
        self._settings.ensure_valid()
        if not self._breaker.can_execute():
            raise CircuitOpenError(
                f"Circuit breaker '{self._breaker.name}' is open",
                context=label,
                details={"service": self._breaker.name},
            )

        logger.debug("GET {} {}", endpoint, params or {})
        try:
            # Cancelling on expiry guarantees a late response is never delivered
            async with asyncio.timeout(timeout):
                response = await self._client().get(endpoint, params=build_query_params(params or {}))
        except TimeoutError:
            self._breaker.record_failure()
            raise RequestTimeoutError(
                f"Request timed out after {timeout:g}s",
                context=label,
                details={"endpoint": endpoint},
            ) from None
        except httpx.TimeoutException as exc:
            self._breaker.record_failure()
            raise RequestTimeoutError(f"Request timed out: {exc}", context=label) from exc
        except httpx.TransportError as exc:
            self._breaker.record_failure()
            raise NetworkError(f"Network error: {exc}", context=label) from exc

        return self._handle_response(response, label)

    def _handle_response(self, response: httpx.Response, label: str) -> Any:
        """Decode a response, mapping failures to typed errors.

        Raises:
            AuthError: 401/403
            ParseError: Body is not JSON
            ApiError: Error payload or non-2xx status
        """
        status = response.status_code
        if status in (401, 403):
            self._breaker.record_failure()
            raise AuthError(
                f"Authentication failed ({status} {response.reason_phrase})",
                context=label,
                details={"status_code": status},
            )

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            self._breaker.record_failure()
            raise ParseError(
                "Failed to decode JSON response",
                context=label,
                details={"status_code": status, "body": response.text[:200]},
            ) from None

        messages = _error_messages(payload)
        if response.is_error or (isinstance(payload, dict) and payload.get("errorMessages")):
            self._breaker.record_failure()
            raise ApiError(
                "; ".join(messages) or f"HTTP {status} {response.reason_phrase}",
                status_code=status,
                context=label,
            )

        self._breaker.record_success()
        return payload

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def get_myself(self) -> dict[str, Any]:
        """Currently authenticated user."""
        return await self.request("/rest/api/2/myself", context="myself")

    async def health_check(self) -> HealthStatus:
        """Call the API once with a short timeout and no retries."""
        try:
            user = await self.request(
                "/rest/api/2/myself",
                timeout=self._settings.http.health_timeout_s,
                context="health_check",
                retry=False,
            )
        except Exception as exc:
            error = classify_exception(exc, context="health_check")
            logger.warning("Health check failed: {}", error.message)
            return HealthStatus(ok=False, error=error)
        return HealthStatus(ok=True, user=user)

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def get_projects(self) -> list[dict[str, Any]]:
        payload = await self.request("/rest/api/2/project", context="projects")
        return list(payload or [])

    async def get_project(self, project_key: str) -> dict[str, Any]:
        return await self.request(
            f"/rest/api/2/project/{_path(project_key)}",
            context=f"project:{project_key}",
        )

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    async def search_issues(
        self,
        jql: str,
        *,
        fields: list[str] | str | None = None,
        expand: str | None = None,
        start_at: int = 0,
        max_results: int = 100,
        context: str | None = None,
    ) -> dict[str, Any]:
        """One page of an issue search."""
        return await self.request(
            "/rest/api/2/search",
            {
                "jql": jql,
                "fields": fields,
                "expand": expand,
                "startAt": start_at,
                "maxResults": max_results,
            },
            timeout=self._settings.http.batch_timeout_s,
            context=context or "search",
        )

    async def get_issue(
        self,
        issue_key: str,
        *,
        fields: list[str] | str | None = None,
        expand: str | None = None,
    ) -> dict[str, Any]:
        return await self.request(
            f"/rest/api/2/issue/{_path(issue_key)}",
            {"fields": fields, "expand": expand},
            context=f"issue:{issue_key}",
        )

    async def get_issue_changelog(
        self, issue_key: str, *, start_at: int = 0, max_results: int = 100
    ) -> dict[str, Any]:
        return await self.request(
            f"/rest/api/2/issue/{_path(issue_key)}/changelog",
            {"startAt": start_at, "maxResults": max_results},
            context=f"changelog:{issue_key}",
        )

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def search_users(self, *, start_at: int = 0, max_results: int = 50) -> list[dict[str, Any]]:
        payload = await self.request(
            "/rest/api/3/users/search",
            {"startAt": start_at, "maxResults": max_results},
            context="users",
        )
        return list(payload or [])

    async def find_users(self, query: str, *, max_results: int = 50) -> list[dict[str, Any]]:
        payload = await self.request(
            "/rest/api/2/user/search",
            {"query": query, "maxResults": max_results},
            context="user_search",
        )
        return list(payload or [])

    async def get_user(self, account_id: str) -> dict[str, Any]:
        return await self.request(
            "/rest/api/2/user",
            {"accountId": account_id},
            context=f"user:{account_id}",
        )

    async def get_assignable_users(
        self, project_key: str, *, start_at: int = 0, max_results: int = 50
    ) -> list[dict[str, Any]]:
        payload = await self.request(
            "/rest/api/2/user/assignable/search",
            {"project": project_key, "startAt": start_at, "maxResults": max_results},
            context=f"assignable:{project_key}",
        )
        return list(payload or [])

    # -------------------------------------------------------------------------
    # Agile (boards and sprints)
    # -------------------------------------------------------------------------

    async def get_boards(self, project_key: str) -> dict[str, Any]:
        return await self.request(
            "/rest/agile/1.0/board",
            {"projectKeyOrId": project_key},
            context=f"boards:{project_key}",
        )

    async def get_board_sprints(
        self,
        board_id: int,
        *,
        state: str | None = None,
        start_at: int = 0,
        max_results: int = 50,
    ) -> dict[str, Any]:
        return await self.request(
            f"/rest/agile/1.0/board/{board_id}/sprint",
            {"state": state, "startAt": start_at, "maxResults": max_results},
            context=f"sprints:{board_id}",
        )

    async def get_sprint(self, sprint_id: int) -> dict[str, Any]:
        return await self.request(
            f"/rest/agile/1.0/sprint/{sprint_id}",
            context=f"sprint:{sprint_id}",
        )
