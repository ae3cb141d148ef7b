"""Jira API access: gateway, resilience primitives and named queries."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from .client import SERVICE_NAME, HealthStatus, JiraClient
from .fetchers import JiraFetcher, ProjectData
from .jql import build_jql, build_query_params, in_clause, jql_and
from .pagination import (
    Batcher,
    BatchOutcome,
    FailedChunk,
    Page,
    PaginatedResult,
    Paginator,
    page_from_payload,
)
from .retry import RetryPolicy, with_retry

__all__ = [
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryPolicy",
    "with_retry",
    # Gateway
    "SERVICE_NAME",
    "HealthStatus",
    "JiraClient",
    # Paging
    "Batcher",
    "BatchOutcome",
    "FailedChunk",
    "Page",
    "PaginatedResult",
    "Paginator",
    "page_from_payload",
    # Queries
    "JiraFetcher",
    "ProjectData",
    "build_jql",
    "build_query_params",
    "in_clause",
    "jql_and",
]
