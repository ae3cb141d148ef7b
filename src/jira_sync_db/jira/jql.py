"""JQL and query-string construction helpers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any
from urllib.parse import urlencode

from jira_sync_db.errors import ValidationError

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def quote_value(value: Any) -> str:
    """Render a JQL literal. Numbers stay bare, everything else is quoted."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, datetime):
        return f'"{value:%Y-%m-%d %H:%M}"'
    if isinstance(value, date):
        return f'"{value:%Y-%m-%d}"'
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def in_clause(field: str, values: Iterable[Any]) -> str:
    """Build `field IN ("a", "b")`."""
    rendered = [quote_value(v) for v in values]
    if not rendered:
        raise ValidationError(f"JQL IN condition on '{field}' needs at least one value")
    return f"{field} IN ({', '.join(rendered)})"


def not_in_clause(field: str, values: Iterable[Any]) -> str:
    rendered = [quote_value(v) for v in values]
    if not rendered:
        raise ValidationError(f"JQL NOT IN condition on '{field}' needs at least one value")
    return f"{field} NOT IN ({', '.join(rendered)})"


def build_condition(field: str, value: Any) -> str:
    if isinstance(value, _SEQUENCE_TYPES):
        return in_clause(field, value)
    return f"{field} = {quote_value(value)}"


def jql_and(*clauses: str | None) -> str:
    """AND-join non-empty clauses. Clauses containing OR are parenthesized."""
    parts = []
    for clause in clauses:
        if not clause:
            continue
        if " OR " in clause.upper():
            clause = f"({clause})"
        parts.append(clause)
    return " AND ".join(parts)


def build_jql(conditions: Mapping[str, Any], *, order_by: str | None = None) -> str:
    """Build an AND-joined JQL query from field conditions.

    Sequences become IN conditions, None values are skipped.

    Example:
        build_jql({"project": ["ABC", "DEF"], "issuetype": "Epic"})
        # project IN ("ABC", "DEF") AND issuetype = "Epic"
    """
    jql = jql_and(
        *(build_condition(field, value) for field, value in conditions.items() if value is not None)
    )
    if order_by:
        jql = f"{jql} ORDER BY {order_by}" if jql else f"ORDER BY {order_by}"
    return jql


def project_clause(projects: Iterable[str] | None) -> str | None:
    """`project IN (...)` for a non-empty project list, else None."""
    keys = list(projects or [])
    if not keys:
        return None
    return in_clause("project", keys)


def relative_days(days: int) -> str:
    """JQL relative date such as `-7d`."""
    return f"-{days}d"


def date_literal(value: date | datetime) -> str:
    """Single-quoted JQL date (minute precision for datetimes)."""
    if isinstance(value, datetime):
        return f"'{value:%Y-%m-%d %H:%M}'"
    return f"'{value:%Y-%m-%d}'"


def build_query_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Normalize query parameters: drop None, comma-join sequences."""
    normalized: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, _SEQUENCE_TYPES):
            normalized[key] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        else:
            normalized[key] = str(value)
    return normalized


def encode_query(params: Mapping[str, Any]) -> str:
    """URL-encoded query string for the given parameters."""
    return urlencode(build_query_params(params))
