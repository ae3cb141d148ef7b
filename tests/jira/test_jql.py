"""Tests for JQL and query-string construction."""

from datetime import date, datetime

import pytest

from jira_sync_db.errors import ValidationError
from jira_sync_db.jira.jql import (
    build_condition,
    build_jql,
    build_query_params,
    date_literal,
    encode_query,
    in_clause,
    jql_and,
    not_in_clause,
    project_clause,
    quote_value,
    relative_days,
)


class TestQuoteValue:
    def test_strings_are_quoted_and_escaped(self):
        assert quote_value("In Progress") == '"In Progress"'
        assert quote_value('say "hi"') == '"say \\"hi\\""'

    def test_numbers_stay_bare(self):
        assert quote_value(42) == "42"
        assert quote_value(1.5) == "1.5"

    def test_dates(self):
        assert quote_value(date(2024, 1, 15)) == '"2024-01-15"'
        assert quote_value(datetime(2024, 1, 15, 9, 30)) == '"2024-01-15 09:30"'


class TestClauses:
    def test_in_clause(self):
        assert in_clause("project", ["ABC", "DEF"]) == 'project IN ("ABC", "DEF")'

    def test_in_clause_rejects_empty(self):
        with pytest.raises(ValidationError):
            in_clause("project", [])

    def test_not_in_clause(self):
        assert not_in_clause("status", ["Done"]) == 'status NOT IN ("Done")'

    def test_build_condition(self):
        assert build_condition("issuetype", "Epic") == 'issuetype = "Epic"'
        assert build_condition("key", ("A-1", "A-2")) == 'key IN ("A-1", "A-2")'

    def test_jql_and_skips_empty_and_wraps_or(self):
        jql = jql_and('project = "ABC"', None, "", "sprint = 1 OR sprint = 2")

        assert jql == 'project = "ABC" AND (sprint = 1 OR sprint = 2)'

    def test_project_clause(self):
        assert project_clause(None) is None
        assert project_clause([]) is None
        assert project_clause(["ABC"]) == 'project IN ("ABC")'


class TestBuildJql:
    def test_conditions_and_order(self):
        jql = build_jql({"project": ["ABC", "DEF"], "issuetype": "Epic", "assignee": None}, order_by="updated DESC")

        assert jql == 'project IN ("ABC", "DEF") AND issuetype = "Epic" ORDER BY updated DESC'

    def test_order_only(self):
        assert build_jql({}, order_by="key") == "ORDER BY key"

    def test_relative_and_literal_dates(self):
        assert relative_days(7) == "-7d"
        assert date_literal(date(2024, 1, 15)) == "'2024-01-15'"
        assert date_literal(datetime(2024, 1, 15, 8, 5)) == "'2024-01-15 08:05'"


class TestQueryParams:
    def test_normalizes_values(self):
        params = build_query_params(
            {"fields": ["key", "summary"], "startAt": 0, "expand": None, "validate": True}
        )

        assert params == {"fields": "key,summary", "startAt": "0", "validate": "true"}

    def test_encode_query(self):
        assert encode_query({"jql": 'project = "ABC"', "maxResults": 50}) == (
            "jql=project+%3D+%22ABC%22&maxResults=50"
        )
