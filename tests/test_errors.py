"""Tests for the error taxonomy and classification."""

import asyncio
import json

import httpx
import pytest

from jira_sync_db.errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    ConfigError,
    DatabaseError,
    ErrorType,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    RetryExhaustedError,
    SyncError,
    ValidationError,
    classify_db_error,
    classify_error_message,
    classify_exception,
    make_error,
)


class TestClassifyErrorMessage:
    """Tests for message-based classification."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Request timed out after 30s", ErrorType.TIMEOUT),
            ("Connection timeout", ErrorType.TIMEOUT),
            ("401 Unauthorized", ErrorType.AUTH),
            ("Authentication required", ErrorType.AUTH),
            ("Connection refused", ErrorType.NETWORK),
            ("Unknown host example.test", ErrorType.NETWORK),
            ("Invalid JSON body", ErrorType.PARSE),
            ("Field 'foo' does not exist", ErrorType.API),
            ("", ErrorType.API),
            (None, ErrorType.API),
        ],
    )
    def test_markers(self, message, expected):
        assert classify_error_message(message) is expected


class TestRetryability:
    """Which categories the retry policy may repeat."""

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (NetworkError("down"), True),
            (RequestTimeoutError("slow"), True),
            (ApiError("500", status_code=500), True),
            (AuthError("nope"), False),
            (ParseError("bad"), False),
            (ConfigError("missing"), False),
            (ValidationError("bad input"), False),
            (DatabaseError("locked"), False),
            (CircuitOpenError("open"), False),
        ],
    )
    def test_retryable(self, error, retryable):
        assert error.retryable is retryable

    def test_exhausted_keeps_type_but_is_final(self):
        last = NetworkError("Connection reset", context="search", details={"endpoint": "/x"})

        exhausted = RetryExhaustedError(last, 3)

        assert exhausted.error_type is ErrorType.NETWORK
        assert exhausted.retryable is False
        assert exhausted.attempts == 3
        assert exhausted.last_error is last
        assert exhausted.context == "search"
        assert exhausted.details == {"endpoint": "/x", "attempts": 3}
        assert "after 3 attempts" in exhausted.message


class TestSyncError:
    """Tests for the base error."""

    def test_to_dict(self):
        error = ApiError("Bad JQL", status_code=400, context="search")

        data = error.to_dict()

        assert data["type"] == "api"
        assert data["message"] == "Bad JQL"
        assert data["context"] == "search"
        assert data["details"] == {"status_code": 400}
        assert "timestamp" in data

    def test_str_includes_context(self):
        assert str(SyncError("boom", context="users")) == "[users] boom"
        assert str(SyncError("boom")) == "boom"

    def test_error_type_override(self):
        error = SyncError("x", error_type=ErrorType.PARSE)
        assert error.error_type is ErrorType.PARSE

    def test_make_error_picks_subclass(self):
        assert isinstance(make_error(ErrorType.AUTH, "x"), AuthError)
        assert isinstance(make_error(ErrorType.CONFIG, "x"), ConfigError)
        assert isinstance(make_error(ErrorType.DATABASE, "x", details={"a": 1}), DatabaseError)


class TestClassifyException:
    """Tests for converting arbitrary exceptions."""

    def test_sync_error_returned_unchanged(self):
        error = AuthError("denied")

        result = classify_exception(error, context="myself")

        assert result is error
        assert result.context == "myself"

    def test_existing_context_kept(self):
        error = AuthError("denied", context="original")

        assert classify_exception(error, context="other").context == "original"

    def test_httpx_timeout(self):
        result = classify_exception(httpx.ReadTimeout("read timed out"), context="search")

        assert isinstance(result, RequestTimeoutError)
        assert result.context == "search"

    def test_asyncio_timeout(self):
        assert isinstance(classify_exception(asyncio.TimeoutError()), RequestTimeoutError)

    def test_httpx_transport_error(self):
        assert isinstance(classify_exception(httpx.ConnectError("refused")), NetworkError)

    def test_json_decode_error(self):
        exc = json.JSONDecodeError("Expecting value", "<html>", 0)

        assert isinstance(classify_exception(exc), ParseError)

    def test_plain_exception_uses_message_markers(self):
        assert classify_exception(RuntimeError("connection dropped")).error_type is ErrorType.NETWORK
        assert classify_exception(RuntimeError("something odd")).error_type is ErrorType.API


class TestClassifyDbError:
    """Tests for store failure classification."""

    def test_locked_is_retried(self):
        info = classify_db_error("(sqlite3.OperationalError) database is locked")

        assert info.kind == "locked"
        assert info.recoverable is True
        assert info.retry_delay_ms == 500

    def test_missing_table_requires_repair(self):
        info = classify_db_error("no such table: tickets")

        assert info.kind == "missing_table"
        assert info.requires_repair is True

    @pytest.mark.parametrize(
        ("message", "kind"),
        [
            ("database or disk full", "disk_full"),
            ("unable to open: permission denied", "permission"),
            ("attempt to write a readonly database", "permission"),
            ("UNIQUE constraint failed: projects.key", "constraint"),
        ],
    )
    def test_unrecoverable(self, message, kind):
        info = classify_db_error(message)

        assert info.kind == kind
        assert info.recoverable is False

    def test_unknown_is_recoverable(self):
        assert classify_db_error("something else").recoverable is True
