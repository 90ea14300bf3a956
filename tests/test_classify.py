"""Tests for error classification and shutdown-reason inference."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from argos.core.classify import classify_error, infer_reason, is_retryable, reason_from_error
from argos.core.errors import ConfigError, DeliveryError
from argos.core.journal import CRITICAL_PREFIX, append_line, dated_path
from argos.core.status_file import write_status_file
from argos.models.enums import ErrorKind, ReasonCategory
from argos.models.runtime import StatusRecord, to_iso

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestClassifyError:
    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError("slow"),
            asyncio.TimeoutError(),
            ConnectionResetError("reset"),
            httpx.ConnectError("refused"),
            DeliveryError("busy", status_code=503),
            DeliveryError("slow down", status_code=429),
            RuntimeError("connection dropped"),
        ],
    )
    def test_retryable(self, exc):
        assert classify_error(exc) is ErrorKind.RETRYABLE
        assert is_retryable(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigError("bad"),
            PermissionError("denied"),
            DeliveryError("gone", status_code=404),
            RuntimeError("401 Unauthorized"),
            ValueError("bad input"),
        ],
    )
    def test_permanent(self, exc):
        assert classify_error(exc) is ErrorKind.PERMANENT
        assert not is_retryable(exc)

    def test_http_status_error(self):
        request = httpx.Request("POST", "https://example.invalid")
        response = httpx.Response(502, request=request)
        exc = httpx.HTTPStatusError("bad gateway", request=request, response=response)
        assert classify_error(exc) is ErrorKind.RETRYABLE

    def test_unknown_defaults_to_retryable(self):
        assert classify_error(RuntimeError("something odd")) is ErrorKind.RETRYABLE


class TestReasonFromError:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("getaddrinfo ENOTFOUND gateway", "Network connectivity issues"),
            ("An invalid TOKEN was provided", "Authentication failure"),
            ("JavaScript heap out of memory", "Out of memory"),
            ("received SIGTERM", "Process terminated by system"),
            ("TEST: forced crash", "Testing/debugging command"),
            ("RATE_LIMIT exceeded", "Rate limiting"),
            ("WebSocket closed with 1006", "Gateway connection issue"),
        ],
    )
    def test_patterns(self, message, expected):
        assert reason_from_error(message).reason == expected

    def test_first_match_wins(self):
        # matches both network and gateway patterns
        assert reason_from_error("Gateway ECONNREFUSED").reason == "Network connectivity issues"

    def test_stack_is_searched(self):
        r = reason_from_error("crashed", "Traceback ... SIGKILL")
        assert r.category is ReasonCategory.SYSTEM

    def test_fallback_truncates(self):
        r = reason_from_error("x" * 100)
        assert r.reason == "Application error: " + "x" * 80 + "..."
        assert r.category is ReasonCategory.ERROR

    def test_fallback_short(self):
        assert reason_from_error("boom").reason == "Application error: boom"


class TestInferReason:
    def test_recent_critical_error(self, tmp_path):
        append_line(
            dated_path(tmp_path, CRITICAL_PREFIX, NOW),
            {"type": "UNCAUGHT_EXCEPTION", "message": "ECONNREFUSED", "timestamp": to_iso(NOW - timedelta(minutes=3))},
        )
        r = infer_reason(tmp_path, tmp_path / "bot-status.json", NOW)
        assert r.reason == "Network connectivity issues"

    def test_old_critical_error_ignored(self, tmp_path):
        append_line(
            dated_path(tmp_path, CRITICAL_PREFIX, NOW),
            {"message": "ECONNREFUSED", "timestamp": to_iso(NOW - timedelta(minutes=30))},
        )
        r = infer_reason(tmp_path, tmp_path / "bot-status.json", NOW)
        assert r.reason == "No status information available"

    def test_stale_status_file(self, tmp_path):
        status = tmp_path / "bot-status.json"
        write_status_file(status, StatusRecord(is_online=True, last_updated=NOW - timedelta(minutes=10)))
        r = infer_reason(tmp_path, status, NOW)
        assert r.reason == "Process appears to have stopped unexpectedly"

    def test_recent_status_file(self, tmp_path):
        status = tmp_path / "bot-status.json"
        write_status_file(status, StatusRecord(is_online=False, last_updated=NOW - timedelta(minutes=1)))
        assert infer_reason(tmp_path, status, NOW).reason == "Recent shutdown (reason not logged)"

    def test_unreadable_status_file(self, tmp_path):
        status = tmp_path / "bot-status.json"
        status.write_text("garbage")
        assert infer_reason(tmp_path, status, NOW).reason == "Unable to determine shutdown reason"
