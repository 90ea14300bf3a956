"""Tests for ErrorSink: rates, snapshots, critical log and call wrappers."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from argos.core.errors import ConfigError
from argos.core.journal import CRITICAL_PREFIX, dated_path
from argos.core.sink import ErrorSink

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink(tmp_path, clock):
    return ErrorSink(
        logs_dir=tmp_path,
        clock=clock,
        memory_reader=lambda: (100 * 1024 * 1024, 1024**3),
    )


class TestReport:
    def test_records_error(self, sink):
        assert sink.report(RuntimeError("boom"), "fetch") is False
        [record] = sink.recent_errors()
        assert record.message == "boom"
        assert record.context == "fetch"

    def test_string_error(self, sink):
        sink.report("plain message", "fetch")
        assert sink.recent_errors()[0].message == "plain message"

    def test_high_rate_on_51st(self, sink):
        results = [sink.report(RuntimeError(f"e{i}"), "fetch") for i in range(50)]
        assert not any(results)
        assert sink.report(RuntimeError("e50"), "fetch") is True

    def test_rate_is_per_context(self, sink):
        for i in range(50):
            sink.report(RuntimeError(f"e{i}"), "fetch")
        assert sink.report(RuntimeError("other"), "send") is False

    def test_previous_hour_counts(self, sink, clock):
        for i in range(30):
            sink.report(RuntimeError(f"e{i}"), "fetch")
        clock.advance(hours=1)
        for i in range(20):
            sink.report(RuntimeError(f"e{i}"), "fetch")
        assert sink.error_rate("fetch") == 50
        assert sink.report(RuntimeError("again"), "fetch") is True

    def test_old_buckets_dropped(self, sink, clock):
        sink.report(RuntimeError("old"), "fetch")
        old_hour = int(START.timestamp() // 3600)
        clock.advance(hours=3)
        sink.report(RuntimeError("new"), "fetch")
        hours = {hour for (_, hour) in sink.rate_buckets()}
        assert old_hour not in hours
        assert hours == {old_hour + 3}

    def test_two_hour_old_bucket_kept(self, sink, clock):
        sink.report(RuntimeError("old"), "fetch")
        clock.advance(hours=2)
        sink.report(RuntimeError("new"), "fetch")
        assert len(sink.rate_buckets()) == 2

    def test_records_pruned_by_age(self, sink, clock):
        sink.report(RuntimeError("old"), "fetch")
        clock.advance(hours=2)
        sink.report(RuntimeError("new"), "fetch")
        assert [r.message for r in sink.recent_errors()] == ["new"]

    def test_record_cap(self, tmp_path, clock):
        s = ErrorSink(max_records=3, clock=clock, memory_reader=lambda: (0, 0))
        for i in range(5):
            s.report(RuntimeError(f"e{i}"), "x")
        assert [r.message for r in s.recent_errors()] == ["e2", "e3", "e4"]

    def test_never_raises(self, sink):
        with patch.object(sink, "_make_record", side_effect=RuntimeError("broken")):
            assert sink.report(RuntimeError("boom"), "x") is False


class TestCritical:
    def test_writes_critical_log(self, sink, tmp_path):
        sink.report_critical("UNCAUGHT_EXCEPTION", RuntimeError("fatal"))
        path = dated_path(tmp_path, CRITICAL_PREFIX, START)
        entry = json.loads(path.read_text().strip())
        assert entry["type"] == "UNCAUGHT_EXCEPTION"
        assert entry["message"] == "fatal"
        assert entry["process"]["memoryUsage"] == {"used": 100 * 1024 * 1024, "total": 1024**3}

    def test_critical_makes_unhealthy(self, sink):
        assert sink.snapshot().healthy is True
        sink.report_critical("UNCAUGHT_EXCEPTION", "fatal")
        snap = sink.snapshot()
        assert snap.healthy is False
        assert snap.critical_error_count == 1
        assert snap.last_critical_error.message == "fatal"

    def test_critical_survives_age_pruning(self, sink, clock):
        sink.report_critical("UNCAUGHT_EXCEPTION", "fatal")
        clock.advance(hours=5)
        sink.report("later", "x")
        assert len(sink.critical_errors()) == 1

    def test_write_failure_not_raised(self, sink):
        with patch("argos.core.sink.append_line", side_effect=OSError("read-only")):
            sink.report_critical("UNCAUGHT_EXCEPTION", "fatal")
        assert len(sink.critical_errors()) == 1

    def test_no_logs_dir(self, clock):
        s = ErrorSink(clock=clock, memory_reader=lambda: (0, 0))
        s.report_critical("UNCAUGHT_EXCEPTION", "fatal")
        assert len(s.critical_errors()) == 1


class TestSnapshot:
    def test_idempotent(self, sink):
        for i in range(3):
            sink.report(RuntimeError(f"e{i}"), "fetch")
        a = sink.snapshot()
        b = sink.snapshot()
        assert (a.healthy, a.error_count, a.critical_error_count, a.memory_used, a.memory_total) == (
            b.healthy, b.error_count, b.critical_error_count, b.memory_used, b.memory_total,
        )
        assert a.error_count == 3
        assert len(sink.recent_errors()) == 3

    def test_unhealthy_at_limit(self, sink):
        for i in range(50):
            sink.report(RuntimeError(f"e{i}"), f"ctx{i % 5}")
        assert sink.snapshot().healthy is False

    def test_counts_decay(self, sink, clock):
        sink.report(RuntimeError("e"), "fetch")
        clock.advance(hours=2)
        assert sink.snapshot().error_count == 0

    def test_default_memory_reader_uses_psutil(self):
        with patch("argos.core.sink.psutil") as mock_psutil:
            mock_psutil.Process.return_value.memory_info.return_value = MagicMock(rss=2048)
            mock_psutil.virtual_memory.return_value = MagicMock(total=4096)
            snap = ErrorSink().snapshot()
        assert (snap.memory_used, snap.memory_total) == (2048, 4096)


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self, sink):
        op = AsyncMock(side_effect=[TimeoutError("slow"), TimeoutError("slow"), "ok"])
        with patch("argos.core.sink.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await sink.retry(op, "fetch", jitter=0)
        assert result == "ok"
        assert op.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert len(sink.recent_errors()) == 2

    @pytest.mark.asyncio
    async def test_gives_up(self, sink):
        op = AsyncMock(side_effect=TimeoutError("slow"))
        with patch("argos.core.sink.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TimeoutError):
                await sink.retry(op, "fetch", max_attempts=3)
        assert op.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self, sink):
        op = AsyncMock(side_effect=ConfigError("bad"))
        with pytest.raises(ConfigError):
            await sink.retry(op, "fetch")
        assert op.await_count == 1

    def test_sync_variant(self, sink):
        op = MagicMock(side_effect=[ConnectionError("reset"), 7])
        with patch("argos.core.sink.time.sleep") as sleep:
            assert sink.retry_sync(op, "fetch", base_delay=0.5, jitter=0) == 7
        sleep.assert_called_once_with(0.5)


class TestSafe:
    def test_returns_value(self, sink):
        assert sink.safe(lambda: 5, fallback=0) == 5

    def test_fallback_value(self, sink):
        assert sink.safe(lambda: 1 / 0, fallback=-1, context="math") == -1
        assert sink.recent_errors()[0].context == "math"

    def test_callable_fallback_gets_error(self, sink):
        result = sink.safe(lambda: 1 / 0, fallback=lambda exc: type(exc).__name__)
        assert result == "ZeroDivisionError"

    def test_failing_fallback(self, sink):
        def bad_fallback(exc):
            raise RuntimeError("also broken")

        assert sink.safe(lambda: 1 / 0, fallback=bad_fallback) is None
        assert len(sink.recent_errors()) == 2

    @pytest.mark.asyncio
    async def test_async_fallback_awaited(self, sink):
        async def op():
            raise RuntimeError("boom")

        async def fallback(exc):
            return f"recovered from {exc}"

        assert await sink.safe_async(op, fallback=fallback) == "recovered from boom"
