"""Tests for the heartbeat recorder."""

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from argos.config import ArgosConfig
from argos.core.heartbeat import HeartbeatRecorder
from argos.core.journal import HEALTH_ALERTS_FILE, HEALTH_PREFIX, dated_path, tail
from argos.core.probes import FileProbe
from argos.core.sink import ErrorSink
from argos.core.status_file import read_status_file

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink(tmp_path, clock):
    return ErrorSink(logs_dir=tmp_path, clock=clock, memory_reader=lambda: (10 * 1024 * 1024, 1024**3))


@pytest.fixture
def recorder(tmp_path, sink, clock):
    return HeartbeatRecorder(tmp_path / "bot-status.json", sink, logs_dir=tmp_path, clock=clock)


class TestConnectionEvents:
    def test_connect_writes_online(self, recorder):
        record = recorder.record_connect(ping=40.0, guild_count=3)
        on_disk = read_status_file(recorder.status_file)
        assert on_disk.is_online is True
        assert on_disk.connection.ping == 40.0
        assert on_disk.connection.guild_count == 3
        assert on_disk.last_seen == START
        assert record == on_disk

    def test_disconnect_keeps_last_seen(self, recorder, clock):
        recorder.record_connect()
        clock.now = START + timedelta(minutes=1)
        recorder.record_disconnect()
        on_disk = read_status_file(recorder.status_file)
        assert on_disk.is_online is False
        assert on_disk.connection.connected is False
        assert on_disk.last_seen == START
        assert on_disk.last_updated == START + timedelta(minutes=1)

    def test_update_connection_does_not_write(self, recorder):
        recorder.update_connection(ping=12.0)
        assert not recorder.status_file.exists()
        assert recorder.connection.ping == 12.0
        assert recorder.connection.connected is False

    def test_mark_offline(self, recorder):
        recorder.record_connect(guild_count=2)
        recorder.mark_offline("SIGTERM received")
        on_disk = read_status_file(recorder.status_file)
        assert on_disk.is_online is False
        assert on_disk.connection.guild_count == 2


class TestWriteStatus:
    def test_includes_health(self, recorder, sink):
        sink.report(RuntimeError("e"), "x")
        recorder.write_status()
        health = read_status_file(recorder.status_file).health
        assert health.error_count == 1
        assert health.memory_used == 10 * 1024 * 1024

    def test_last_updated_never_goes_back(self, recorder, clock):
        recorder.write_status()
        clock.now = START - timedelta(minutes=5)
        record = recorder.write_status()
        assert record.last_updated == START
        assert read_status_file(recorder.status_file).last_updated == START

    def test_write_failure_reported(self, recorder, sink):
        with patch("argos.core.heartbeat.write_status_file", side_effect=OSError("disk full")):
            record = recorder.write_status()
        assert record.is_online is False
        assert sink.recent_errors()[-1].context == "status_write"


class TestHealth:
    def test_health_check_updates_file(self, recorder, clock):
        recorder.perform_health_check()
        record = read_status_file(recorder.status_file)
        assert record.last_health_check == START

    def test_unhealthy_writes_alert(self, recorder, sink, tmp_path):
        sink.report_critical("UNCAUGHT_EXCEPTION", "fatal")
        health = recorder.perform_health_check()
        assert health.healthy is False
        [alert] = tail(tmp_path / HEALTH_ALERTS_FILE)
        assert alert["type"] == "HEALTH_ALERT"
        assert alert["criticalErrorCount"] == 1

    def test_healthy_writes_no_alert(self, recorder, tmp_path):
        recorder.perform_health_check()
        assert not (tmp_path / HEALTH_ALERTS_FILE).exists()

    def test_log_health_status(self, recorder, tmp_path):
        recorder.log_health_status()
        [entry] = tail(dated_path(tmp_path, HEALTH_PREFIX, START))
        assert entry["healthy"] is True
        assert "memoryUsage" in entry
        assert recorder.status_file.exists()


class TestLifecycle:
    def test_from_config(self, tmp_path, sink):
        config = ArgosConfig(project_path=tmp_path)
        rec = HeartbeatRecorder.from_config(config, sink)
        assert rec.status_file == config.status_file
        assert rec.interval == 30.0

    @pytest.mark.asyncio
    async def test_start_writes_immediately(self, tmp_path, sink):
        rec = HeartbeatRecorder(
            tmp_path / "bot-status.json", sink, logs_dir=tmp_path,
            interval=0.01, initial_check_delay=10, health_log_interval=10,
        )
        rec.start()
        await asyncio.sleep(0.2)
        await rec.stop()
        assert json.loads(rec.status_file.read_text())["botStatus"]["isOnline"] is False

    @pytest.mark.asyncio
    async def test_timer_writes_run_off_the_loop(self, tmp_path, sink):
        rec = HeartbeatRecorder(
            tmp_path / "bot-status.json", sink, logs_dir=tmp_path,
            interval=10, initial_check_delay=10, health_log_interval=10,
        )
        threads = []
        original = rec.write_status

        def write_status():
            threads.append(threading.current_thread())
            return original()

        rec.write_status = write_status
        rec.start()
        await asyncio.sleep(0.2)
        await rec.stop()
        assert threads
        assert threading.main_thread() not in threads
        assert rec.status_file.exists()


class TestReadByFileProbe:
    @pytest.mark.asyncio
    async def test_connect_then_file_probe(self, recorder, sink, clock):
        record = recorder.record_connect(ping=25.0)
        clock.now = START + timedelta(seconds=30)

        result = await FileProbe(recorder.status_file, clock=clock).run()

        assert result.online is True
        assert result.confidence == 0.7
        seen = result.status_record
        assert seen.is_online is True
        assert seen.last_updated == record.last_updated
        health = sink.snapshot()
        assert seen.health.memory_used == health.memory_used == 10 * 1024 * 1024
        assert seen.health.memory_total == health.memory_total == 1024**3

    @pytest.mark.asyncio
    async def test_disconnect_then_file_probe(self, recorder, clock):
        recorder.record_connect()
        recorder.record_disconnect()

        result = await FileProbe(recorder.status_file, clock=clock).run()

        assert result.online is False
        assert result.confidence == 0.7
        assert result.detail == "Status current, reports: offline"
