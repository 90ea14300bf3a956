"""Tests for weighted consensus and the concurrent verifier."""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from argos.config import ArgosConfig
from argos.core.probes import FILE_CHECK, PROCESS_CHECK, FileProbe, PresenceProbe, ProcessProbe
from argos.core.status_file import write_status_file
from argos.core.verifier import StatusVerifier, classify_score, compute_consensus
from argos.models.enums import Classification
from argos.models.runtime import ProbeResult, StatusRecord


def _result(method, online, confidence, weight, succeeded=True):
    return ProbeResult(
        method=method, online=online, confidence=confidence, weight=weight, succeeded=succeeded
    )


class FakeProbe:
    def __init__(self, name, result=None, delay=0.0, error=None, weight=0.3, timeout=1.0):
        self.name = name
        self.description = f"fake {name}"
        self.weight = weight
        self.timeout = timeout
        self._result = result
        self._delay = delay
        self._error = error

    async def run(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._result


class StaticTable:
    def __init__(self, pids):
        self.pids = pids

    def find(self, pattern):
        return self.pids


class HungTable:
    """A process table whose lookup blocks until released."""

    def __init__(self):
        self.release = threading.Event()

    def find(self, pattern):
        self.release.wait(10)
        return []


class TestClassifyScore:
    @pytest.mark.parametrize(
        "score, expected",
        [
            (1.0, Classification.STRONGLY_ONLINE),
            (0.81, Classification.STRONGLY_ONLINE),
            (0.8, Classification.LIKELY_ONLINE),
            (0.6, Classification.UNCERTAIN),
            (0.4, Classification.LIKELY_OFFLINE),
            (0.2, Classification.STRONGLY_OFFLINE),
            (0.0, Classification.STRONGLY_OFFLINE),
        ],
    )
    def test_thresholds(self, score, expected):
        assert classify_score(score) is expected


class TestConsensus:
    def test_no_opinion_probe_excluded(self):
        v = compute_consensus([
            _result("process_check", True, 0.9, 0.4),
            _result("file_check", True, 0.7, 0.3),
            _result("api_check", None, 0.0, 0.3),
        ])
        assert v.online_score == pytest.approx(1.0)
        assert v.classification is Classification.STRONGLY_ONLINE
        assert v.online is True
        # (0.9*0.4 + 0.7*0.3) / (0.4*0.9 + 0.3*0.7)
        assert v.confidence == pytest.approx(1.0)

    def test_weighted_split(self):
        v = compute_consensus([
            _result("process_check", False, 0.9, 0.4),
            _result("file_check", True, 0.7, 0.3),
        ])
        assert v.online_score == pytest.approx(0.21 / 0.57)
        assert v.classification is Classification.LIKELY_OFFLINE
        assert v.online is False

    def test_stale_file_loses_to_running_process(self):
        v = compute_consensus([
            _result("process_check", True, 0.9, 0.4),
            _result("file_check", False, 0.2, 0.3),
        ])
        assert v.online_score == pytest.approx(0.36 / 0.42)
        assert v.online is True

    def test_failed_results_do_not_vote(self):
        v = compute_consensus([
            _result("process_check", False, 0.1, 0.4, succeeded=False),
            _result("file_check", True, 0.7, 0.3),
        ])
        assert v.online_score == pytest.approx(1.0)
        assert len(v.results) == 2

    def test_all_failed(self):
        v = compute_consensus([
            _result("process_check", False, 0.1, 0.4, succeeded=False),
            _result("file_check", False, 0.1, 0.3, succeeded=False),
        ])
        assert v.online is False
        assert v.confidence == 0.1
        assert v.classification is Classification.NO_DECISIVE_RESULTS
        assert v.online_score is None
        assert v.detail == "All verification methods failed"

    def test_no_decisive_votes(self):
        v = compute_consensus([_result("api_check", None, 0.0, 0.3)])
        assert v.classification is Classification.NO_DECISIVE_RESULTS
        assert v.detail == "No verification methods provided decisive results"

    def test_zero_weight(self):
        v = compute_consensus([_result("file_check", True, 0.7, 0.0)])
        assert v.classification is Classification.NO_DECISIVE_RESULTS

    def test_empty(self):
        assert compute_consensus([]).online is False


class TestStatusVerifier:
    def test_requires_probes(self):
        with pytest.raises(ValueError):
            StatusVerifier([])

    @pytest.mark.asyncio
    async def test_probe_exception_becomes_failed_result(self):
        ok = FakeProbe("file_check", _result("file_check", True, 0.7, 0.99))
        bad = FakeProbe("process_check", error=RuntimeError("kaboom"), weight=0.4)
        v = await StatusVerifier([ok, bad]).verify()
        failed = v.result_for("process_check")
        assert failed.succeeded is False
        assert failed.confidence == 0.1
        assert "kaboom" in failed.error
        # weight comes from the probe, not from the result it returned
        assert v.result_for("file_check").weight == 0.3
        assert v.online is True

    @pytest.mark.asyncio
    async def test_slow_probe_times_out_alone(self):
        fast = FakeProbe("file_check", _result("file_check", True, 0.7, 0.3))
        slow = FakeProbe("process_check", _result("process_check", False, 0.9, 0.4), delay=5, timeout=0.05)
        started = time.monotonic()
        v = await StatusVerifier([fast, slow]).verify()
        assert time.monotonic() - started < 1.0
        assert v.result_for("process_check").succeeded is False
        assert "timed out" in v.result_for("process_check").detail
        assert v.online is True

    @pytest.mark.asyncio
    async def test_all_timeout_returns_quickly(self):
        probes = [
            FakeProbe(name, delay=10, timeout=0.05)
            for name in ("process_check", "file_check", "api_check")
        ]
        started = time.monotonic()
        v = await StatusVerifier(probes).verify()
        assert time.monotonic() - started < 1.0
        assert v.online is False
        assert v.classification is Classification.NO_DECISIVE_RESULTS
        assert v.confidence == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_overall_deadline(self):
        # overall deadline shorter than the probe's own timeout
        probe = FakeProbe("process_check", delay=10, timeout=5)
        started = time.monotonic()
        v = await StatusVerifier([probe]).verify(deadline=0.05)
        assert time.monotonic() - started < 1.0
        assert v.classification is Classification.NO_DECISIVE_RESULTS

    @pytest.mark.asyncio
    async def test_quick_verify_skips_slow_probes(self):
        fast = FakeProbe("file_check", _result("file_check", True, 0.7, 0.3), timeout=1.0)
        slow = FakeProbe("api_check", _result("api_check", False, 0.8, 0.3), timeout=5.0)
        v = await StatusVerifier([fast, slow]).quick_verify()
        assert [r.method for r in v.results] == ["file_check"]

    @pytest.mark.asyncio
    async def test_quick_verify_without_fast_probes(self):
        slow = FakeProbe("api_check", _result("api_check", True, 0.8, 0.3), timeout=5.0)
        v = await StatusVerifier([slow]).quick_verify()
        assert v.classification is Classification.NO_DECISIVE_RESULTS

    def test_verify_sync(self):
        probe = FakeProbe("file_check", _result("file_check", True, 0.7, 0.3))
        assert StatusVerifier([probe]).verify_sync().online is True

    def test_verify_sync_does_not_wait_for_hung_lookup(self, tmp_path):
        table = HungTable()
        probes = [
            ProcessProbe("x", table=table, timeout=0.2),
            FileProbe(tmp_path / "missing.json", timeout=0.2),
        ]
        try:
            for _ in range(2):
                started = time.monotonic()
                v = StatusVerifier(probes).verify_sync()
                assert time.monotonic() - started < 1.5
                assert v.result_for(PROCESS_CHECK).succeeded is False
                assert "timed out" in v.result_for(PROCESS_CHECK).detail
                assert v.result_for(FILE_CHECK).detail == "Status file not found"
        finally:
            table.release.set()

    def test_verification_info(self):
        verifier = StatusVerifier.from_config(ArgosConfig())
        info = verifier.verification_info()
        names = [m["name"] for m in info["methods"]]
        assert names == ["process_check", "file_check", "api_check"]
        assert info["deadline"] == 5.5
        assert [m["quick"] for m in info["methods"]] == [True, True, False]


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_healthy_service(self, tmp_path):
        config = ArgosConfig(project_path=tmp_path)
        write_status_file(
            config.status_file,
            StatusRecord(is_online=True, last_updated=datetime.now(timezone.utc)),
        )
        v = await StatusVerifier.from_config(config, process_table=StaticTable([4242])).verify()
        assert v.online is True
        assert v.classification is Classification.STRONGLY_ONLINE
        assert v.online_score == pytest.approx(1.0)
        assert v.result_for("api_check").online is None

    @pytest.mark.asyncio
    async def test_dead_service(self, tmp_path):
        config = ArgosConfig(project_path=tmp_path)
        write_status_file(
            config.status_file,
            StatusRecord(is_online=True, last_updated=datetime.now(timezone.utc) - timedelta(minutes=5)),
        )
        v = await StatusVerifier.from_config(config, process_table=StaticTable([])).verify()
        assert v.online is False
        assert v.classification is Classification.STRONGLY_OFFLINE
        assert v.result_for(FILE_CHECK).status_record is not None
        assert v.result_for(PROCESS_CHECK).online is False
