"""Weighted-consensus liveness verification over independent probes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from argos.config import ArgosConfig
from argos.core.probes import (
    FileProbe,
    PresenceCheck,
    PresenceProbe,
    Probe,
    ProcessProbe,
    ProcessTable,
)
from argos.models.enums import Classification
from argos.models.runtime import ConsensusVerdict, ProbeResult

logger = logging.getLogger("argos.verifier")

# Confidence given to a probe that timed out or raised
FAILED_PROBE_CONFIDENCE = 0.1

# Confidence of the "assume offline" verdict when no probe was decisive
NO_EVIDENCE_CONFIDENCE = 0.1

# Probes at or under this timeout take part in quick_verify()
QUICK_PROBE_TIMEOUT = 2.0

# Classification thresholds, checked in order: score > threshold
_THRESHOLDS: tuple[tuple[float, Classification], ...] = (
    (0.8, Classification.STRONGLY_ONLINE),
    (0.6, Classification.LIKELY_ONLINE),
    (0.4, Classification.UNCERTAIN),
    (0.2, Classification.LIKELY_OFFLINE),
)


def classify_score(score: float) -> Classification:
    for threshold, classification in _THRESHOLDS:
        if score > threshold:
            return classification
    return Classification.STRONGLY_OFFLINE


def _no_evidence(results: Sequence[ProbeResult], detail: str) -> ConsensusVerdict:
    return ConsensusVerdict(
        online=False,
        confidence=NO_EVIDENCE_CONFIDENCE,
        classification=Classification.NO_DECISIVE_RESULTS,
        online_score=None,
        results=tuple(results),
        detail=detail,
    )


def compute_consensus(results: Sequence[ProbeResult]) -> ConsensusVerdict:
    """Combine probe results into one verdict.

    Only probes that completed vote, and of those only the ones with an
    opinion (``online`` not None). Each vote counts ``weight * confidence``.
    With no votes at all the verdict is offline at low confidence: absent
    evidence is never read as health.
    """
    successful = [r for r in results if r.succeeded]
    if not successful:
        return _no_evidence(results, "All verification methods failed")

    total_weight = 0.0
    weighted_online = 0.0
    total_confidence = 0.0
    for result in successful:
        if result.online is None:
            continue
        effective = result.weight * result.confidence
        total_weight += effective
        weighted_online += (1.0 if result.online else 0.0) * effective
        total_confidence += result.confidence * result.weight

    if total_weight == 0:
        return _no_evidence(results, "No verification methods provided decisive results")

    score = weighted_online / total_weight
    classification = classify_score(score)
    return ConsensusVerdict(
        online=score > 0.5,
        confidence=total_confidence / total_weight,
        classification=classification,
        online_score=score,
        results=tuple(results),
        detail=f"Consensus: {classification.value} (score: {score:.3f})",
    )


class StatusVerifier:
    """Runs every probe concurrently, each under its own timeout, then votes.

    Stateless between calls. A probe that hangs or raises is turned into a
    failed result and never blocks or aborts the others.
    """

    def __init__(self, probes: Sequence[Probe], deadline_slack: float = 0.5) -> None:
        if not probes:
            raise ValueError("StatusVerifier needs at least one probe")
        self.probes = list(probes)
        self.deadline_slack = deadline_slack

    @classmethod
    def from_config(
        cls,
        config: ArgosConfig,
        process_table: ProcessTable | None = None,
        presence_check: PresenceCheck | None = None,
    ) -> StatusVerifier:
        v = config.verifier
        return cls(
            [
                ProcessProbe(
                    v.process_pattern,
                    table=process_table,
                    weight=v.process_weight,
                    timeout=v.process_timeout,
                ),
                FileProbe(
                    config.status_file,
                    staleness_seconds=v.staleness_seconds,
                    weight=v.file_weight,
                    timeout=v.file_timeout,
                ),
                PresenceProbe(
                    presence_check, weight=v.api_weight, timeout=v.api_timeout
                ),
            ]
        )

    async def run_probe(self, probe: Probe) -> ProbeResult:
        """Run one probe under its timeout. Never raises (except on cancellation)."""
        try:
            result = await asyncio.wait_for(probe.run(), timeout=probe.timeout)
        except asyncio.TimeoutError:
            logger.warning("Probe %s timed out after %.1fs", probe.name, probe.timeout)
            return self._failed(probe, f"timed out after {probe.timeout}s")
        except Exception as exc:
            logger.warning("Probe %s failed: %s", probe.name, exc)
            return self._failed(probe, str(exc) or type(exc).__name__)
        return replace(result, weight=probe.weight)

    @staticmethod
    def _failed(probe: Probe, error: str) -> ProbeResult:
        return ProbeResult(
            method=probe.name,
            online=False,
            confidence=FAILED_PROBE_CONFIDENCE,
            weight=probe.weight,
            detail=f"Verification failed: {error}",
            succeeded=False,
            error=error,
        )

    async def _verify(self, probes: Sequence[Probe], deadline: float | None) -> ConsensusVerdict:
        if deadline is None:
            deadline = max(p.timeout for p in probes) + self.deadline_slack

        gathered = asyncio.gather(*(self.run_probe(p) for p in probes))
        try:
            results = await asyncio.wait_for(gathered, timeout=deadline)
        except asyncio.TimeoutError:
            logger.error("Verification exceeded its %.1fs deadline", deadline)
            results = [self._failed(p, f"deadline of {deadline}s exceeded") for p in probes]

        verdict = compute_consensus(results)
        logger.debug("%s", verdict.detail)
        return verdict

    async def verify(self, deadline: float | None = None) -> ConsensusVerdict:
        """Run all probes and return the consensus verdict.

        The overall deadline defaults to the slowest probe's timeout plus a
        small slack. Cancelling this coroutine cancels every probe still in
        flight.
        """
        return await self._verify(self.probes, deadline)

    async def quick_verify(self, deadline: float | None = None) -> ConsensusVerdict:
        """Like :meth:`verify` but only with probes whose timeout is <= 2s."""
        fast = [p for p in self.probes if p.timeout <= QUICK_PROBE_TIMEOUT]
        if not fast:
            return _no_evidence([], "No fast verification methods configured")
        return await self._verify(fast, deadline)

    def verify_sync(self, quick: bool = False) -> ConsensusVerdict:
        """Blocking entry point for callers without an event loop."""
        return asyncio.run(self.quick_verify() if quick else self.verify())

    def verification_info(self) -> dict[str, Any]:
        return {
            "methods": [
                {
                    "name": p.name,
                    "description": p.description,
                    "weight": p.weight,
                    "timeout": p.timeout,
                    "quick": p.timeout <= QUICK_PROBE_TIMEOUT,
                }
                for p in self.probes
            ],
            "deadline": max(p.timeout for p in self.probes) + self.deadline_slack,
        }
