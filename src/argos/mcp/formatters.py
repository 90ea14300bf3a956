"""Markdown formatters for LLM-friendly output."""

from __future__ import annotations

from typing import Any

from argos.core.report import format_uptime
from argos.models.runtime import ConsensusVerdict, StatusReport


def _online(value: bool | None) -> str:
    if value is None:
        return "n/a"
    return "online" if value else "offline"


def format_verdict(verdict: ConsensusVerdict) -> str:
    """Format a consensus verdict with its per-probe table."""
    score = f"{verdict.online_score:.3f}" if verdict.online_score is not None else "n/a"
    lines = [
        f"## Verdict: {'ONLINE' if verdict.online else 'OFFLINE'}",
        f"**Classification:** {verdict.classification.value}  ",
        f"**Score:** {score}  ",
        f"**Confidence:** {verdict.confidence:.2f}  ",
        f"**Checked:** {verdict.checked_at.isoformat()}",
        "",
    ]

    if verdict.results:
        lines.extend([
            "| Probe | Vote | Confidence | Weight | Detail |",
            "|-------|------|------------|--------|--------|",
        ])
        for r in verdict.results:
            vote = _online(r.online) if r.succeeded else "failed"
            lines.append(
                f"| {r.method} | {vote} | {r.confidence:.2f} | {r.weight:.2f} | {r.detail} |"
            )
    else:
        lines.append("*No probes ran*")

    return "\n".join(lines)


def format_report(report: StatusReport) -> str:
    """Format an operator status report."""
    lines = [
        f"# Status: {report.summary_status.value}",
        f"**Reason:** {report.reason}  ",
    ]
    if report.shutdown_reason:
        lines.append(
            f"**Likely cause:** {report.shutdown_reason.reason} "
            f"({report.shutdown_reason.category.value})  "
        )
    if report.last_seen:
        lines.append(f"**Last seen:** {report.last_seen.isoformat()}  ")
    if report.seconds_since_update is not None:
        lines.append(f"**Status file age:** {format_uptime(report.seconds_since_update)}  ")

    if report.health:
        h = report.health
        lines.extend([
            "",
            "| Health | Value |",
            "|--------|-------|",
            f"| Healthy | {'yes' if h.healthy else 'no'} |",
            f"| Errors (1h) | {h.error_count} |",
            f"| Critical errors | {h.critical_error_count} |",
            f"| Uptime | {format_uptime(h.uptime_ms / 1000)} |",
            f"| Memory | {h.memory_used_mb} MB |",
        ])
    else:
        lines.append("\n*No health data available*")

    lines.extend(["", format_verdict(report.verdict)])
    return "\n".join(lines)


def format_critical_errors(entries: list[dict[str, Any]]) -> str:
    """Format critical-log entries (newest last)."""
    if not entries:
        return "No critical errors logged today."

    lines = ["## Critical Errors", ""]
    for e in entries:
        kind = e.get("type") or e.get("context") or "UNKNOWN"
        lines.append(f"- **{kind}** {e.get('timestamp', '???')}: {e.get('message', '')}")
    return "\n".join(lines)


def format_probe_info(info: dict[str, Any]) -> str:
    """Format the verifier's probe configuration."""
    lines = [
        "| Probe | Weight | Timeout | Quick | Description |",
        "|-------|--------|---------|-------|-------------|",
    ]
    for m in info["methods"]:
        lines.append(
            f"| {m['name']} | {m['weight']:.2f} | {m['timeout']}s | "
            f"{'yes' if m['quick'] else 'no'} | {m['description']} |"
        )
    lines.append(f"\n**Overall deadline:** {info['deadline']}s")
    return "\n".join(lines)
