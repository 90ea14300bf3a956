"""Typer CLI for Argos liveness verification."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
from rich.console import Console

from argos.config import ArgosConfig
from argos.core.errors import ConfigError
from argos.core.verifier import StatusVerifier
from argos.logging_setup import setup_logging
from argos.models.runtime import ConsensusVerdict

app = typer.Typer(
    name="argos",
    help="Independent liveness verification for a long-running service.",
    no_args_is_help=True,
)
console = Console(stderr=True)

_CLASSIFICATION_STYLE = {
    "strongly_online": "green",
    "likely_online": "green",
    "uncertain": "yellow",
    "likely_offline": "red",
    "strongly_offline": "red",
    "no_decisive_results": "red",
}


def _config() -> ArgosConfig:
    try:
        return ArgosConfig.load()
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2) from exc


def _print_json(data: dict) -> None:
    # stdout so the output can be piped
    typer.echo(json.dumps(data, indent=2))


def _print_verdict(verdict: ConsensusVerdict) -> None:
    from rich.table import Table

    style = _CLASSIFICATION_STYLE.get(verdict.classification.value, "")
    label = "ONLINE" if verdict.online else "OFFLINE"
    console.print(
        f"[bold {style}]{label}[/bold {style}] {verdict.classification.value} "
        f"(confidence {verdict.confidence:.0%})"
    )
    console.print(f"  {verdict.detail}")

    table = Table(title="Probes")
    table.add_column("Probe", style="bold")
    table.add_column("Vote")
    table.add_column("Confidence", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Detail")

    for r in verdict.results:
        if not r.succeeded:
            vote = "[red]failed[/red]"
        elif r.online is None:
            vote = "[dim]n/a[/dim]"
        else:
            vote = "[green]online[/green]" if r.online else "[red]offline[/red]"
        table.add_row(r.method, vote, f"{r.confidence:.2f}", f"{r.weight:.2f}", r.detail)
    console.print(table)


@app.command()
def verify(
    quick: Annotated[bool, typer.Option("--quick", "-q", help="Only run fast probes")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the verdict as JSON")] = False,
) -> None:
    """Check whether the service is alive. Exits 1 when it is not."""
    config = _config()
    verifier = StatusVerifier.from_config(config)
    verdict = verifier.verify_sync(quick=quick)

    if as_json:
        _print_json(verdict.to_dict())
    else:
        _print_verdict(verdict)

    if not verdict.online:
        raise typer.Exit(1)


@app.command()
def status(
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
) -> None:
    """Full status report: verdict, likely cause and last known health."""
    from argos.core.report import build_report, format_uptime

    config = _config()
    verdict = StatusVerifier.from_config(config).verify_sync()
    report = build_report(
        verdict,
        config.logs_dir,
        config.status_file,
        staleness_seconds=config.verifier.staleness_seconds,
    )

    if as_json:
        _print_json(report.to_dict())
        return

    style = {"OPERATIONAL": "green", "DEGRADED": "yellow"}.get(report.summary_status.value, "red")
    console.print(f"\n[bold {style}]{report.summary_status.value}[/bold {style}]  {report.reason}")
    if report.shutdown_reason:
        console.print(
            f"  Likely cause: {report.shutdown_reason.reason} "
            f"[dim]({report.shutdown_reason.category.value})[/dim]"
        )
    if report.last_seen:
        console.print(f"  Last seen: {report.last_seen.isoformat()}")
    if report.seconds_since_update is not None:
        console.print(f"  Status file age: {format_uptime(report.seconds_since_update)}")

    if report.health:
        h = report.health
        health_style = "green" if h.healthy else "red"
        console.print(
            f"  Health: [{health_style}]{'healthy' if h.healthy else 'unhealthy'}[/{health_style}]"
            f"  Errors: {h.error_count}  Critical: {h.critical_error_count}"
        )
        console.print(f"  Uptime: {format_uptime(h.uptime_ms / 1000)}  Mem: {h.memory_used_mb}MB")
    else:
        console.print("  [dim]No health data[/dim]")

    console.print()
    _print_verdict(report.verdict)


@app.command()
def probes() -> None:
    """List the configured probes with their weights and timeouts."""
    from rich.table import Table

    info = StatusVerifier.from_config(_config()).verification_info()

    table = Table(title="Verification Probes")
    table.add_column("Name", style="bold")
    table.add_column("Weight", justify="right")
    table.add_column("Timeout", justify="right")
    table.add_column("Quick")
    table.add_column("Description")

    for m in info["methods"]:
        table.add_row(
            m["name"],
            f"{m['weight']:.2f}",
            f"{m['timeout']}s",
            "yes" if m["quick"] else "no",
            m["description"],
        )
    console.print(table)
    console.print(f"[dim]Overall deadline: {info['deadline']}s[/dim]")


@app.command()
def errors(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max entries")] = 20,
) -> None:
    """Show today's critical errors logged by the service."""
    from argos.core.journal import CRITICAL_PREFIX, dated_path, tail

    config = _config()
    entries = tail(dated_path(config.logs_dir, CRITICAL_PREFIX), limit=limit)

    if not entries:
        console.print("[dim]No critical errors logged today.[/dim]")
        return

    for e in entries:
        kind = e.get("type") or e.get("context") or "UNKNOWN"
        console.print(f"[red][{kind}][/red] {e.get('timestamp', '???')} {e.get('message', '')}")


@app.command()
def watch(
    once: Annotated[bool, typer.Option("--once", help="Run a single check and exit")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Poll the verifier and send offline/recovery alerts."""
    import logging

    from argos.core.watch import MonitorService

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    config = _config()
    service = MonitorService.from_config(config)

    if once:
        report = asyncio.run(service.check_once())
        console.print(f"{report.summary_status.value}: {report.reason}")
        if not report.verdict.online:
            raise typer.Exit(1)
        return

    console.print(
        f"[dim]Watching every {config.verifier.poll_interval}s... (Ctrl+C to stop)[/dim]"
    )
    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


def main() -> None:
    """Entry point for the argos CLI."""
    app()


if __name__ == "__main__":
    main()
