"""FastMCP server factory exposing liveness verification tools."""

from __future__ import annotations

from argos.config import ArgosConfig
from argos.mcp.formatters import (
    format_critical_errors,
    format_probe_info,
    format_report,
    format_verdict,
)


def create_server(config: ArgosConfig | None = None):
    """Create and return a configured FastMCP server instance.

    Args:
        config: Optional pre-loaded config. If None, loads from cwd.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("argos", instructions="Independent liveness verification for a background service")
    _config = config or ArgosConfig.load()

    @mcp.tool()
    async def argos_verify(quick: bool = False) -> str:
        """Check whether the monitored service is alive using independent probes.

        Args:
            quick: Only run fast probes (process and status file)
        """
        from argos.core.verifier import StatusVerifier

        verifier = StatusVerifier.from_config(_config)
        verdict = await (verifier.quick_verify() if quick else verifier.verify())
        return format_verdict(verdict)

    @mcp.tool()
    async def argos_status() -> str:
        """Full status report: verdict, likely outage cause and last known health."""
        from argos.core.report import build_report
        from argos.core.verifier import StatusVerifier

        verdict = await StatusVerifier.from_config(_config).verify()
        report = build_report(
            verdict,
            _config.logs_dir,
            _config.status_file,
            staleness_seconds=_config.verifier.staleness_seconds,
        )
        return format_report(report)

    @mcp.tool()
    def argos_errors(limit: int = 20) -> str:
        """Recent entries from today's critical error log.

        Args:
            limit: Max entries to return (default 20)
        """
        from argos.core.journal import CRITICAL_PREFIX, dated_path, tail

        entries = tail(dated_path(_config.logs_dir, CRITICAL_PREFIX), limit=limit)
        return format_critical_errors(entries)

    @mcp.tool()
    def argos_probes() -> str:
        """Describe the configured probes, their weights and timeouts."""
        from argos.core.verifier import StatusVerifier

        return format_probe_info(StatusVerifier.from_config(_config).verification_info())

    return mcp


def main() -> None:
    """Entry point for the argos MCP server (stdio)."""
    create_server().run()


if __name__ == "__main__":
    main()
