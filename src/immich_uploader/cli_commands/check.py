"""Connection check CLI command."""

import asyncio

import typer

from immich_uploader.cli_commands.common import output
from immich_uploader.config import get_settings
from immich_uploader.sync.probe import ConnectionProbe, ProbeResult, ProbeState, TransientStatus


def check_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Check that the server is reachable and the API key works."""
    settings = get_settings()
    probe = ConnectionProbe(
        settings.full_server_url,
        settings.api_key,
        timeout=settings.request_timeout,
    )
    status = TransientStatus()

    def _show_testing(result: ProbeResult) -> None:
        if result.state is ProbeState.TESTING and not output_json:
            typer.echo("Testing connection...")

    status.on_change(_show_testing)
    result = asyncio.run(status.run(probe))

    output(
        {"state": result.state.value, "message": result.describe()},
        output_json,
        [result.describe()],
    )
    if not result.ok:
        raise typer.Exit(1)
