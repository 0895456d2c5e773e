"""Uploader CLI - command-line interface for the sync client."""

import typer

from immich_uploader import __version__
from immich_uploader.cli_commands import (
    background_app,
    check_command,
    config_app,
    status_command,
    sync_command,
    tracking_app,
)
from immich_uploader.config import get_settings
from immich_uploader.logging import setup_logging

app = typer.Typer(
    name="immich-uploader",
    help="Immich Uploader - upload new photos and videos to an Immich server.",
    no_args_is_help=True,
)

# Register subcommands
app.add_typer(tracking_app, name="tracking")
app.add_typer(background_app, name="background")
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"immich-uploader {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Immich Uploader - upload new photos and videos."""
    settings = get_settings()
    setup_logging(settings.log_level, log_file=settings.log_file)


# Register direct commands on the main app
app.command(name="sync")(sync_command)
app.command(name="check")(check_command)
app.command(name="status")(status_command)


if __name__ == "__main__":
    app()
