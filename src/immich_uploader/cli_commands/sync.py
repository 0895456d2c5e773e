"""Manual sync CLI command."""

import asyncio
import signal

import typer

from immich_uploader.cli_commands.common import open_library, open_tracker
from immich_uploader.config import Settings, get_settings
from immich_uploader.engine.manual import ManualSyncDriver, SyncPhase, SyncProgress
from immich_uploader.sync.uploader import AssetUploader


async def _run(settings: Settings, tracker) -> SyncProgress:
    async with AssetUploader(
        settings.full_server_url,
        settings.api_key,
        timeout=settings.request_timeout,
    ) as uploader:
        driver = ManualSyncDriver(tracker, open_library(settings), uploader)

        def _show(progress: SyncProgress) -> None:
            if progress.message:
                typer.echo(progress.message)

        driver.on_progress(_show)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, driver.cancel)
        except (NotImplementedError, RuntimeError):
            pass  # not available on this platform

        try:
            return await driver.run()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass


def sync_command() -> None:
    """Upload all pending assets now.

    Press Ctrl+C to stop after the current asset.
    """
    settings = get_settings()
    with open_tracker(settings) as tracker:
        progress = asyncio.run(_run(settings, tracker))

    if progress.phase is SyncPhase.ERROR:
        raise typer.Exit(1)
