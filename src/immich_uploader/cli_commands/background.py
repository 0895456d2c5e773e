"""Background host CLI commands."""

import asyncio
import signal

import typer

from immich_uploader.cli_commands.common import open_library, open_queue, open_tracker, output
from immich_uploader.config import Settings, get_settings
from immich_uploader.engine.lifecycle import CycleResult, JobLifecycleController
from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.uploader import AssetUploader

background_app = typer.Typer(
    name="background",
    help="Background host - run lifecycle cycles and the transfer worker.",
    no_args_is_help=True,
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    "-j",
    help="Output in JSON format",
)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _controller(settings: Settings, tracker, queue, token=None) -> JobLifecycleController:
    return JobLifecycleController(
        tracker,
        open_library(settings),
        queue,
        settings.full_server_url,
        settings.api_key,
        cancel_token=token,
    )


def _uploader(settings: Settings) -> AssetUploader:
    return AssetUploader(
        settings.full_server_url,
        settings.api_key,
        timeout=settings.request_timeout,
    )


@background_app.command()
def cycle(output_json: bool = JSON_OPTION) -> None:
    """Run one lifecycle cycle against the local job queue."""
    settings = get_settings()
    with open_tracker(settings) as tracker, open_queue(settings) as queue:
        controller = _controller(settings, tracker, queue)
        result = asyncio.run(controller.run_cycle())
        report = controller.last_report

    output(
        {
            "result": result.value,
            "retried": report.retried,
            "acknowledged": report.acknowledged,
            "abandoned": report.abandoned,
            "enqueued": report.enqueued,
        },
        output_json,
        [
            f"Cycle {result.value}: retried={report.retried}, "
            f"acknowledged={report.acknowledged}, abandoned={report.abandoned}, "
            f"enqueued={report.enqueued}"
        ],
    )
    if result is CycleResult.FAILED:
        raise typer.Exit(1)


@background_app.command()
def drain(output_json: bool = JSON_OPTION) -> None:
    """Send every queued job once."""
    settings = get_settings()

    async def _drain(queue):
        async with _uploader(settings) as uploader:
            return await queue.drain(uploader)

    with open_queue(settings) as queue:
        stats = asyncio.run(_drain(queue))

    output(
        {"sent": stats.sent, "completed": stats.completed, "failed": stats.failed},
        output_json,
        [f"Sent {stats.sent}: {stats.completed} completed, {stats.failed} failed"],
    )


async def _pause(token: CancellationToken, seconds: float) -> None:
    """Sleep up to ``seconds``, waking within a second of cancellation."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while not token.cancelled:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(1.0, remaining))


async def _run_host(
    settings: Settings,
    tracker,
    queue,
    cycle_interval: float,
    token: CancellationToken,
) -> None:
    controller = _controller(settings, tracker, queue, token)

    def _stop() -> None:
        typer.echo("\nStopping background host after the current item...")
        controller.notify_cancel()

    loop = asyncio.get_running_loop()
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            pass  # not available on this platform

    try:
        async with _uploader(settings) as uploader:
            while not token.cancelled:
                result = await controller.run_cycle()
                stats = await queue.drain(uploader, cancel_token=token)
                if result is CycleResult.PROCESSING and stats.sent:
                    continue
                await _pause(token, cycle_interval)
    finally:
        for sig in STOP_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


@background_app.command()
def run(
    interval: int = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between cycles (default: from config)",
    ),
) -> None:
    """Alternate cycles and transfers until interrupted.

    A cycle that reports processing is re-run right away when the transfer
    worker sent something in between. Ctrl+C or SIGTERM stops after the
    current transfer.
    """
    settings = get_settings()
    cycle_interval = interval or settings.cycle_interval

    typer.echo(f"Background host started (interval: {cycle_interval}s). Press Ctrl+C to stop.")
    with open_tracker(settings) as tracker, open_queue(settings) as queue:
        prune = tracker.prune_deleted_in_background(open_library(settings))
        try:
            asyncio.run(
                _run_host(settings, tracker, queue, cycle_interval, CancellationToken())
            )
        finally:
            # The prune thread shares the tracker connection
            prune.join()
    typer.echo("Background host stopped")
