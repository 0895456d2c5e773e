"""Cooperative cancellation shared between a host and a running operation."""

import threading


class CancellationToken:
    """A one-way flag polled at item boundaries.

    Backed by threading.Event so a host thread or signal handler can set it
    while an event loop reads it.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        """Clear the flag so the token can be reused for a new run."""
        self._event.clear()
