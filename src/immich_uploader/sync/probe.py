"""Connection check against the server's API key endpoint."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from immich_uploader import __version__
from immich_uploader.errors import ConfigError
from immich_uploader.sync.uploader import build_endpoint

logger = logging.getLogger(__name__)

PROBE_SEGMENT = "api-keys/me"
DISPLAY_SECONDS = 5.0


class ProbeState(Enum):
    NONE = "none"
    TESTING = "testing"
    VALID = "valid"
    INVALID_API_KEY = "invalid_api_key"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    state: ProbeState
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is ProbeState.VALID

    def describe(self) -> str:
        if self.state is ProbeState.VALID:
            return "Connection successful"
        if self.state is ProbeState.INVALID_API_KEY:
            return "Invalid API key"
        if self.state is ProbeState.INSUFFICIENT_PERMISSIONS:
            return "API key lacks required permissions"
        if self.state is ProbeState.ERROR:
            return self.message or "Connection failed"
        return ""


NO_RESULT = ProbeResult(ProbeState.NONE)


class ConnectionProbe:
    """Checks that the server is reachable and the API key is accepted."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self._timeout = timeout
        self._client = client

    async def check(self) -> ProbeResult:
        """Run the probe.

        Returns:
            VALID on 200, INVALID_API_KEY on 401, INSUFFICIENT_PERMISSIONS on
            403 and ERROR for anything else, including bad configuration
        """
        try:
            url = build_endpoint(self.base_url, PROBE_SEGMENT)
        except ConfigError:
            return ProbeResult(ProbeState.ERROR, "Invalid URL")
        if not self.api_key:
            return ProbeResult(ProbeState.ERROR, "API key not configured")

        try:
            if self._client is not None:
                response = await self._get(self._client, url)
            else:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    headers={"User-Agent": f"immich-uploader/{__version__}"},
                ) as client:
                    response = await self._get(client, url)
        except httpx.HTTPError as e:
            logger.warning("Connection probe failed: %s", e)
            return ProbeResult(ProbeState.ERROR, str(e) or type(e).__name__)

        if response.status_code == 200:
            return ProbeResult(ProbeState.VALID)
        if response.status_code == 401:
            return ProbeResult(ProbeState.INVALID_API_KEY)
        if response.status_code == 403:
            return ProbeResult(ProbeState.INSUFFICIENT_PERMISSIONS)
        return ProbeResult(ProbeState.ERROR, f"HTTP {response.status_code}")

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(url, headers={"x-api-key": self.api_key})


class TransientStatus:
    """Holds the last probe result for display and clears it after a delay.

    A result is cleared only if it is still the one being shown when its
    timer fires; a newer result gets its own full display period.

    Must be used from within a running event loop.
    """

    def __init__(self, display_seconds: float = DISPLAY_SECONDS) -> None:
        self.display_seconds = display_seconds
        self._current: ProbeResult = NO_RESULT
        self._generation = 0
        self._handle: asyncio.TimerHandle | None = None
        self._callbacks: list[Callable[[ProbeResult], None]] = []

    @property
    def current(self) -> ProbeResult:
        return self._current

    def on_change(self, callback: Callable[[ProbeResult], None]) -> None:
        self._callbacks.append(callback)

    def show(self, result: ProbeResult) -> None:
        """Display ``result``; results other than TESTING expire."""
        self._generation += 1
        self._set(result)

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        if result.state not in (ProbeState.NONE, ProbeState.TESTING):
            generation = self._generation
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(
                self.display_seconds, self._expire, generation
            )

    def _expire(self, generation: int) -> None:
        self._handle = None
        if generation == self._generation:
            self._set(NO_RESULT)

    def _set(self, result: ProbeResult) -> None:
        self._current = result
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception:
                logger.debug("Probe status callback failed", exc_info=True)

    async def run(self, probe: ConnectionProbe) -> ProbeResult:
        """Show TESTING, run the probe and show its result."""
        self.show(ProbeResult(ProbeState.TESTING))
        result = await probe.check()
        self.show(result)
        return result
