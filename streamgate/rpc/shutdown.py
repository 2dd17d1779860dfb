"""Orderly shutdown of all live sessions.

State machine: RUNNING → DRAINING → STOPPED

A stop is triggered by SIGINT/SIGTERM, by the host closing a watched input
stream (watch_stream), or by request_stop().
drain() then, within one hard grace period:
    1. asks the meter to charge for every still-open session
    2. empties the registry
    3. closes every drained transport

The coordinator never terminates the process. It reports a ShutdownResult
and the entry point decides how to exit: a forced result means something did
not finish within the grace period and the process must go down anyway.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from enum import Enum

from streamgate.rpc.metering import Meter
from streamgate.rpc.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 15.0


class ShutdownState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ShutdownResult:
    """Outcome of a drain.

    Attributes:
        forced: True if the grace period elapsed before draining finished.
        closed: Number of transports closed before the drain ended.
    """

    forced: bool
    closed: int


class ShutdownCoordinator:
    """Drains the session registry with a bounded grace period."""

    def __init__(
        self,
        registry: SessionRegistry,
        meter: Meter | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self._registry = registry
        self._meter = meter
        self._grace_period = grace_period
        self._state = ShutdownState.RUNNING
        self._stop_requested = asyncio.Event()
        self._closed = 0
        self._result: ShutdownResult | None = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def grace_period(self) -> float:
        return self._grace_period

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_stop(self) -> None:
        """Ask for shutdown. Safe to call repeatedly."""
        if not self._stop_requested.is_set():
            logger.info("Shutdown requested")
        self._stop_requested.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT and SIGTERM to request_stop().

        Platforms without loop signal support (Windows) are skipped.
        """
        event_loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                event_loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s not supported on this platform", sig.name)

    async def watch_stream(self, reader: asyncio.StreamReader) -> None:
        """Request a stop once the host closes the stream (typically stdin)."""
        try:
            while await reader.read(1024):
                pass
        except (ConnectionError, OSError) as e:
            logger.debug("Watched stream failed: %s", e)
        logger.info("Input stream closed by host")
        self.request_stop()

    async def wait_for_stop(self) -> None:
        await self._stop_requested.wait()

    async def drain(self) -> ShutdownResult:
        """Charge for open sessions, then close all of them within the grace period.

        Calling drain() again after it finished returns the first result.
        """
        if self._result is not None:
            return self._result

        self._state = ShutdownState.DRAINING
        logger.info(
            "Draining %d session(s) (grace period %.1fs)", len(self._registry), self._grace_period
        )

        forced = False
        try:
            await asyncio.wait_for(self._drain_sessions(), timeout=self._grace_period)
        except TimeoutError:
            forced = True
            logger.warning(
                "Drain did not finish within %.1fs; forcing shutdown", self._grace_period
            )

        self._state = ShutdownState.STOPPED
        self._result = ShutdownResult(forced=forced, closed=self._closed)
        logger.info("Shutdown complete (forced=%s, closed=%d)", forced, self._closed)
        return self._result

    async def _drain_sessions(self) -> None:
        if self._meter is not None:
            try:
                await self._meter.charge_for_sessions(self._registry.sessions())
            except Exception:
                logger.error("Failed to charge for open sessions", exc_info=True)

        for transport in self._registry.drain_all():
            await transport.close()
            self._closed += 1
