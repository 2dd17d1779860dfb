"""Usage metering collaborators.

The gateway charges two kinds of events:
- "gateway-start-gb" once at startup, counted in whole GB of allotted memory
- "session-minutes" at shutdown, for every session still open

Charges are fire-and-forget: callers log failures and carry on. There are no
retries.

Example:
    async with HttpMeter("https://billing.internal/charge", token) as meter:
        await meter.charge("gateway-start-gb", 2)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

import httpx

from streamgate.core.errors import StreamgateError

if TYPE_CHECKING:
    from streamgate.rpc.registry import Session

logger = logging.getLogger(__name__)

START_EVENT = "gateway-start-gb"
SESSION_EVENT = "session-minutes"


class MeteringError(StreamgateError):
    """Raised when the metering endpoint rejects or cannot receive a charge."""


class Meter(Protocol):
    """Protocol for usage metering."""

    async def charge(self, event_name: str, count: int) -> None: ...

    async def charge_for_sessions(self, sessions: Iterable[Session]) -> None: ...

    async def aclose(self) -> None: ...


def start_charge_count(memory_mbytes: int) -> int:
    """Whole GB of memory for the startup charge, at least 1."""
    return math.ceil(memory_mbytes / 1024) or 1


def session_minutes(sessions: Iterable[Session], now: datetime | None = None) -> int:
    """Sum of session durations, each rounded up to a whole minute (min 1)."""
    current = now or datetime.now(timezone.utc)
    total = 0
    for session in sessions:
        seconds = max((current - session.created_at).total_seconds(), 0.0)
        total += max(math.ceil(seconds / 60), 1)
    return total


class LoggingMeter:
    """Meter that only logs charges. Used when no metering URL is configured."""

    def __init__(self) -> None:
        self.charged: list[tuple[str, int]] = []

    async def charge(self, event_name: str, count: int) -> None:
        self.charged.append((event_name, count))
        logger.info("Charged %d x %s", count, event_name)

    async def charge_for_sessions(self, sessions: Iterable[Session]) -> None:
        minutes = session_minutes(sessions)
        if minutes:
            await self.charge(SESSION_EVENT, minutes)

    async def aclose(self) -> None:
        pass


class HttpMeter:
    """Meter that POSTs charges to an HTTP endpoint.

    Request body: {"eventName": <str>, "count": <int>}
    Authorization: Bearer <api_token>
    """

    def __init__(
        self,
        url: str,
        api_token: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_token}"},
        )

    async def __aenter__(self) -> HttpMeter:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def charge(self, event_name: str, count: int) -> None:
        """Send one charge.

        Raises:
            MeteringError: On connection failure or non-2xx status.
        """
        try:
            response = await self._client.post(
                self._url, json={"eventName": event_name, "count": count}
            )
        except httpx.HTTPError as e:
            raise MeteringError(f"Failed to reach metering endpoint: {e}") from e

        if response.is_error:
            raise MeteringError(
                f"Metering endpoint returned {response.status_code} for {event_name}"
            )
        logger.info("Charged %d x %s", count, event_name)

    async def charge_for_sessions(self, sessions: Iterable[Session]) -> None:
        minutes = session_minutes(sessions)
        if minutes:
            await self.charge(SESSION_EVENT, minutes)

    async def aclose(self) -> None:
        await self._client.aclose()
