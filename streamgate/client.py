"""Async client for streamgate servers.

Opens a session stream, learns the message endpoint from the first SSE event,
then posts JSON-RPC requests and reads the responses back off the stream.

Usage:
    async with StreamgateClient("http://127.0.0.1:3001") as client:
        session = await client.connect()
        result = await session.call("ping")
        await session.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from streamgate.core.errors import StreamgateError
from streamgate.rpc.protocol import ParseError, parse_response, serialize_request
from streamgate.rpc.types import Request, Response

logger = logging.getLogger(__name__)


class ClientError(StreamgateError):
    """Exception for client-side errors (connection, timeout, protocol)."""


@dataclass
class SseEvent:
    """One parsed Server-Sent Event."""

    event: str
    data: str


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SseEvent]:
    """Parse SSE framing from a line iterator. Comment lines are skipped."""
    event_type = "message"
    data_lines: list[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                yield SseEvent(event=event_type, data="\n".join(data_lines))
            event_type = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_type = value
        elif name == "data":
            data_lines.append(value)


class StreamgateSession:
    """A connected session: one open stream plus its message endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        events: AsyncIterator[SseEvent],
        endpoint: str,
        stack: contextlib.AsyncExitStack,
    ) -> None:
        self._client = client
        self._response = response
        self._events = events
        self._stack = stack
        self.endpoint = endpoint
        self.session_id = httpx.URL(endpoint).params.get("sessionId", "")
        self._request_id = 0

    async def post(self, request: Request) -> None:
        """POST one request to the session's endpoint.

        Raises:
            ClientError: On connection failure or non-200 status.
        """
        try:
            response = await self._client.post(
                self.endpoint,
                content=serialize_request(request),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ClientError(f"Failed to post message: {e}") from e
        if response.status_code != 200:
            raise ClientError(f"Server returned {response.status_code}: {response.text}")

    async def receive(self, timeout: float = 10.0) -> dict[str, Any]:
        """Wait for the next "message" event on the stream."""
        try:
            return await asyncio.wait_for(self._next_message(), timeout=timeout)
        except TimeoutError:
            raise ClientError(f"No message within {timeout}s") from None
        except httpx.HTTPError as e:
            raise ClientError(f"Stream read failed: {e}") from e

    async def _next_message(self) -> dict[str, Any]:
        async for event in self._events:
            if event.event != "message":
                continue
            try:
                return json.loads(event.data)
            except json.JSONDecodeError as e:
                raise ClientError(f"Invalid JSON in stream event: {e}") from e
        raise ClientError("Stream closed by server")

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> Response:
        """Send a request and wait for the response with the same id.

        Messages with other ids that arrive first are dropped.
        """
        self._request_id += 1
        request_id = self._request_id
        await self.post(Request(jsonrpc="2.0", method=method, params=params, id=request_id))
        while True:
            message = await self.receive(timeout=timeout)
            if message.get("id") != request_id:
                logger.debug("Skipping unrelated message: %s", message)
                continue
            try:
                return parse_response(json.dumps(message))
            except ParseError as e:
                raise ClientError(f"Invalid response: {e.message}") from e

    async def close(self) -> None:
        await self._stack.aclose()


class StreamgateClient:
    """Async HTTP client for streamgate servers."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Base URL of the server.
            timeout: Connect/write timeout in seconds. Stream reads never time out.
            transport: Optional httpx transport (tests).
        """
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            timeout=httpx.Timeout(timeout, read=None),
            transport=transport,
        )

    async def __aenter__(self) -> StreamgateClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def ready(self) -> bool:
        """Return True if the readiness probe answers 200."""
        try:
            response = await self._client.get("/", headers={"X-Readiness-Probe": "1"})
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def info(self) -> dict[str, Any]:
        """Fetch the help/info payload."""
        try:
            response = await self._client.get("/")
        except httpx.HTTPError as e:
            raise ClientError(f"Failed to reach server: {e}") from e
        if response.status_code != 200:
            raise ClientError(f"Server returned {response.status_code}: {response.text}")
        return response.json()

    async def connect(self, timeout: float = 10.0) -> StreamgateSession:
        """Open a session stream and wait for its endpoint event.

        Raises:
            ClientError: If the stream cannot be opened or sends no endpoint.
        """
        stack = contextlib.AsyncExitStack()
        try:
            response = await stack.enter_async_context(self._client.stream("GET", "/sse"))
            if response.status_code != 200:
                await response.aread()
                raise ClientError(f"Server returned {response.status_code}: {response.text}")
            events = iter_sse_events(response.aiter_lines())
            first = await asyncio.wait_for(anext(events), timeout=timeout)
        except (httpx.HTTPError, StopAsyncIteration, TimeoutError) as e:
            await stack.aclose()
            raise ClientError(f"Failed to open stream: {e!r}") from e
        except BaseException:
            await stack.aclose()
            raise

        if first.event != "endpoint":
            await stack.aclose()
            raise ClientError(f"Expected endpoint event, got {first.event!r}")
        return StreamgateSession(self._client, response, events, first.data, stack)
