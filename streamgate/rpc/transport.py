"""Server-Sent Events transport for one session.

An SseTransport owns the open response of one GET /sse request and mediates
both directions of traffic for its session:

- Outbound: send() records the message in the audit log, then writes it as an
  SSE "message" event. Both steps run under a per-transport lock, so
  messages arrive in exactly the order send() was called.
- Inbound: handle_inbound() parses a POSTed JSON-RPC body, hands it to the
  session's own dispatcher, and sends the response (if any) on the stream.

Wire format (one event per message, blank line terminates an event):

    event: endpoint
    data: /message?sessionId=<id>

    event: message
    data: {"jsonrpc":"2.0","id":1,"result":{}}

Lifecycle: close() is idempotent. The first call marks the transport closed,
runs the on_close hook synchronously (registry deregistration), then releases
the connection. Any send() after that, or racing with it, raises
TransportClosedError instead of writing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import string
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from streamgate.core.errors import InvalidMessageError, TransportClosedError
from streamgate.rpc.dispatcher import DispatcherFactory, SessionContext
from streamgate.rpc.protocol import ParseError, parse_request, response_to_dict
from streamgate.session.audit import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 15.0

SSE_RESPONSE_HEADERS = (
    "HTTP/1.1 200 OK",
    "Content-Type: text/event-stream; charset=utf-8",
    "Cache-Control: no-cache",
    "Connection: keep-alive",
    "X-Accel-Buffering: no",  # Disable proxy buffering
)

_EVENT_TYPE_CHARS = frozenset(string.ascii_letters + string.digits + "_-.")


def _sanitize_sse_event_type(event_type: str) -> str:
    """Keep only ASCII letters, digits, underscore, dash and dot.

    The event field is unquoted, so a newline would break framing.
    Falls back to "message" if nothing is left.
    """
    sanitized = "".join(c for c in event_type if c in _EVENT_TYPE_CHARS)
    return sanitized if sanitized else "message"


def format_sse_event(event_type: str, data: str) -> bytes:
    """Frame one SSE event. Multi-line data becomes one data: line per line."""
    lines = [f"event: {_sanitize_sse_event_type(event_type)}"]
    lines.extend(f"data: {line}" for line in data.splitlines() or [""])
    lines.append("")
    lines.append("")
    return "\n".join(lines).encode("utf-8")


class SseTransport:
    """Streaming transport bound to one session and one open connection."""

    def __init__(
        self,
        writer: asyncio.StreamWriter,
        session_id: str,
        endpoint: str,
        dispatcher_factory: DispatcherFactory,
        audit_log: AuditLog | None = None,
        on_close: Callable[[str], None] | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        """Initialize the transport.

        Args:
            writer: Stream writer for the client connection.
            session_id: Id of the session this transport belongs to.
            endpoint: URL (path + query) the client POSTs messages to.
            dispatcher_factory: Builds this session's dispatcher.
            audit_log: Optional collaborator that records outbound messages.
            on_close: Called synchronously with session_id on the first close().
            heartbeat_interval: Seconds between keep-alive comments in serve().
        """
        self.session_id = session_id
        self.endpoint = endpoint
        self.created_at = datetime.now(timezone.utc)
        self._writer = writer
        self._audit_log = audit_log
        self._on_close = on_close
        self._heartbeat_interval = heartbeat_interval
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._closed_event = asyncio.Event()
        self._dispatcher = dispatcher_factory(
            SessionContext(session_id=session_id, created_at=self.created_at, send=self.send)
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Send SSE response headers and the endpoint event."""
        head = "\r\n".join((*SSE_RESPONSE_HEADERS, "", "")).encode("utf-8")
        async with self._write_lock:
            await self._write(head + format_sse_event("endpoint", self.endpoint))
        logger.debug("SSE stream started for session %s", self.session_id)

    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one protocol message on the stream.

        Raises:
            TransportClosedError: If the transport is closed, or closes while
                the write is in flight.
        """
        data = json.dumps(message, separators=(",", ":"))
        # Audit and write share the lock so delivery follows call order
        async with self._write_lock:
            if self._closed:
                raise TransportClosedError(self.session_id)

            if self._audit_log is not None:
                try:
                    await self._audit_log.record(self.session_id, message)
                except Exception:
                    logger.warning(
                        "Failed to record message for session %s", self.session_id, exc_info=True
                    )

            await self._write(format_sse_event("message", data))
        logger.info("Sent SSE message to session %s", self.session_id)

    async def handle_inbound(self, body: str) -> None:
        """Parse a POSTed body and dispatch it within this session.

        The dispatcher's response, if any, is delivered on the stream before
        this returns.

        Raises:
            InvalidMessageError: If the body is not a valid JSON-RPC request.
            TransportClosedError: If the transport is closed.
        """
        if self._closed:
            raise TransportClosedError(self.session_id)

        try:
            request = parse_request(body)
        except ParseError as e:
            raise InvalidMessageError(f"Invalid message: {e.message}") from e

        response = await self._dispatcher.dispatch(request)
        if response is not None:
            await self.send(response_to_dict(response))

    async def serve(self, reader: asyncio.StreamReader) -> None:
        """Hold the stream open until the client disconnects or close() is called.

        Sends a ": ping" comment every heartbeat interval; a failed heartbeat
        means the peer is gone. Always closes the transport on exit.
        """
        disconnect = asyncio.create_task(self._wait_for_disconnect(reader))
        closed = asyncio.create_task(self._closed_event.wait())
        try:
            while not self._closed:
                done, _ = await asyncio.wait(
                    {disconnect, closed},
                    timeout=self._heartbeat_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if done:
                    break
                try:
                    async with self._write_lock:
                        await self._write(b": ping\n\n")
                except TransportClosedError:
                    break
        finally:
            disconnect.cancel()
            closed.cancel()
            await self.close()

    async def close(self) -> None:
        """Close the transport. Only the first call has any effect."""
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()

        if self._on_close is not None:
            try:
                self._on_close(self.session_id)
            except Exception:
                logger.exception("on_close hook failed for session %s", self.session_id)

        try:
            self._writer.close()
            await self._writer.wait_closed()
        except Exception as close_err:
            logger.debug("Stream close failed (already closed?): %s", close_err)
        logger.info("Transport closed for session %s", self.session_id)

    async def _write(self, payload: bytes) -> None:
        """Write bytes to the connection. Caller must hold the write lock."""
        if self._closed:
            raise TransportClosedError(self.session_id)
        try:
            self._writer.write(payload)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug("Write failed for session %s: %s", self.session_id, e)
            await self.close()
            raise TransportClosedError(self.session_id) from e
        if self._closed:
            raise TransportClosedError(self.session_id)

    @staticmethod
    async def _wait_for_disconnect(reader: asyncio.StreamReader) -> None:
        """Return once the client side of the connection is gone."""
        try:
            while await reader.read(1024):
                pass
        except (ConnectionError, OSError):
            pass
