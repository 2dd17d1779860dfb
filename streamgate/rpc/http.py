"""Pure asyncio HTTP gateway for session-multiplexed SSE streams.

Routes:
    - GET /            → readiness probe (X-Readiness-Probe header) or help/info
    - GET /sse         → open a session stream (stays open until disconnect)
    - POST /message    → submit one JSON-RPC message to ?sessionId=<id>

Every request first passes the allow-list check. Errors leave the gateway as
the uniform JSON-RPC envelope:

    {"jsonrpc":"2.0","error":{"code":-32000,"message":"..."},"id":null}

Caller errors (missing/unknown session, malformed body) use code -32000 and a
specific message. Anything unexpected is logged with its traceback and
answered with a generic 500 / -32603 "Internal server error".

Example usage:
    registry = SessionRegistry()
    gateway = Gateway(registry, AccessPolicy(), run_id="abc", base_url="http://localhost:3001")
    server = await start_http_server(gateway, "127.0.0.1", 3001)
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qs, quote, urlsplit

from streamgate.core.errors import (
    InvalidMessageError,
    StreamgateError,
    TransportClosedError,
)
from streamgate.rpc.access import LOCKDOWN_MESSAGE, AccessPolicy
from streamgate.rpc.dispatcher import DispatcherFactory, default_dispatcher_factory
from streamgate.rpc.protocol import INTERNAL_ERROR, SERVER_ERROR, error_envelope
from streamgate.rpc.registry import SessionRegistry
from streamgate.rpc.transport import DEFAULT_HEARTBEAT_INTERVAL, SseTransport
from streamgate.session.audit import AuditLog

logger = logging.getLogger(__name__)

# Constants
DEFAULT_PORT = 3001
MAX_BODY_SIZE = 4 * 1024 * 1024  # 4MB
READ_TIMEOUT = 30.0

ROOT_PATH = "/"
SSE_PATH = "/sse"
MESSAGE_PATH = "/message"
READINESS_PROBE_HEADER = "x-readiness-probe"

# HTTP header limits (DoS protection)
MAX_HEADERS_COUNT = 128
MAX_HEADER_NAME_LEN = 1024
MAX_HEADER_VALUE_LEN = 8192
MAX_TOTAL_HEADERS_SIZE = 32 * 1024
MAX_REQUEST_LINE_LEN = 8192

_STATUS_MESSAGES = {
    200: "OK",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    500: "Internal Server Error",
}


@dataclass
class HttpRequest:
    """Parsed HTTP request head.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: Request path without query string (e.g., "/message")
        query: Parsed query parameters
        headers: Dict of lowercase header names to values
    """

    method: str
    path: str
    query: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    def query_param(self, name: str) -> str | None:
        values = self.query.get(name)
        return values[0] if values else None


class HttpParseError(StreamgateError):
    """Raised when HTTP request parsing fails."""

    def __init__(self, message: str, status: int = 400) -> None:
        self.status = status
        super().__init__(message)


class GatewayError(StreamgateError):
    """A caller error with its HTTP status, answered with code -32000."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(message)


async def _readline(reader: asyncio.StreamReader, what: str) -> bytes:
    try:
        return await asyncio.wait_for(reader.readline(), timeout=READ_TIMEOUT)
    except TimeoutError:
        raise HttpParseError(f"{what} timeout") from None


async def read_http_request_head(reader: asyncio.StreamReader) -> HttpRequest:
    """Read only the request line and headers (not the body).

    Raises:
        HttpParseError: If the request line or headers are malformed or too large.
    """
    request_line = await _readline(reader, "Request")
    if not request_line:
        raise HttpParseError("Empty request")

    if len(request_line) > MAX_REQUEST_LINE_LEN:
        raise HttpParseError(f"Request line too long: {len(request_line)} > {MAX_REQUEST_LINE_LEN}")

    # Parse request line: "POST /message?sessionId=abc HTTP/1.1\r\n"
    try:
        request_line_str = request_line.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid request encoding: {e}") from e
    parts = request_line_str.split(" ")
    if len(parts) != 3:
        raise HttpParseError(f"Invalid request line: {request_line_str}")
    method, target, _version = parts

    headers: dict[str, str] = {}
    total_headers_size = 0

    while True:
        header_line = await _readline(reader, "Header read")
        if not header_line or header_line in (b"\r\n", b"\n"):
            break  # End of headers

        total_headers_size += len(header_line)
        if total_headers_size > MAX_TOTAL_HEADERS_SIZE:
            raise HttpParseError(
                f"Total headers size exceeds limit: {total_headers_size} > {MAX_TOTAL_HEADERS_SIZE}"
            )

        try:
            header_str = header_line.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise HttpParseError(f"Invalid header encoding: {e}") from e

        if ":" not in header_str:
            continue  # Skip malformed headers

        name, value = header_str.split(":", 1)
        name = name.strip()
        value = value.strip()

        if len(name) > MAX_HEADER_NAME_LEN:
            raise HttpParseError(f"Header name too long: {len(name)} > {MAX_HEADER_NAME_LEN}")
        if len(value) > MAX_HEADER_VALUE_LEN:
            raise HttpParseError(f"Header value too long: {len(value)} > {MAX_HEADER_VALUE_LEN}")
        if len(headers) >= MAX_HEADERS_COUNT:
            raise HttpParseError(f"Too many headers: exceeds limit of {MAX_HEADERS_COUNT}")

        headers[name.lower()] = value

    split = urlsplit(target)
    return HttpRequest(
        method=method.upper(),
        path=split.path or ROOT_PATH,
        query=parse_qs(split.query),
        headers=headers,
    )


async def read_http_body(
    reader: asyncio.StreamReader,
    headers: dict[str, str],
) -> str:
    """Read request body based on the Content-Length header.

    Raises:
        HttpParseError: If the body is too large, incomplete, or malformed.
    """
    content_length_str = headers.get("content-length", "0")
    try:
        content_length = int(content_length_str)
    except ValueError as e:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}") from e

    if content_length < 0:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}")
    if content_length > MAX_BODY_SIZE:
        raise HttpParseError(
            f"Request body too large: {content_length} > {MAX_BODY_SIZE}", status=413
        )
    if content_length == 0:
        return ""

    try:
        body_bytes = await asyncio.wait_for(
            reader.readexactly(content_length),
            timeout=READ_TIMEOUT,
        )
        return body_bytes.decode("utf-8")
    except TimeoutError:
        raise HttpParseError("Body read timeout") from None
    except asyncio.IncompleteReadError as e:
        raise HttpParseError(
            f"Incomplete body: expected {content_length}, got {len(e.partial)}"
        ) from e
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid body encoding: {e}") from e


async def send_http_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: str,
    content_type: str = "application/json",
) -> None:
    """Send a complete HTTP response and mark the connection for close."""
    status_message = _STATUS_MESSAGES.get(status, "Unknown")

    body_bytes = body.encode("utf-8")
    headers = [
        f"HTTP/1.1 {status} {status_message}",
        f"Content-Type: {content_type}; charset=utf-8",
        f"Content-Length: {len(body_bytes)}",
        "Connection: close",
        "",
        "",
    ]
    response = "\r\n".join(headers).encode("utf-8") + body_bytes

    writer.write(response)
    await writer.drain()


async def send_json(writer: asyncio.StreamWriter, status: int, payload: dict[str, Any]) -> None:
    await send_http_response(writer, status, json.dumps(payload, separators=(",", ":")))


class Gateway:
    """Routes HTTP requests to the readiness probe, stream-open, and message paths.

    The gateway owns no session state itself: sessions live in the registry,
    and each transport owns its own dispatcher.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        policy: AccessPolicy,
        run_id: str,
        base_url: str,
        dispatcher_factory: DispatcherFactory = default_dispatcher_factory,
        audit_log: AuditLog | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        started_at: datetime | None = None,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.run_id = run_id
        self.base_url = base_url.rstrip("/")
        self.started_at = started_at or datetime.now(timezone.utc)
        self._dispatcher_factory = dispatcher_factory
        self._audit_log = audit_log
        self._heartbeat_interval = heartbeat_interval

    def help_message(self) -> str:
        return (
            "Server is using Model Context Protocol. "
            f"Connect to {self.base_url}{SSE_PATH} to establish a connection."
        )

    def run_data(self) -> dict[str, str]:
        return {"runId": self.run_id, "startedAt": self.started_at.isoformat()}

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single HTTP connection.

        Pipeline:
            1. Parse request line + headers
            2. Allow-list check
            3. Route by method and path
        """
        try:
            try:
                request = await read_http_request_head(reader)
            except HttpParseError as e:
                logger.info("Rejected malformed HTTP request: %s", e.message)
                await send_http_response(
                    writer, e.status, error_envelope(SERVER_ERROR, f"Bad Request: {e.message}")
                )
                return

            if self.policy.is_locked_down:
                logger.error("%s (owner: %s)", LOCKDOWN_MESSAGE, self.policy.owner_id)
                await send_json(writer, 403, {"error": LOCKDOWN_MESSAGE})
                return

            if request.path == ROOT_PATH:
                await self._handle_root(request, writer)
            elif request.path == SSE_PATH:
                await self._handle_sse(request, reader, writer)
            elif request.path == MESSAGE_PATH:
                await self._handle_message(request, reader, writer)
            else:
                await send_http_response(writer, 404, error_envelope(SERVER_ERROR, "Not found"))

        except Exception as e:
            logger.error("Unexpected error handling connection: %s", e, exc_info=True)
            try:
                await send_http_response(
                    writer, 500, error_envelope(INTERNAL_ERROR, "Internal server error")
                )
            except Exception as send_err:
                logger.debug("Failed to send error response (client disconnected?): %s", send_err)

        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception as close_err:
                logger.debug("Connection close failed (already closed?): %s", close_err)

    async def _method_not_allowed(self, writer: asyncio.StreamWriter) -> None:
        await send_http_response(writer, 405, error_envelope(SERVER_ERROR, "Method not allowed"))

    async def _send_error(
        self,
        writer: asyncio.StreamWriter,
        error: Exception,
        log_message: str,
    ) -> None:
        """Answer with the 500 envelope; full detail stays in the server log."""
        logger.error("%s: %s", log_message, error, exc_info=error)
        await send_http_response(writer, 500, error_envelope(INTERNAL_ERROR, "Internal server error"))

    async def _handle_root(self, request: HttpRequest, writer: asyncio.StreamWriter) -> None:
        if request.method != "GET":
            await self._method_not_allowed(writer)
            return

        if READINESS_PROBE_HEADER in request.headers:
            logger.debug("Received readiness probe")
            await send_json(writer, 200, {"message": "Server is ready"})
            return

        try:
            logger.info("Received GET message at root")
            payload = {"message": self.help_message(), "data": self.run_data()}
        except Exception as e:
            await self._send_error(writer, e, "Error in GET /")
            return
        await send_json(writer, 200, payload)

    async def _handle_sse(
        self,
        request: HttpRequest,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        if request.method != "GET":
            await self._method_not_allowed(writer)
            return

        logger.info("Received GET message at %s", SSE_PATH)
        try:
            transport = self._open_session(writer)
        except Exception as e:
            await self._send_error(writer, e, f"Error in GET {SSE_PATH}")
            return

        try:
            await transport.start()
        except TransportClosedError:
            logger.info("Client left before stream for session %s started", transport.session_id)
            return
        except Exception as e:
            await transport.close()
            await self._send_error(writer, e, f"Error in GET {SSE_PATH}")
            return

        # Runs until the client disconnects or the transport is closed
        await transport.serve(reader)

    def _open_session(self, writer: asyncio.StreamWriter) -> SseTransport:
        """Create and register a transport for a new session."""
        session_id = self.registry.new_session_id()
        transport = SseTransport(
            writer,
            session_id=session_id,
            endpoint=f"{MESSAGE_PATH}?sessionId={quote(session_id)}",
            dispatcher_factory=self._dispatcher_factory,
            audit_log=self._audit_log,
            on_close=self.registry.deregister,
            heartbeat_interval=self._heartbeat_interval,
        )
        self.registry.register(session_id, transport)
        return transport

    async def _handle_message(
        self,
        request: HttpRequest,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        if request.method != "POST":
            await self._method_not_allowed(writer)
            return

        logger.info("Received POST message at %s", MESSAGE_PATH)
        try:
            await self._deliver_message(request, reader)
        except GatewayError as e:
            logger.info("Rejected POST %s: %s", MESSAGE_PATH, e.message)
            await send_http_response(writer, e.status, error_envelope(SERVER_ERROR, e.message))
            return
        except Exception as e:
            await self._send_error(writer, e, f"Error in POST {MESSAGE_PATH}")
            return

        await send_http_response(writer, 200, "Accepted", content_type="text/plain")

    async def _deliver_message(self, request: HttpRequest, reader: asyncio.StreamReader) -> None:
        """Validate the session id and body, then hand the body to the session's transport.

        Raises:
            GatewayError: For caller errors (400/404/413).
        """
        session_id = request.query_param("sessionId")
        if not session_id:
            raise GatewayError(400, "Bad Request: Missing sessionId")

        transport = self.registry.lookup(session_id)
        if transport is None:
            raise GatewayError(404, "Bad Request: Session not found")

        try:
            body = await read_http_body(reader, request.headers)
        except HttpParseError as e:
            raise GatewayError(e.status, f"Bad Request: {e.message}") from e

        logger.info("Received POST message for sessionId: %s", session_id)
        try:
            await transport.handle_inbound(body)
        except InvalidMessageError as e:
            raise GatewayError(400, f"Bad Request: {e.message}") from e
        except TransportClosedError as e:
            raise GatewayError(404, "Bad Request: Session not found") from e


async def start_http_server(
    gateway: Gateway,
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
) -> asyncio.Server:
    """Bind the gateway to host:port and start accepting connections.

    The caller owns the returned server and must close it after draining
    sessions (open SSE streams keep connection handlers alive).
    """
    server = await asyncio.start_server(gateway.handle_connection, host=host, port=port)
    addr = server.sockets[0].getsockname() if server.sockets else (host, port)
    logger.info("Listening on http://%s:%s/", addr[0], addr[1])
    return server
