"""Session-multiplexed JSON-RPC over HTTP + SSE.

Example usage:
    python -m streamgate --port 3001
    curl -N http://localhost:3001/sse          # prints the endpoint event
    curl -X POST "http://localhost:3001/message?sessionId=<id>" \\
        -d '{"jsonrpc":"2.0","method":"ping","id":1}'
"""

from streamgate.rpc.access import AccessPolicy
from streamgate.rpc.dispatcher import (
    Dispatcher,
    DispatcherFactory,
    SessionContext,
    SessionDispatcher,
    default_dispatcher_factory,
)
from streamgate.rpc.http import (
    DEFAULT_PORT,
    MAX_BODY_SIZE,
    Gateway,
    HttpParseError,
    HttpRequest,
    start_http_server,
)
from streamgate.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    ParseError,
    error_envelope,
    make_error_response,
    make_success_response,
    parse_request,
    parse_response,
    serialize_request,
)
from streamgate.rpc.registry import Session, SessionRegistry
from streamgate.rpc.shutdown import ShutdownCoordinator, ShutdownResult, ShutdownState
from streamgate.rpc.transport import SseTransport
from streamgate.rpc.types import Request, Response

__all__ = [
    # Types
    "Request",
    "Response",
    "HttpRequest",
    "Session",
    # Protocol functions
    "parse_request",
    "make_error_response",
    "make_success_response",
    "error_envelope",
    "serialize_request",
    "parse_response",
    # Error codes
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "SERVER_ERROR",
    # Gateway
    "Gateway",
    "start_http_server",
    "DEFAULT_PORT",
    "MAX_BODY_SIZE",
    "AccessPolicy",
    # Sessions
    "SessionRegistry",
    "SseTransport",
    "ShutdownCoordinator",
    "ShutdownResult",
    "ShutdownState",
    # Dispatch
    "Dispatcher",
    "DispatcherFactory",
    "SessionContext",
    "SessionDispatcher",
    "default_dispatcher_factory",
    # Exceptions
    "ParseError",
    "HttpParseError",
]
