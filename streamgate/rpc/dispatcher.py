"""Per-session JSON-RPC dispatchers.

The gateway never shares a dispatcher between sessions: every stream-open
request calls the configured DispatcherFactory with that session's
SessionContext, and the resulting dispatcher lives and dies with the session.
Closing one session therefore cannot disturb the message handling of another.

The shipped SessionDispatcher is a minimal protocol endpoint. Applications
supply their own factory to run real methods.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from streamgate.rpc.dispatch_core import Handler, dispatch_request
from streamgate.rpc.types import Request, Response

logger = logging.getLogger(__name__)

# Pushes one message onto the session's stream
SendFn = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]


class Dispatcher(Protocol):
    """Protocol for objects that turn an inbound request into a response."""

    async def dispatch(self, request: Request) -> Response | None: ...


@dataclass(frozen=True)
class SessionContext:
    """Session-scoped values handed to a dispatcher at construction time.

    Attributes:
        session_id: Id of the session the dispatcher serves.
        created_at: When the session's stream was opened.
        send: Coroutine that emits a message on the session's stream,
            for events the dispatcher produces outside a request/response.
    """

    session_id: str
    created_at: datetime
    send: SendFn


DispatcherFactory = Callable[[SessionContext], Dispatcher]


class SessionDispatcher:
    """Routes JSON-RPC requests for a single session.

    Handles 'ping' and 'session/info'. Extra handlers can be supplied at
    construction; they override the built-ins with the same name.
    """

    def __init__(
        self,
        context: SessionContext,
        handlers: dict[str, Handler] | None = None,
    ) -> None:
        self._context = context
        self._handlers: dict[str, Handler] = {
            "ping": self._handle_ping,
            "session/info": self._handle_info,
        }
        if handlers:
            self._handlers.update(handlers)

    @property
    def session_id(self) -> str:
        return self._context.session_id

    async def dispatch(self, request: Request) -> Response | None:
        """Dispatch a request to the appropriate handler.

        Returns:
            A Response object, or None for notifications (requests without id).
        """
        return await dispatch_request(
            request, self._handlers, f"session {self._context.session_id} method"
        )

    async def _handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _handle_info(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "sessionId": self._context.session_id,
            "createdAt": self._context.created_at.isoformat(),
        }


def default_dispatcher_factory(context: SessionContext) -> Dispatcher:
    """Build the stock dispatcher for a new session."""
    return SessionDispatcher(context)
