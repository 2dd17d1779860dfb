"""Shared dispatch infrastructure for JSON-RPC dispatchers.

dispatch_request() handles the common pattern of:
- Handler lookup
- Success/error response generation
- Exception handling with proper error codes
- Notification handling (requests without id)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from streamgate.core.errors import StreamgateError
from streamgate.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    make_error_response,
    make_success_response,
)
from streamgate.rpc.types import Request, Response

logger = logging.getLogger(__name__)

# Type alias for handler functions
Handler = Callable[[dict[str, Any]], Coroutine[Any, Any, Any]]


class InvalidParamsError(StreamgateError):
    """Raised when method parameters are invalid."""


async def dispatch_request(
    request: Request,
    handlers: dict[str, Handler],
    log_context: str,
) -> Response | None:
    """Dispatch a request to the appropriate handler.

    Args:
        request: The parsed JSON-RPC request.
        handlers: Mapping of method names to handler coroutines.
        log_context: Context string for log messages (e.g., "session abc method").

    Returns:
        A Response object, or None for notifications (requests without id).
    """
    handler = handlers.get(request.method)
    if handler is None:
        if request.id is None:
            return None  # Notifications don't get error responses
        return make_error_response(
            request.id,
            METHOD_NOT_FOUND,
            f"Method not found: {request.method}",
        )

    if isinstance(request.params, list):
        if request.id is None:
            return None
        return make_error_response(
            request.id,
            INVALID_PARAMS,
            "Positional params (array) not supported, use named params (object)",
        )

    try:
        result = await handler(request.params or {})

        if request.id is None:
            return None
        return make_success_response(request.id, result)

    except InvalidParamsError as e:
        if request.id is None:
            return None
        return make_error_response(request.id, INVALID_PARAMS, e.message)

    except StreamgateError as e:
        if request.id is None:
            return None
        return make_error_response(request.id, INTERNAL_ERROR, e.message)

    except Exception as e:
        logger.error(
            "Unexpected error dispatching %s '%s': %s",
            log_context,
            request.method,
            e,
            exc_info=True,
        )
        if request.id is None:
            return None
        return make_error_response(request.id, INTERNAL_ERROR, "Internal error")
