"""JSON-RPC 2.0 protocol parsing, serialization, and the error envelope."""

import json
from typing import Any

from streamgate.core.errors import StreamgateError
from streamgate.rpc.types import Request, Response


class ParseError(StreamgateError):
    """Raised when JSON-RPC message parsing fails."""


# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000  # Server error range: -32000 to -32099


def parse_request(text: str) -> Request:
    """Parse JSON text into a JSON-RPC 2.0 Request.

    Args:
        text: A JSON document.

    Returns:
        A parsed Request object.

    Raises:
        ParseError: If the JSON is invalid or required fields are missing.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Request must be a JSON object")

    jsonrpc = data.get("jsonrpc")
    if jsonrpc != "2.0":
        raise ParseError(f"jsonrpc must be '2.0', got: {jsonrpc!r}")

    method = data.get("method")
    if not isinstance(method, str):
        raise ParseError(f"method must be a string, got: {type(method).__name__}")

    params = data.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise ParseError(f"params must be object or array, got: {type(params).__name__}")

    request_id = data.get("id")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, (str, int))
    ):
        raise ParseError(f"id must be string, number, or null, got: {type(request_id).__name__}")

    return Request(
        jsonrpc=jsonrpc,
        method=method,
        params=params,
        id=request_id,
    )


def response_to_dict(response: Response) -> dict[str, Any]:
    """Convert a Response to its wire dict."""
    data: dict[str, Any] = {
        "jsonrpc": response.jsonrpc,
        "id": response.id,
    }

    if response.error is not None:
        data["error"] = response.error
    else:
        data["result"] = response.result

    return data


def make_error_response(
    request_id: str | int | None,
    code: int,
    message: str,
    data: Any = None,
) -> Response:
    """Create an error response.

    Args:
        request_id: The id from the original request.
        code: JSON-RPC error code.
        message: Human-readable error message.
        data: Optional additional error data.

    Returns:
        A Response with the error field populated.
    """
    error: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if data is not None:
        error["data"] = data

    return Response(
        jsonrpc="2.0",
        id=request_id,
        error=error,
    )


def make_success_response(request_id: str | int | None, result: Any) -> Response:
    """Create a success response."""
    return Response(
        jsonrpc="2.0",
        id=request_id,
        result=result,
    )


def error_envelope(code: int, message: str) -> str:
    """Serialize the uniform gateway error body.

    Shape: {"jsonrpc":"2.0","error":{"code":...,"message":...},"id":null}
    """
    return json.dumps(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        separators=(",", ":"),
    )


# === Client-side functions ===


def serialize_request(request: Request) -> str:
    """Serialize a Request to a single line of JSON."""
    data: dict[str, Any] = {
        "jsonrpc": request.jsonrpc,
        "method": request.method,
    }

    if request.params is not None:
        data["params"] = request.params

    if request.id is not None:
        data["id"] = request.id

    return json.dumps(data, separators=(",", ":"))


def parse_response(text: str) -> Response:
    """Parse JSON text into a JSON-RPC 2.0 Response.

    Raises:
        ParseError: If the JSON is invalid or required fields are missing.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Response must be a JSON object")

    jsonrpc = data.get("jsonrpc")
    if jsonrpc != "2.0":
        raise ParseError(f"jsonrpc must be '2.0', got: {jsonrpc!r}")

    if "id" not in data:
        raise ParseError("Response must have 'id' field")
    response_id = data.get("id")

    has_result = "result" in data
    has_error = "error" in data
    if has_result and has_error:
        raise ParseError("Response cannot have both 'result' and 'error'")
    if not has_result and not has_error:
        raise ParseError("Response must have either 'result' or 'error'")

    error = data.get("error")
    if error is not None:
        if not isinstance(error, dict):
            raise ParseError(f"error must be an object, got: {type(error).__name__}")
        if "code" not in error or "message" not in error:
            raise ParseError("error must have 'code' and 'message' fields")

    return Response(
        jsonrpc=jsonrpc,
        id=response_id,
        result=data.get("result"),
        error=error,
    )
