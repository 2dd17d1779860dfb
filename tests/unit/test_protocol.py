"""Unit tests for streamgate.rpc.protocol."""

import json

import pytest

from streamgate.rpc.protocol import (
    INTERNAL_ERROR,
    SERVER_ERROR,
    ParseError,
    error_envelope,
    make_error_response,
    make_success_response,
    parse_request,
    parse_response,
    response_to_dict,
    serialize_request,
)
from streamgate.rpc.types import Request


class TestParseRequest:
    """Tests for parse_request."""

    def test_parses_full_request(self):
        request = parse_request('{"jsonrpc":"2.0","method":"ping","params":{"a":1},"id":3}')

        assert request == Request(jsonrpc="2.0", method="ping", params={"a": 1}, id=3)

    def test_notification_has_no_id(self):
        request = parse_request('{"jsonrpc":"2.0","method":"notify"}')

        assert request.id is None
        assert request.params is None

    @pytest.mark.parametrize(
        "text, fragment",
        [
            ("{", "Invalid JSON"),
            ('"string"', "must be a JSON object"),
            ('{"method":"x"}', "jsonrpc must be '2.0'"),
            ('{"jsonrpc":"2.0","method":5}', "method must be a string"),
            ('{"jsonrpc":"2.0","method":"x","params":3}', "params must be object or array"),
            ('{"jsonrpc":"2.0","method":"x","id":1.5}', "id must be"),
            ('{"jsonrpc":"2.0","method":"x","id":true}', "id must be"),
        ],
    )
    def test_rejects_malformed_requests(self, text, fragment):
        with pytest.raises(ParseError) as exc_info:
            parse_request(text)

        assert fragment in exc_info.value.message


class TestResponses:
    """Tests for response construction and serialization."""

    def test_success_response_carries_result(self):
        data = response_to_dict(make_success_response(1, {"ok": True}))

        assert data == {"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}

    def test_error_response_omits_result(self):
        data = response_to_dict(make_error_response("a", INTERNAL_ERROR, "boom", data={"x": 1}))

        assert data == {
            "jsonrpc": "2.0",
            "id": "a",
            "error": {"code": -32603, "message": "boom", "data": {"x": 1}},
        }

    def test_error_envelope_shape(self):
        body = json.loads(error_envelope(SERVER_ERROR, "Bad Request: Missing sessionId"))

        assert body == {
            "jsonrpc": "2.0",
            "error": {"code": -32000, "message": "Bad Request: Missing sessionId"},
            "id": None,
        }

    def test_parse_response_roundtrips_client_side(self):
        response = parse_response(json.dumps(response_to_dict(make_success_response(9, [1, 2]))))

        assert response.id == 9
        assert response.result == [1, 2]
        assert response.error is None

    def test_parse_response_rejects_result_and_error(self):
        with pytest.raises(ParseError):
            parse_response('{"jsonrpc":"2.0","id":1,"result":1,"error":{"code":1,"message":"x"}}')

    def test_serialize_request_drops_empty_fields(self):
        text = serialize_request(Request(jsonrpc="2.0", method="ping"))

        assert json.loads(text) == {"jsonrpc": "2.0", "method": "ping"}
