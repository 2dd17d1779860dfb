"""Unit tests for streamgate.rpc.metering."""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from streamgate.rpc.metering import (
    SESSION_EVENT,
    HttpMeter,
    LoggingMeter,
    MeteringError,
    session_minutes,
    start_charge_count,
)

NOW = datetime(2026, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _session(seconds_ago: float):
    return SimpleNamespace(created_at=NOW - timedelta(seconds=seconds_ago))


class TestChargeCounts:
    """Tests for the charge count helpers."""

    @pytest.mark.parametrize(
        "mbytes, expected", [(0, 1), (1, 1), (1024, 1), (1025, 2), (4096, 4)]
    )
    def test_start_charge_count(self, mbytes, expected):
        assert start_charge_count(mbytes) == expected

    def test_session_minutes_rounds_up_each_session(self):
        sessions = [_session(0), _session(59), _session(61), _session(600)]

        assert session_minutes(sessions, now=NOW) == 1 + 1 + 2 + 10

    def test_session_minutes_empty(self):
        assert session_minutes([], now=NOW) == 0


class TestLoggingMeter:
    """Tests for LoggingMeter."""

    @pytest.mark.asyncio
    async def test_records_charges(self):
        meter = LoggingMeter()

        await meter.charge("gateway-start-gb", 2)
        await meter.charge_for_sessions([_session(30)])

        assert meter.charged[0] == ("gateway-start-gb", 2)
        assert meter.charged[1][0] == SESSION_EVENT

    @pytest.mark.asyncio
    async def test_no_sessions_no_charge(self):
        meter = LoggingMeter()

        await meter.charge_for_sessions([])

        assert meter.charged == []


class TestHttpMeter:
    """Tests for HttpMeter using httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_posts_charge_with_bearer_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            headers={"Authorization": "Bearer tok"},
        )
        async with HttpMeter("https://billing.test/charge", "tok", client=client) as meter:
            await meter.charge("gateway-start-gb", 3)

        assert len(seen) == 1
        assert seen[0].headers["authorization"] == "Bearer tok"
        assert json.loads(seen[0].content) == {"eventName": "gateway-start-gb", "count": 3}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        meter = HttpMeter("https://billing.test/charge", "tok", client=client)

        with pytest.raises(MeteringError) as exc_info:
            await meter.charge("x", 1)

        assert "500" in exc_info.value.message
        await meter.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        meter = HttpMeter("https://billing.test/charge", "tok", client=client)

        with pytest.raises(MeteringError):
            await meter.charge("x", 1)
        await meter.aclose()
