"""End-to-end tests: a real gateway on a loopback socket driven by StreamgateClient.

Covers the full request path (HTTP parsing, allow-list, session registry, SSE
framing, per-session dispatch) and the shutdown drain against live streams.
"""

import asyncio
import socket

import httpx
import pytest

from streamgate.cli.serve import run_serve
from streamgate.client import ClientError, StreamgateClient
from streamgate.config.schema import GatewayConfig
from streamgate.rpc.access import AccessPolicy
from streamgate.rpc.bootstrap import build_server_components
from streamgate.rpc.http import Gateway, start_http_server
from streamgate.rpc.metering import START_EVENT, LoggingMeter
from streamgate.rpc.registry import SessionRegistry
from streamgate.rpc.shutdown import ShutdownCoordinator


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def gateway_server():
    """Yield (gateway, base_url) for a server bound to an ephemeral port."""
    registry = SessionRegistry()
    gateway = Gateway(
        registry,
        AccessPolicy(),
        run_id="e2e",
        base_url="http://localhost",
        heartbeat_interval=0.2,
    )
    server = await start_http_server(gateway, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield gateway, f"http://127.0.0.1:{port}"
    finally:
        await ShutdownCoordinator(registry, grace_period=1.0).drain()
        server.close()


class TestGatewayEndToEnd:
    """Full request flows over a socket."""

    @pytest.mark.asyncio
    async def test_ready_and_info(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            assert await client.ready()
            info = await client.info()

        assert info["data"]["runId"] == "e2e"
        assert "/sse" in info["message"]
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_ping_round_trip(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            session = await client.connect()
            try:
                assert session.session_id in gateway.registry
                response = await session.call("ping")
                assert response.result == {}
                assert response.error is None
            finally:
                await session.close()

    @pytest.mark.asyncio
    async def test_two_sessions_are_isolated(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            first = await client.connect()
            second = await client.connect()
            try:
                assert first.session_id != second.session_id
                info_first = await first.call("session/info")
                info_second = await second.call("session/info")
                assert info_first.result["sessionId"] == first.session_id
                assert info_second.result["sessionId"] == second.session_id
            finally:
                await first.close()
                await second.close()

    @pytest.mark.asyncio
    async def test_closing_one_session_leaves_the_other_working(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            first = await client.connect()
            second = await client.connect()
            first_id = first.session_id

            await first.close()
            await _wait_until(lambda: first_id not in gateway.registry)

            try:
                assert second.session_id in gateway.registry
                assert (await second.call("ping")).result == {}
            finally:
                await second.close()

    @pytest.mark.asyncio
    async def test_post_to_closed_session_is_not_found(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            session = await client.connect()
            endpoint = session.endpoint
            await session.close()
            await _wait_until(lambda: len(gateway.registry) == 0)

        async with httpx.AsyncClient(base_url=url) as http:
            response = await http.post(
                endpoint, content='{"jsonrpc":"2.0","method":"ping","id":1}'
            )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Bad Request: Session not found"

    @pytest.mark.asyncio
    async def test_unknown_method_error_arrives_on_stream(self, gateway_server):
        _, url = gateway_server

        async with StreamgateClient(url) as client:
            session = await client.connect()
            try:
                response = await session.call("no/such/method")
            finally:
                await session.close()

        assert response.error["code"] == -32601

    @pytest.mark.asyncio
    async def test_drain_ends_open_streams(self, gateway_server):
        gateway, url = gateway_server

        async with StreamgateClient(url) as client:
            session = await client.connect()
            try:
                result = await ShutdownCoordinator(gateway.registry, grace_period=1.0).drain()

                assert result.closed == 1
                assert not result.forced
                with pytest.raises(ClientError):
                    await session.receive(timeout=2.0)
            finally:
                await session.close()


class TestLockdown:
    """Allow-list enforcement over a socket."""

    @pytest.mark.asyncio
    async def test_unlisted_owner_cannot_open_stream(self):
        registry = SessionRegistry()
        gateway = Gateway(
            registry,
            AccessPolicy.from_ids(["alice"], owner_id="mallory"),
            run_id="r",
            base_url="http://localhost",
        )
        server = await start_http_server(gateway, "127.0.0.1", 0)
        url = f"http://127.0.0.1:{server.sockets[0].getsockname()[1]}"
        try:
            async with StreamgateClient(url) as client:
                assert not await client.ready()
                with pytest.raises(ClientError) as exc_info:
                    await client.connect()
                assert "403" in exc_info.value.message
        finally:
            server.close()

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_listed_owner_serves_sessions(self):
        registry = SessionRegistry()
        gateway = Gateway(
            registry,
            AccessPolicy.from_ids(["alice"], owner_id="alice"),
            run_id="r",
            base_url="http://localhost",
        )
        server = await start_http_server(gateway, "127.0.0.1", 0)
        url = f"http://127.0.0.1:{server.sockets[0].getsockname()[1]}"
        try:
            async with StreamgateClient(url) as client:
                session = await client.connect()
                assert (await session.call("ping")).result == {}
                await session.close()
        finally:
            await ShutdownCoordinator(registry, grace_period=1.0).drain()
            server.close()


class TestRunServe:
    """The serve loop from startup charge to drain."""

    @pytest.mark.asyncio
    async def test_serve_charges_and_drains(self, tmp_path):
        config = GatewayConfig(
            api_token="t",
            port=_free_port(),
            memory_mbytes=1500,
            audit_path=str(tmp_path / "audit.jsonl"),
            grace_period=2.0,
        )
        meter = LoggingMeter()
        components = build_server_components(config, meter=meter)
        started = asyncio.Event()
        serve_task = asyncio.create_task(run_serve(config, components, started_event=started))
        await asyncio.wait_for(started.wait(), timeout=5.0)

        async with StreamgateClient(f"http://127.0.0.1:{config.port}") as client:
            session = await client.connect()
            assert (await session.call("ping")).result == {}

            components.coordinator.request_stop()
            result = await asyncio.wait_for(serve_task, timeout=5.0)
            await session.close()

        assert not result.forced
        assert result.closed == 1
        assert len(components.registry) == 0
        assert meter.charged[0] == (START_EVENT, 2)
        assert meter.charged[1][0] == "session-minutes"
        assert (tmp_path / "audit.jsonl").read_text().count("\n") == 1
