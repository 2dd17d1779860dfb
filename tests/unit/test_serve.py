"""Unit tests for streamgate.cli.serve."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamgate.cli import serve
from streamgate.config.schema import GatewayConfig
from streamgate.rpc.metering import START_EVENT
from streamgate.rpc.shutdown import ShutdownResult


class TestParseArgs:
    """Tests for parse_args()."""

    def test_defaults(self):
        args = serve.parse_args([])

        assert args.port is None
        assert args.host is None
        assert args.config is None
        assert args.log_dir == Path(".streamgate/logs")
        assert not args.verbose
        assert args.stop_on_stdin_close is None

    def test_all_flags(self):
        args = serve.parse_args(
            [
                "-p", "8080", "--host", "0.0.0.0", "--config", "gw.json",
                "--log-dir", "logs", "--stop-on-stdin-close", "-v",
            ]
        )

        assert args.port == 8080
        assert args.host == "0.0.0.0"
        assert args.config == Path("gw.json")
        assert args.log_dir == Path("logs")
        assert args.stop_on_stdin_close is True
        assert args.verbose


class TestMain:
    """Tests for main() startup failures."""

    def test_missing_token_exits_1_without_serving(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("STREAMGATE_TOKEN", raising=False)
        monkeypatch.setattr(serve, "load_dotenv", lambda: False)
        run = MagicMock()
        monkeypatch.setattr(serve.asyncio, "run", run)

        assert serve.main([]) == 1

        run.assert_not_called()
        assert "STREAMGATE_TOKEN is required" in capsys.readouterr().err


class TestChargeStartup:
    """Tests for charge_startup()."""

    @pytest.mark.asyncio
    async def test_charges_whole_gigabytes(self):
        meter = MagicMock()
        meter.charge = AsyncMock()
        components = MagicMock()
        components.config = GatewayConfig(api_token="t", memory_mbytes=2048)
        components.meter = meter

        await serve.charge_startup(components)

        meter.charge.assert_awaited_once_with(START_EVENT, 2)

    @pytest.mark.asyncio
    async def test_charge_failure_is_not_fatal(self):
        components = MagicMock()
        components.config = GatewayConfig(api_token="t")
        components.meter.charge = AsyncMock(side_effect=RuntimeError("billing down"))

        await serve.charge_startup(components)


class TestProcessExit:
    """Tests for the top-level exit decision."""

    @pytest.mark.asyncio
    async def test_forced_drain_exits_immediately(self, monkeypatch):
        exit_mock = MagicMock()
        monkeypatch.setattr(serve.os, "_exit", exit_mock)
        monkeypatch.setattr(serve.logging, "shutdown", MagicMock())
        monkeypatch.setattr(
            serve, "run_serve", AsyncMock(return_value=ShutdownResult(forced=True, closed=0))
        )

        await serve._serve_then_exit(GatewayConfig(api_token="t"))

        exit_mock.assert_called_once_with(0)

    @pytest.mark.asyncio
    async def test_clean_drain_returns_zero(self, monkeypatch):
        exit_mock = MagicMock()
        monkeypatch.setattr(serve.os, "_exit", exit_mock)
        monkeypatch.setattr(
            serve, "run_serve", AsyncMock(return_value=ShutdownResult(forced=False, closed=2))
        )

        assert await serve._serve_then_exit(GatewayConfig(api_token="t")) == 0
        exit_mock.assert_not_called()


class TestCloseCollaborators:
    """Tests for close_collaborators()."""

    @pytest.mark.asyncio
    async def test_closes_meter_then_audit_log(self):
        components = MagicMock()
        components.meter.aclose = AsyncMock()
        components.audit_log.aclose = AsyncMock()

        assert await serve.close_collaborators(components, timeout=1.0)

        components.meter.aclose.assert_awaited_once()
        components.audit_log.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_meter_still_closes_audit_log(self):
        components = MagicMock()
        components.meter.aclose = AsyncMock(side_effect=RuntimeError("billing down"))
        components.audit_log.aclose = AsyncMock()

        assert await serve.close_collaborators(components, timeout=1.0)

        components.audit_log.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hanging_close_is_bounded(self):
        async def hang():
            await asyncio.sleep(10)

        components = MagicMock()
        components.meter.aclose = AsyncMock(side_effect=hang)
        components.audit_log.aclose = AsyncMock()
        loop = asyncio.get_running_loop()
        started = loop.time()

        assert not await serve.close_collaborators(components, timeout=0.05)

        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_spent_grace_period_does_not_wait(self):
        async def hang():
            await asyncio.sleep(10)

        components = MagicMock()
        components.meter.aclose = AsyncMock(side_effect=hang)

        assert not await serve.close_collaborators(components, timeout=-1.0)
