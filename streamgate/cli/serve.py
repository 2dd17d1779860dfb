"""HTTP server entry point for streamgate.

Startup:
    1. Load .env and configuration (a missing STREAMGATE_TOKEN is fatal)
    2. Configure logging
    3. Charge the startup event
    4. Bind the gateway and wait for SIGINT/SIGTERM (or stdin closing, if enabled)

Shutdown:
    The ShutdownCoordinator drains every session, then the meter and audit
    log are closed, all within one grace period.
    A clean drain returns exit code 0. A forced drain exits the process
    immediately with code 0, without waiting on tasks that overran.

Example:
    STREAMGATE_TOKEN=... python -m streamgate --port 3001
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from streamgate.config.loader import load_config
from streamgate.config.schema import GatewayConfig
from streamgate.core.errors import ConfigError
from streamgate.rpc.bootstrap import (
    ServerComponents,
    build_server_components,
    configure_server_logging,
)
from streamgate.rpc.http import SSE_PATH, start_http_server
from streamgate.rpc.metering import START_EVENT, start_charge_count
from streamgate.rpc.shutdown import ShutdownResult

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="streamgate",
        description="Session-multiplexed JSON-RPC gateway over HTTP + SSE",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Server port (default: STREAMGATE_PORT or 3001)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address (default: STREAMGATE_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON config file (default: ./.streamgate/config.json if present)",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=Path(".streamgate/logs"),
        help="Directory for server.log (default: .streamgate/logs)",
    )
    parser.add_argument(
        "--stop-on-stdin-close",
        action="store_true",
        default=None,
        help="Shut down when standard input is closed by the host",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable DEBUG output",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


async def charge_startup(components: ServerComponents) -> None:
    """Charge the startup event. Failures are logged, never fatal."""
    count = start_charge_count(components.config.memory_mbytes)
    try:
        await components.meter.charge(START_EVENT, count)
    except Exception:
        logger.error("Failed to charge %s", START_EVENT, exc_info=True)


async def watch_stdin(components: ServerComponents) -> None:
    """Request a stop when the host closes standard input."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
    except (ValueError, OSError, NotImplementedError) as e:
        logger.warning("Cannot watch standard input: %s", e)
        return
    try:
        await components.coordinator.watch_stream(reader)
    finally:
        transport.close()


async def close_collaborators(components: ServerComponents, timeout: float) -> bool:
    """Close the meter and flush the audit log within timeout seconds.

    Returns:
        False if the timeout elapsed first.
    """

    async def _close_all() -> None:
        for name, closer in (
            ("meter", components.meter.aclose),
            ("audit log", components.audit_log.aclose),
        ):
            try:
                await closer()
            except Exception:
                logger.error("Failed to close %s", name, exc_info=True)

    try:
        await asyncio.wait_for(_close_all(), timeout=max(timeout, 0.0))
    except TimeoutError:
        logger.warning("Meter and audit log did not close within the grace period")
        return False
    return True


async def run_serve(
    config: GatewayConfig,
    components: ServerComponents | None = None,
    started_event: asyncio.Event | None = None,
) -> ShutdownResult:
    """Serve until a stop is requested, then drain.

    Draining and closing the collaborators share one grace period. If either
    overruns it, the returned result is marked forced.

    Args:
        config: Validated gateway configuration.
        components: Pre-built components (tests); built from config if None.
        started_event: Set once the server is listening.

    Returns:
        The coordinator's ShutdownResult. Process exit is left to the caller.
    """
    parts = components or build_server_components(config)
    await charge_startup(parts)

    server = await start_http_server(parts.gateway, config.host, config.port)
    parts.coordinator.install_signal_handlers()
    stdin_watch = asyncio.create_task(watch_stdin(parts)) if config.stop_on_stdin_close else None
    if started_event is not None:
        started_event.set()

    logger.info("Connect to %s%s to establish a connection", config.base_url, SSE_PATH)
    logger.info(
        "Put this in your client config:\n%s",
        json.dumps({"mcpServers": {"streamgate": {"url": f"{config.base_url}{SSE_PATH}"}}}, indent=2),
    )

    loop = asyncio.get_running_loop()
    try:
        await parts.coordinator.wait_for_stop()
    finally:
        deadline = loop.time() + parts.coordinator.grace_period
        if stdin_watch is not None:
            stdin_watch.cancel()
        result = await parts.coordinator.drain()
        server.close()
        if not await close_collaborators(parts, deadline - loop.time()):
            result = replace(result, forced=True)
    return result


async def _serve_then_exit(config: GatewayConfig) -> int:
    """Top-level process decision: forced drains terminate immediately."""
    result = await run_serve(config)
    if result.forced:
        logger.warning("Forcing process exit after grace period")
        logging.shutdown()
        os._exit(0)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point. Returns the process exit code."""
    load_dotenv()
    args = parse_args(argv)

    try:
        config = load_config(
            args.config,
            port=args.port,
            host=args.host,
            stop_on_stdin_close=args.stop_on_stdin_close,
        )
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    console_level = logging.DEBUG if args.verbose else getattr(logging, config.log_level)
    configure_server_logging(args.log_dir, level=logging.INFO, console_level=console_level)

    return asyncio.run(_serve_then_exit(config))
