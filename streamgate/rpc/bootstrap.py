"""Object graph bootstrap for streamgate server components.

Usage:
    components = build_server_components(config)
    server = await start_http_server(components.gateway, config.host, config.port)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

from streamgate.config.schema import GatewayConfig
from streamgate.rpc.access import AccessPolicy
from streamgate.rpc.dispatcher import DispatcherFactory, default_dispatcher_factory
from streamgate.rpc.http import Gateway
from streamgate.rpc.metering import HttpMeter, LoggingMeter, Meter
from streamgate.rpc.registry import SessionRegistry
from streamgate.rpc.shutdown import ShutdownCoordinator
from streamgate.session.audit import JsonlAuditLog

logger = logging.getLogger(__name__)

LOGGER_NAME = "streamgate"


def configure_server_logging(
    log_dir: Path,
    level: int = logging.INFO,
    console_level: int = logging.INFO,
) -> Path:
    """Configure logging for the streamgate namespace.

    Logs are written to `{log_dir}/server.log` with automatic rotation
    (max 5MB per file, 3 backup files) and mirrored to stderr.

    Args:
        log_dir: Directory for server.log file. Created if doesn't exist.
        level: Logging level for file output (default INFO).
        console_level: Logging level for console output (default INFO).

    Returns:
        Path to the server.log file.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "server.log"

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))

    gateway_logger = logging.getLogger(LOGGER_NAME)
    gateway_logger.setLevel(min(level, console_level))

    # Remove any existing handlers to avoid duplicates on reconfigure
    for handler in list(gateway_logger.handlers):
        gateway_logger.removeHandler(handler)
        handler.close()

    gateway_logger.addHandler(file_handler)
    gateway_logger.addHandler(console_handler)
    gateway_logger.propagate = False

    logger.info("Server logging configured: %s", log_file)
    return log_file


@dataclass(frozen=True)
class ServerComponents:
    """Everything one server process needs, wired together."""

    config: GatewayConfig
    registry: SessionRegistry
    gateway: Gateway
    meter: Meter
    audit_log: JsonlAuditLog
    coordinator: ShutdownCoordinator


def build_meter(config: GatewayConfig) -> Meter:
    if config.metering_url:
        return HttpMeter(config.metering_url, config.api_token)
    return LoggingMeter()


def build_server_components(
    config: GatewayConfig,
    dispatcher_factory: DispatcherFactory = default_dispatcher_factory,
    meter: Meter | None = None,
) -> ServerComponents:
    """Create the registry, gateway, meter and shutdown coordinator for one process."""
    registry = SessionRegistry()
    effective_meter = meter if meter is not None else build_meter(config)
    audit_log = JsonlAuditLog(Path(config.audit_path))
    policy = AccessPolicy(allowed=config.allowed_user_ids, owner_id=config.user_id)
    gateway = Gateway(
        registry,
        policy,
        run_id=config.run_id,
        base_url=config.base_url,
        dispatcher_factory=dispatcher_factory,
        audit_log=audit_log,
        heartbeat_interval=config.heartbeat_interval,
    )
    coordinator = ShutdownCoordinator(registry, effective_meter, grace_period=config.grace_period)
    return ServerComponents(
        config=config,
        registry=registry,
        gateway=gateway,
        meter=effective_meter,
        audit_log=audit_log,
        coordinator=coordinator,
    )
