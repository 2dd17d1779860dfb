"""Configuration loading with fail-fast behavior.

Values come from two layers, later layers overriding earlier ones:
1. JSON file (explicit path, or ./.streamgate/config.json if present)
2. STREAMGATE_* environment variables
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from streamgate.config.load_utils import load_json_file, load_json_file_optional
from streamgate.config.schema import GatewayConfig
from streamgate.core.errors import ConfigError, LoadError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".streamgate") / "config.json"

# Environment variable -> config field
ENV_FIELDS: dict[str, str] = {
    "STREAMGATE_HOST": "host",
    "STREAMGATE_PORT": "port",
    "STREAMGATE_TOKEN": "api_token",
    "STREAMGATE_ALLOWED_USER_IDS": "allowed_user_ids",
    "STREAMGATE_USER_ID": "user_id",
    "STREAMGATE_PUBLIC_URL": "public_url",
    "STREAMGATE_RUN_ID": "run_id",
    "STREAMGATE_MEMORY_MBYTES": "memory_mbytes",
    "STREAMGATE_METERING_URL": "metering_url",
    "STREAMGATE_AUDIT_PATH": "audit_path",
    "STREAMGATE_GRACE_PERIOD": "grace_period",
    "STREAMGATE_HEARTBEAT_INTERVAL": "heartbeat_interval",
    "STREAMGATE_STOP_ON_STDIN_CLOSE": "stop_on_stdin_close",
    "STREAMGATE_LOG_LEVEL": "log_level",
}


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect non-empty STREAMGATE_* variables as config fields."""
    overrides: dict[str, Any] = {}
    for var, field in ENV_FIELDS.items():
        value = env.get(var)
        if value is not None and value.strip() != "":
            overrides[field] = value.strip()
    return overrides


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> GatewayConfig:
    """Load and validate gateway configuration.

    Args:
        path: Explicit config file path. Must exist if given.
        env: Environment mapping. Defaults to os.environ.
        **overrides: Final overrides (e.g. from CLI flags). None values are ignored.

    Returns:
        Validated GatewayConfig.

    Raises:
        ConfigError: If the file is unreadable, the token is missing, or
            validation fails.
    """
    environ = os.environ if env is None else env
    merged: dict[str, Any] = {}

    try:
        if path is not None:
            merged.update(load_json_file(path, error_context="config"))
        else:
            file_data = load_json_file_optional(DEFAULT_CONFIG_PATH, error_context="config")
            if file_data:
                merged.update(file_data)
    except LoadError as e:
        raise ConfigError(e.message) from e

    merged.update(_env_overrides(environ))
    merged.update({k: v for k, v in overrides.items() if v is not None})

    if not merged.get("api_token"):
        raise ConfigError("STREAMGATE_TOKEN is required but not set in the environment variables.")

    try:
        config = GatewayConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed: {e}") from e

    logger.debug("Config loaded: port=%s, allow-list size=%d", config.port, len(config.allowed_user_ids))
    return config
