"""Configuration loading and validation."""

from streamgate.config.loader import DEFAULT_CONFIG_PATH, load_config
from streamgate.config.schema import GatewayConfig

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "GatewayConfig",
    "load_config",
]
