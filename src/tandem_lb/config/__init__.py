"""Tandem configuration system."""

from tandem_lb.config.loader import find_config_file, load_config
from tandem_lb.config.models import (
    DispatcherConfig,
    EngineConfig,
    InstancesConfig,
    PathsConfig,
    TandemConfig,
    WebhookConfig,
)

__all__ = [
    "DispatcherConfig",
    "EngineConfig",
    "InstancesConfig",
    "PathsConfig",
    "TandemConfig",
    "WebhookConfig",
    "load_config",
    "find_config_file",
]
