from .config_model import (
    DaemonConfig,
    DispatchConfig,
    LoggingConfig,
    ResolveConfig,
    SignalbuoyConfig,
)
from .config_parser import parse_config, parse_config_file
from .logging_config import init_logging

__all__ = [
    "DaemonConfig",
    "DispatchConfig",
    "LoggingConfig",
    "ResolveConfig",
    "SignalbuoyConfig",
    "init_logging",
    "parse_config",
    "parse_config_file",
]
