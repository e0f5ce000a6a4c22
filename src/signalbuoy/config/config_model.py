"""Typed configuration models for signalbuoy."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class LoggingConfig(BaseModel):
    """Brief: Logging settings consumed by init_logging().

    Inputs:
      - level: debug | info | warn | error | crit.
      - stderr: bool, log to stderr.
      - file: Optional path of a log file.
    """

    level: str = Field(default="info")
    stderr: bool = True
    file: Optional[str] = None


class DaemonConfig(BaseModel):
    """Brief: How to reach the resolver daemon.

    Inputs:
      - library: Optional explicit dns_sd library name or path. When omitted
        the platform default (libdns_sd / libSystem / dnssd.dll) is used.
      - interface_index: Interface to operate on; 0 means all interfaces.
    """

    library: Optional[str] = None
    interface_index: int = Field(default=0, ge=0)


class DispatchConfig(BaseModel):
    """Brief: Where daemon results are delivered.

    Inputs:
      - mode: "direct" runs handlers on the dispatcher thread, "channel"
        queues them for the host to drain with ResultChannel.run_pending(),
        "executor" hands them to a ThreadPoolExecutor.
      - workers: Worker threads for the executor mode. Keep at 1 to preserve
        ordering across sessions.
    """

    mode: Literal["direct", "channel", "executor"] = "direct"
    workers: int = Field(default=1, ge=1)


class ResolveConfig(BaseModel):
    """Brief: Defaults for resolve operations."""

    timeout_seconds: float = Field(default=5.0, gt=0)


class SignalbuoyConfig(BaseModel):
    """Brief: Root configuration model.

    Example:
      >>> SignalbuoyConfig().dispatch.mode
      'direct'
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    resolve: ResolveConfig = Field(default_factory=ResolveConfig)
