"""Application wiring: config -> daemon, execution context and dispatcher."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Union

from .config.config_model import SignalbuoyConfig
from .config.config_parser import parse_config
from .config.logging_config import init_logging
from .daemon.base import ResolverDaemon, format_daemon_version
from .dispatch.context import ExecutionContext, ResultChannel
from .dispatch.core import DispatchCore
from .errors import DaemonError
from .session import ServiceSession

logger = logging.getLogger(__name__)


def build_context(cfg: SignalbuoyConfig) -> ExecutionContext:
    """Brief: Build the ExecutionContext selected by `dispatch.mode`.

    Inputs:
      - cfg: SignalbuoyConfig.

    Outputs:
      - ExecutionContext with exactly one delivery option in effect.
    """

    mode = cfg.dispatch.mode
    if mode == "executor":
        executor = ThreadPoolExecutor(
            max_workers=cfg.dispatch.workers, thread_name_prefix="signalbuoy-deliver"
        )
        return ExecutionContext(target=executor)
    if mode == "channel":
        return ExecutionContext(channel=ResultChannel())
    return ExecutionContext(allow_direct=True)


class Environment:
    """Brief: A configured daemon + dispatcher pair that creates sessions.

    Inputs:
      - config: SignalbuoyConfig.
      - daemon: Optional ResolverDaemon; built from `config.daemon` when
        omitted.
      - setup_logging: When True, init_logging(config.logging) is called.

    Outputs:
      - Environment; close() stops the dispatcher and any executor it owns.

    Example:
      >>> env = Environment.from_config({"dispatch": {"mode": "channel"}})  # doctest: +SKIP
      >>> session = env.session("local.", "_http._tcp.", "web", 8080)  # doctest: +SKIP
      >>> session.publish(); env.channel.run_pending(timeout=1.0)  # doctest: +SKIP
    """

    def __init__(
        self,
        config: SignalbuoyConfig,
        daemon: Optional[ResolverDaemon] = None,
        setup_logging: bool = True,
    ) -> None:
        self.config = config
        if setup_logging:
            init_logging(config.logging)

        if daemon is None:
            from .daemon.dnssd import DnsSdDaemon

            daemon = DnsSdDaemon(
                library=config.daemon.library,
                interface_index=config.daemon.interface_index,
            )
        self.daemon = daemon
        self.context = build_context(config)
        self.dispatcher = DispatchCore(daemon, self.context)
        self._sessions: list = []
        logger.info("signalbuoy environment ready (dispatch mode=%s)", config.dispatch.mode)

    @classmethod
    def from_config(
        cls,
        cfg: Union[SignalbuoyConfig, Dict[str, Any], None] = None,
        daemon: Optional[ResolverDaemon] = None,
        setup_logging: bool = True,
    ) -> "Environment":
        if not isinstance(cfg, SignalbuoyConfig):
            cfg = parse_config(cfg)
        return cls(cfg, daemon=daemon, setup_logging=setup_logging)

    @property
    def channel(self) -> Optional[ResultChannel]:
        return self.context.channel

    @property
    def resolve_timeout(self) -> float:
        return float(self.config.resolve.timeout_seconds)

    def daemon_version(self) -> Optional[float]:
        """Brief: Daemon version as major.minor, or None when unavailable."""

        try:
            return format_daemon_version(self.daemon.get_daemon_version())
        except DaemonError as exc:
            logger.debug("Daemon version unavailable: %s", exc)
            return None

    def session(self, domain: str, type: str, name: str, port: int = 0) -> ServiceSession:
        s = ServiceSession(domain, type, name, port, dispatcher=self.dispatcher)
        self._sessions.append(s)
        return s

    def resolve(self, session: ServiceSession, seconds: Optional[float] = None) -> None:
        """Brief: resolve_with_timeout() using the configured default timeout."""

        session.resolve_with_timeout(self.resolve_timeout if seconds is None else seconds)

    def close(self) -> None:
        sessions, self._sessions = self._sessions, []
        for s in sessions:
            s.close()
        self.dispatcher.shutdown()
        target = self.context.target
        if isinstance(target, ThreadPoolExecutor):
            target.shutdown(wait=False)

    def __enter__(self) -> "Environment":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
