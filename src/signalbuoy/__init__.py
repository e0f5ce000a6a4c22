"""signalbuoy: publish, resolve and monitor DNS-SD services via a local daemon."""

from .dispatch import DispatchCore, ExecutionContext, ResultChannel, default_context
from .errors import (
    CodecError,
    DaemonError,
    DaemonUnavailableError,
    DNSServiceErrorType,
    ResolveTimeoutError,
    SessionClosedError,
    SignalbuoyError,
)
from .events import SessionEvent
from .session import ServiceSession, SessionState
from .txt import decode_txt, encode_txt

__version__ = "0.6.0"

__all__ = [
    "CodecError",
    "DNSServiceErrorType",
    "DaemonError",
    "DaemonUnavailableError",
    "DispatchCore",
    "ExecutionContext",
    "ResolveTimeoutError",
    "ResultChannel",
    "ServiceSession",
    "SessionClosedError",
    "SessionEvent",
    "SessionState",
    "SignalbuoyError",
    "decode_txt",
    "default_context",
    "encode_txt",
]
