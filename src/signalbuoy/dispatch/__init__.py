"""Socket readiness dispatch, execution contexts and deadline timers."""

from .context import ExecutionContext, ResultChannel, default_context
from .core import DispatchCore
from .registry import WatchEntry, WatchRegistry
from .timer import DeadlineTimer

__all__ = [
    "DeadlineTimer",
    "DispatchCore",
    "ExecutionContext",
    "ResultChannel",
    "WatchEntry",
    "WatchRegistry",
    "default_context",
]
