"""Execution context selection for delivered daemon results.

Brief:
  Results read from daemon sockets are handed to the application on one of
  three execution contexts, first available wins:

    1. an explicit synchronization target: any concurrent.futures.Executor
       (for example a single-worker ThreadPoolExecutor acting as the
       application's event thread);
    2. a host ResultChannel the application drains on its own schedule
       (for example from a GUI idle hook or its main loop);
    3. direct invocation on the dispatching thread, only when explicitly
       allowed.

  Allowing direct invocation clears the target and the channel; installing a
  target or a channel turns direct invocation off again, so exactly one
  context is ever in effect.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ResultChannel:
    """Brief: Queue of pending deliveries drained by the host application.

    Inputs:
      - None.

    Outputs:
      - ResultChannel with an Executor-style submit() and run_pending().

    Example:
      >>> channel = ResultChannel()
      >>> fut = channel.submit(lambda: 42)
      >>> channel.run_pending()
      1
      >>> fut.result()
      42
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[tuple]" = queue.Queue()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        fut: Future = Future()
        self._queue.put((fut, fn, args))
        return fut

    def pending(self) -> int:
        return self._queue.qsize()

    def run_pending(self, timeout: Optional[float] = None, limit: Optional[int] = None) -> int:
        """Brief: Run queued deliveries on the calling thread.

        Inputs:
          - timeout: When given, wait up to this many seconds for the first
            delivery; otherwise only already-queued work is run.
          - limit: Optional maximum number of deliveries to run.

        Outputs:
          - int: Number of deliveries run.
        """

        ran = 0
        block = timeout is not None
        while limit is None or ran < limit:
            try:
                if block:
                    item = self._queue.get(timeout=timeout)
                    block = False
                else:
                    item = self._queue.get_nowait()
            except queue.Empty:
                break

            fut, fn, args = item
            if not fut.set_running_or_notify_cancel():
                continue
            try:
                fut.set_result(fn(*args))
            except Exception as exc:
                fut.set_exception(exc)
            ran += 1
        return ran


class ExecutionContext:
    """Brief: Select where delivered results run.

    Inputs:
      - target: Optional Executor used as the synchronization target.
      - channel: Optional ResultChannel drained by the host.
      - allow_direct: When True, results run on the dispatching thread and
        target/channel are cleared.

    Outputs:
      - ExecutionContext instance.
    """

    def __init__(
        self,
        target: Optional[Executor] = None,
        channel: Optional[ResultChannel] = None,
        allow_direct: bool = False,
    ) -> None:
        self._lock = threading.Lock()
        self._target = target
        self._channel = channel
        self._allow_direct = False
        if allow_direct:
            self.allow_direct = True

    @property
    def target(self) -> Optional[Executor]:
        return self._target

    @target.setter
    def target(self, value: Optional[Executor]) -> None:
        with self._lock:
            self._target = value
            if value is not None:
                self._allow_direct = False

    @property
    def channel(self) -> Optional[ResultChannel]:
        return self._channel

    @channel.setter
    def channel(self, value: Optional[ResultChannel]) -> None:
        with self._lock:
            self._channel = value
            if value is not None:
                self._allow_direct = False

    @property
    def allow_direct(self) -> bool:
        return self._allow_direct

    @allow_direct.setter
    def allow_direct(self, value: bool) -> None:
        with self._lock:
            self._allow_direct = bool(value)
            if self._allow_direct:
                self._target = None
                self._channel = None

    def inherit(self, other: "ExecutionContext") -> None:
        """Brief: Copy another context's selection onto this one."""

        self.allow_direct = other.allow_direct
        self.target = other.target
        self.channel = other.channel

    @property
    def mode(self) -> Optional[str]:
        """Brief: Name of the context currently in effect, or None."""

        with self._lock:
            if self._target is not None:
                return "executor"
            if self._channel is not None:
                return "channel"
            if self._allow_direct:
                return "direct"
            return None

    def submit(self, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        """Brief: Run `fn(*args)` on the selected context.

        Inputs:
          - fn: Callable to deliver.
          - *args: Positional arguments for fn.

        Outputs:
          - Future completing when fn has run, or None when no context is
            available and the delivery was dropped.
        """

        with self._lock:
            target = self._target
            channel = self._channel
            direct = self._allow_direct

        if target is not None:
            return target.submit(fn, *args)
        if channel is not None:
            return channel.submit(fn, *args)
        if direct:
            fut: Future = Future()
            fut.set_running_or_notify_cancel()
            try:
                fut.set_result(fn(*args))
            except Exception as exc:
                fut.set_exception(exc)
            return fut

        logger.warning(
            "No execution context available (no target, no channel, direct "
            "invocation disabled); dropping delivery of %r",
            getattr(fn, "__qualname__", fn),
        )
        return None


_DEFAULT_CONTEXT = ExecutionContext()


def default_context() -> ExecutionContext:
    """Brief: Process-wide ExecutionContext shared by dispatchers by default."""

    return _DEFAULT_CONTEXT
