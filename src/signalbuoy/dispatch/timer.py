"""Deadline timer whose expiry is delivered through an ExecutionContext."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from .context import ExecutionContext

logger = logging.getLogger(__name__)


class DeadlineTimer:
    """Brief: One-shot timer that hands its callback to an ExecutionContext.

    Inputs:
      - seconds: Delay before the deadline fires.
      - callback: Callable run on the context when the deadline fires.
      - context: ExecutionContext used for the delivery.
      - *args: Arguments for callback (typically an operation generation the
        callback validates before acting).

    Outputs:
      - DeadlineTimer; call start() to arm and cancel() to disarm.

    Notes:
      - cancel() cannot recall a delivery that has already been submitted,
        so callbacks must check that the attempt they belong to is still the
        active one.
    """

    def __init__(
        self,
        seconds: float,
        callback: Callable[..., Any],
        context: ExecutionContext,
        *args: Any,
    ) -> None:
        self.seconds = max(float(seconds), 0.0)
        self._callback = callback
        self._context = context
        self._args = args
        self._timer: Optional[threading.Timer] = None
        self._cancelled = False
        self.fired = False

    def start(self) -> "DeadlineTimer":
        timer = threading.Timer(self.seconds, self._fire)
        timer.daemon = True
        self._timer = timer
        timer.start()
        return self

    def cancel(self) -> None:
        self._cancelled = True
        timer = self._timer
        if timer is not None:
            timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _fire(self) -> None:
        if self._cancelled:
            return
        self.fired = True
        logger.debug("Deadline of %.3fs elapsed; delivering expiry", self.seconds)
        fut = self._context.submit(self._run)
        if fut is None:
            logger.warning("Deadline expiry dropped: no execution context available")

    def _run(self) -> None:
        try:
            self._callback(*self._args)
        except Exception:
            logger.exception("Error in deadline callback")
