"""Readiness multiplexing for daemon sockets.

Brief:
  Every active daemon reference owns a socket that becomes readable when the
  daemon has a reply queued. DispatchCore watches all of those sockets from a
  single selector thread. When one becomes readable the watch is disarmed,
  the daemon's "process pending result" call is submitted through the
  ExecutionContext, and the watch is re-armed only after that delivery has
  completed. Deliveries for a single reference are therefore strictly
  sequential.

  There is no way to interrupt a delivery that is already running. Teardown
  is cooperative: unregister_watch() marks the entry stopping, and every
  delivery and re-arm checks that flag first.
"""

from __future__ import annotations

import collections
import logging
import selectors
import socket
import threading
import weakref
from typing import Deque, Optional, Tuple

from ..daemon.base import ResolverDaemon, ServiceRef
from .context import ExecutionContext, default_context
from .registry import WatchEntry, WatchRegistry

logger = logging.getLogger(__name__)

_ARM = "arm"
_DROP = "drop"


class DispatchCore:
    """Brief: Deliver daemon results for all watched references.

    Inputs:
      - daemon: ResolverDaemon whose references are watched.
      - context: ExecutionContext used for deliveries (defaults to the
        process-wide context).
      - name: Thread name for the selector thread.

    Outputs:
      - DispatchCore instance; the selector thread starts on first use.

    Example:
      >>> core = DispatchCore.shared(daemon)  # doctest: +SKIP
      >>> watch_id = core.register_watch(ref)  # doctest: +SKIP
      >>> core.unregister_watch(watch_id)  # doctest: +SKIP
    """

    _shared: "weakref.WeakKeyDictionary[ResolverDaemon, DispatchCore]" = (
        weakref.WeakKeyDictionary()
    )
    _shared_lock = threading.Lock()

    @classmethod
    def shared(cls, daemon: ResolverDaemon) -> "DispatchCore":
        """Brief: Return the process-wide dispatcher for `daemon`."""

        with cls._shared_lock:
            core = cls._shared.get(daemon)
            if core is None:
                core = cls(daemon)
                cls._shared[daemon] = core
            return core

    def __init__(
        self,
        daemon: ResolverDaemon,
        context: Optional[ExecutionContext] = None,
        name: str = "signalbuoy-dispatch",
    ) -> None:
        self.daemon = daemon
        self.context = context if context is not None else default_context()
        self.registry = WatchRegistry()
        self._name = name

        self._lock = threading.Lock()
        self._commands: Deque[Tuple[str, WatchEntry]] = collections.deque()
        self._selector: Optional[selectors.BaseSelector] = None
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

    # ------------------------------------------------------------------ api

    def register_watch(self, reference: ServiceRef) -> int:
        """Brief: Start watching the socket of `reference`.

        Inputs:
          - reference: Open daemon reference.

        Outputs:
          - int: Watch id to pass to unregister_watch().
        """

        fd = self.daemon.get_socket_descriptor(reference)
        entry = self.registry.add(reference, fd)
        logger.debug(
            "Watching fd=%d for %s (watch_id=%d)", fd, reference.operation, entry.watch_id
        )
        self._ensure_started()
        self._command(_ARM, entry)
        return entry.watch_id

    def unregister_watch(self, watch_id: Optional[int]) -> None:
        """Brief: Stop watching; safe to call for unknown or removed ids.

        Inputs:
          - watch_id: Id returned by register_watch(), or None.

        Outputs:
          - None. The entry is marked stopping and removed from the registry
            before this returns; the selector registration is dropped by the
            selector thread.
        """

        if watch_id is None:
            return
        entry = self.registry.remove(watch_id)
        if entry is None:
            return
        logger.debug("Unwatching fd=%d (watch_id=%d)", entry.fd, entry.watch_id)
        self._command(_DROP, entry)

    @property
    def running(self) -> bool:
        thread = self._thread
        return bool(thread is not None and thread.is_alive())

    def shutdown(self, timeout: Optional[float] = 2.0) -> None:
        """Brief: Stop the selector thread and release its sockets."""

        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
            wake = self._wake_w
        self._wake(wake)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    # ------------------------------------------------------------- internals

    def _ensure_started(self) -> None:
        with self._lock:
            if self._running:
                return
            selector = selectors.DefaultSelector()
            wake_r, wake_w = socket.socketpair()
            wake_r.setblocking(False)
            wake_w.setblocking(False)
            selector.register(wake_r, selectors.EVENT_READ, None)
            # A previous thread may still be exiting; it closes its own pair.
            self._selector = selector
            self._wake_r, self._wake_w = wake_r, wake_w
            self._running = True
            self._thread = threading.Thread(
                target=self._run, args=(selector, wake_r, wake_w), name=self._name, daemon=True
            )
            self._thread.start()

    def _command(self, op: str, entry: WatchEntry) -> None:
        with self._lock:
            self._commands.append((op, entry))
        self._wake()

    def _wake(self, wake: Optional[socket.socket] = None) -> None:
        if wake is None:
            wake = self._wake_w
        if wake is None:
            return
        try:
            wake.send(b"\x00")
        except (BlockingIOError, InterruptedError):
            # Buffer full: a wake-up is already pending.
            pass
        except OSError:
            logger.debug("Dispatcher wake-up socket unavailable", exc_info=True)

    def _drain_wake(self, wake_r: socket.socket) -> None:
        try:
            while wake_r.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass
        except OSError:
            logger.debug("Dispatcher wake-up drain failed", exc_info=True)

    def _run(
        self,
        selector: selectors.BaseSelector,
        wake_r: socket.socket,
        wake_w: socket.socket,
    ) -> None:
        logger.debug("Dispatcher thread %s started", self._name)
        try:
            while self._running and self._selector is selector:
                self._process_commands(selector)
                try:
                    events = selector.select()
                except OSError:
                    logger.exception("Dispatcher select() failed")
                    continue
                for key, _mask in events:
                    if key.data is None:
                        self._drain_wake(wake_r)
                        continue
                    self._on_readable(selector, key.data)
        finally:
            self._close(selector, wake_r, wake_w)
            logger.debug("Dispatcher thread %s stopped", self._name)

    def _close(
        self,
        selector: selectors.BaseSelector,
        wake_r: socket.socket,
        wake_w: socket.socket,
    ) -> None:
        with self._lock:
            if self._selector is selector:
                self._selector = None
                self._wake_r = None
                self._wake_w = None
                self._commands.clear()
            # Otherwise restarted after shutdown(); the new thread owns the
            # shared state and only this thread's resources are released.
        selector.close()
        wake_r.close()
        wake_w.close()

    def _process_commands(self, selector: selectors.BaseSelector) -> None:
        while True:
            with self._lock:
                if not self._commands or self._selector is not selector:
                    return
                op, entry = self._commands.popleft()
            if op == _ARM:
                self._arm(selector, entry)
            else:
                self._disarm(selector, entry)

    def _arm(self, selector: selectors.BaseSelector, entry: WatchEntry) -> None:
        if entry.stopping:
            return
        try:
            selector.register(entry.fd, selectors.EVENT_READ, entry)
        except KeyError:
            # The descriptor number is still registered to a stale entry.
            existing = selector.get_key(entry.fd)
            if existing.data is entry:
                return
            if existing.data is not None and existing.data.stopping:
                selector.unregister(entry.fd)
                self._arm(selector, entry)
                return
            logger.error(
                "fd=%d already watched by watch_id=%s; not arming watch_id=%d",
                entry.fd,
                getattr(existing.data, "watch_id", None),
                entry.watch_id,
            )
        except (OSError, ValueError):
            logger.warning(
                "Unable to watch fd=%d (watch_id=%d)", entry.fd, entry.watch_id, exc_info=True
            )

    def _disarm(self, selector: selectors.BaseSelector, entry: WatchEntry) -> None:
        try:
            key = selector.get_key(entry.fd)
        except (KeyError, ValueError):
            return
        if key.data is entry:
            selector.unregister(entry.fd)

    def _on_readable(self, selector: selectors.BaseSelector, entry: WatchEntry) -> None:
        # Watches are one-shot; the delivery's completion re-arms.
        self._disarm(selector, entry)
        if entry.stopping:
            return
        fut = self.context.submit(self._deliver, entry)
        if fut is None:
            logger.warning(
                "Parking watch_id=%d (%s) until it is torn down",
                entry.watch_id,
                entry.reference.operation,
            )
            return
        fut.add_done_callback(lambda _fut, e=entry: self._delivered(e))

    def _deliver(self, entry: WatchEntry) -> None:
        if entry.stopping:
            return
        reference = entry.reference
        try:
            with reference.lock:
                if reference.closed:
                    return
                self.daemon.process_pending_result(reference)
        except Exception:
            logger.exception(
                "Error while processing result for %s (watch_id=%d)",
                entry.reference.operation,
                entry.watch_id,
            )

    def _delivered(self, entry: WatchEntry) -> None:
        if entry.stopping:
            return
        self._command(_ARM, entry)
