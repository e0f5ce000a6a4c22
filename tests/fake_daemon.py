"""
Brief: In-process ResolverDaemon double backed by socket pairs.

Inputs:
  - None

Outputs:
  - FakeDaemon: records every call and lets tests queue replies that become
    readable on the reference's socket, exactly like the real daemon.
"""

import collections
import itertools
import socket
import threading
import time
from typing import Any, Callable, Deque, Dict, List, Optional

from signalbuoy.daemon.base import ResolverDaemon, ServiceRef
from signalbuoy.errors import DaemonError


class FakeOp:
    """Brief: State behind one fake daemon reference."""

    def __init__(self, kind: str, args: Dict[str, Any], callback: Callable[[Any], None]):
        self.kind = kind
        self.args = args
        self.callback = callback
        self.replies: Deque[Any] = collections.deque()
        self.rsock, self.wsock = socket.socketpair()
        self.rsock.setblocking(False)
        self.processed = 0
        self.processing_thread = None


class FakeDaemon(ResolverDaemon):
    """
    Brief: ResolverDaemon double for driving DispatchCore and ServiceSession.

    Inputs:
      - None

    Outputs:
      - FakeDaemon with helpers:
          - fail_next[kind] = code: make the next create of `kind` fail
          - update_error: code returned by update_record()
          - push(ref, reply) / push_latest(kind, reply): queue a reply
          - live(kind): open references of a kind
          - before_callback(ref): runs inside process_pending_result() just
            before the reply callback, e.g. to hold a delivery open
          - freed_while_processing: handles deallocated by another thread
            while a result for them was being processed
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.ops: Dict[int, FakeOp] = {}
        self.refs: Dict[int, ServiceRef] = {}
        self.created: List[tuple] = []
        self.updates: List[Optional[bytes]] = []
        self.deallocated: List[int] = []
        self.fail_next: Dict[str, int] = {}
        self.update_error: Optional[int] = None
        self.version = 1180500
        self.before_callback: Optional[Callable[[ServiceRef], None]] = None
        self.freed_while_processing: List[int] = []

    # ------------------------------------------------------------ contract

    def _create(self, kind: str, operation: str, callback, **args) -> ServiceRef:
        with self._lock:
            if kind in self.fail_next:
                raise DaemonError(operation, self.fail_next.pop(kind))
            handle = next(self._ids)
            self.ops[handle] = FakeOp(kind, args, callback)
            ref = ServiceRef(self, handle, operation)
            self.refs[handle] = ref
            self.created.append((kind, args))
            return ref

    def create_register_reference(self, name, type, domain, port, txt, callback):
        return self._create(
            "register",
            "DNSServiceRegister",
            callback,
            name=name,
            type=type,
            domain=domain,
            port=port,
            txt=txt,
        )

    def create_resolve_reference(self, name, type, domain, callback):
        return self._create(
            "resolve", "DNSServiceResolve", callback, name=name, type=type, domain=domain
        )

    def create_query_reference(self, fqdn, rrtype, flags, callback):
        return self._create(
            "query", "DNSServiceQueryRecord", callback, fqdn=fqdn, rrtype=rrtype, flags=flags
        )

    def update_record(self, ref, data):
        if self.update_error is not None:
            raise DaemonError("DNSServiceUpdateRecord", self.update_error)
        self.updates.append(data)

    def get_socket_descriptor(self, ref):
        with self._lock:
            return self.ops[ref.handle].rsock.fileno()

    def process_pending_result(self, ref):
        with self._lock:
            op = self.ops.get(ref.handle)
            if op is None:
                return
            try:
                op.rsock.recv(1)
            except (BlockingIOError, OSError):
                return
            if not op.replies:
                return
            reply = op.replies.popleft()
            op.processed += 1
            op.processing_thread = threading.current_thread()
            callback = op.callback
        try:
            if self.before_callback is not None:
                self.before_callback(ref)
            callback(reply)
        finally:
            op.processing_thread = None

    def deallocate_reference(self, ref):
        with self._lock:
            op = self.ops.pop(ref.handle, None)
            self.refs.pop(ref.handle, None)
            self.deallocated.append(ref.handle)
            if op is not None and op.processing_thread not in (
                None,
                threading.current_thread(),
            ):
                # The real daemon would free the handle under a running
                # DNSServiceProcessResult here.
                self.freed_while_processing.append(ref.handle)
        if op is not None:
            op.wsock.close()
            op.rsock.close()

    def get_daemon_version(self):
        return self.version

    # ------------------------------------------------------------- helpers

    def live(self, kind: Optional[str] = None) -> List[ServiceRef]:
        with self._lock:
            return [
                self.refs[h]
                for h, op in sorted(self.ops.items())
                if kind is None or op.kind == kind
            ]

    def op(self, ref: ServiceRef) -> FakeOp:
        with self._lock:
            return self.ops[ref.handle]

    def push(self, ref: ServiceRef, reply: Any) -> None:
        with self._lock:
            op = self.ops[ref.handle]
            op.replies.append(reply)
            op.wsock.send(b"r")

    def push_latest(self, kind: str, reply: Any, timeout: float = 2.0) -> ServiceRef:
        ref = self.wait_live(kind, timeout=timeout)
        self.push(ref, reply)
        return ref

    def wait_live(self, kind: str, timeout: float = 2.0, exclude=()) -> ServiceRef:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            refs = [r for r in self.live(kind) if r.handle not in exclude]
            if refs:
                return refs[-1]
            time.sleep(0.005)
        raise AssertionError("no live %s reference" % kind)

    def close_all(self) -> None:
        for ref in self.live():
            ref.close()


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """
    Brief: Poll `predicate` until it returns True or `timeout` elapses.

    Inputs:
      - predicate: zero-argument callable
      - timeout: seconds to wait

    Outputs:
      - bool: final value of predicate()
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return bool(predicate())
