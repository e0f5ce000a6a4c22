"""Per-service lifecycle: publish, resolve, address lookup and TXT monitoring.

Brief:
  A ServiceSession describes one DNS-SD service instance (name, type,
  domain) and drives the daemon operations for it:

    Idle --publish()--------------> Publishing   (until stop())
    Idle --resolve_with_timeout()-> Resolving --> AddressLookup --> Idle
    any  --stop()-----------------> Idle
    start_monitoring()/stop_monitoring() toggle an independent TXT monitor.

  Each start call tears down the previous operation of the same kind first.
  Reply handlers run on the dispatcher's execution context; every handler is
  bound to the generation of the attempt that created it and ignores replies
  once that attempt has been stopped or superseded.
"""

from __future__ import annotations

import enum
import functools
import ipaddress
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from dnslib import QTYPE

from .daemon.base import (
    FLAG_LONG_LIVED_QUERY,
    QueryReply,
    RegisterReply,
    ResolveReply,
    ResolverDaemon,
    ServiceRef,
    construct_full_name,
)
from .dispatch.core import DispatchCore
from .dispatch.timer import DeadlineTimer
from .errors import CodecError, DaemonError, ResolveTimeoutError, SessionClosedError
from .events import Observers, SessionEvent
from .txt import EMPTY_TXT_RECORD, decode_txt, encode_txt

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

_default_daemon: Optional[ResolverDaemon] = None
_default_daemon_lock = threading.Lock()


def default_daemon() -> ResolverDaemon:
    """Brief: Lazily create the process-wide system dns_sd daemon binding."""

    global _default_daemon
    with _default_daemon_lock:
        if _default_daemon is None:
            from .daemon.dnssd import DnsSdDaemon

            _default_daemon = DnsSdDaemon()
        return _default_daemon


class SessionState(enum.Enum):
    IDLE = "idle"
    PUBLISHING = "publishing"
    RESOLVING = "resolving"
    ADDRESS_LOOKUP = "address_lookup"


class _Operation:
    """A daemon reference together with its watch registration."""

    __slots__ = ("ref", "watch_id")

    def __init__(self, ref: ServiceRef, watch_id: int) -> None:
        self.ref = ref
        self.watch_id = watch_id


def _address_from_rdata(rdata: bytes) -> Optional[str]:
    if len(rdata) not in (4, 16):
        return None
    return str(ipaddress.ip_address(bytes(rdata)))


class ServiceSession:
    """Brief: Publish, resolve and monitor one DNS-SD service instance.

    Inputs:
      - domain: Domain such as `local.` (may be empty to use the default).
      - type: Service type such as `_http._tcp.`.
      - name: Instance name.
      - port: Port to publish (ignored for resolve; replaced by the result).
      - daemon: Optional ResolverDaemon; defaults to the system dns_sd binding.
      - dispatcher: Optional DispatchCore; defaults to the shared dispatcher
        of `daemon`.

    Outputs:
      - ServiceSession in the Idle state.

    Example:
      >>> session = ServiceSession("local.", "_http._tcp.", "web", 8080)  # doctest: +SKIP
      >>> session.published.connect(lambda s: print("up as", s.name))  # doctest: +SKIP
      >>> session.publish()  # doctest: +SKIP
    """

    encode = staticmethod(encode_txt)
    decode = staticmethod(decode_txt)

    def __init__(
        self,
        domain: str,
        type: str,
        name: str,
        port: int = 0,
        *,
        daemon: Optional[ResolverDaemon] = None,
        dispatcher: Optional[DispatchCore] = None,
    ) -> None:
        if dispatcher is None:
            dispatcher = DispatchCore.shared(daemon if daemon is not None else default_daemon())
        elif daemon is not None and daemon is not dispatcher.daemon:
            raise ValueError("daemon does not match dispatcher.daemon")

        self._dispatcher = dispatcher
        self._daemon = dispatcher.daemon

        self._domain = domain
        self._type = type
        self._name = name
        self._port = int(port)
        self._host_name: Optional[str] = None
        self._txt: Optional[bytes] = None
        self._addresses: List[Address] = []

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._generation = 0
        self._monitor_generation = 0
        self._register_op: Optional[_Operation] = None
        self._resolve_op: Optional[_Operation] = None
        self._lookup_op: Optional[_Operation] = None
        self._monitor_op: Optional[_Operation] = None
        self._deadline: Optional[DeadlineTimer] = None
        self._closed = False

        self.published = Observers("published")
        self.not_published = Observers("not_published")
        self.resolved = Observers("resolved")
        self.not_resolved = Observers("not_resolved")
        self.txt_updated = Observers("txt_updated")
        self._listeners = Observers("events")

    # ------------------------------------------------------------ properties

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def type(self) -> str:
        return self._type

    @property
    def name(self) -> str:
        return self._name

    @property
    def port(self) -> int:
        return self._port

    @property
    def host_name(self) -> Optional[str]:
        return self._host_name

    @property
    def addresses(self) -> List[Address]:
        with self._lock:
            return list(self._addresses)

    @property
    def attribute_record(self) -> Optional[bytes]:
        return self._txt

    @property
    def attributes(self) -> Dict[str, Optional[bytes]]:
        """Brief: Decoded view of attribute_record (empty when unset).

        Raises:
          - CodecError: When the stored record is malformed.
        """

        data = self._txt
        if not data:
            return {}
        return decode_txt(data)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def monitoring(self) -> bool:
        return self._monitor_op is not None

    @property
    def dispatcher(self) -> DispatchCore:
        return self._dispatcher

    def __repr__(self) -> str:
        return "<ServiceSession %r %s%s state=%s monitoring=%s>" % (
            self._name,
            self._type,
            self._domain,
            self._state.value,
            self.monitoring,
        )

    # ---------------------------------------------------------------- events

    def add_listener(self, callback: Callable[[SessionEvent, "ServiceSession", Optional[Exception]], Any]) -> None:
        """Brief: Receive every event as `(SessionEvent, session, error_or_None)`."""

        self._listeners.connect(callback)

    def remove_listener(self, callback: Callable[..., Any]) -> bool:
        return self._listeners.disconnect(callback)

    def _emit(self, kind: SessionEvent, error: Optional[Exception] = None) -> None:
        observers = getattr(self, kind.value)
        if error is None:
            observers.emit(self)
        else:
            observers.emit(self, error)
        self._listeners.emit(kind, self, error)

    def _emit_all(self, events: List[Tuple[SessionEvent, Optional[Exception]]]) -> None:
        for kind, error in events:
            self._emit(kind, error)

    def _finish(
        self,
        released: List[_Operation],
        events: List[Tuple[SessionEvent, Optional[Exception]]],
    ) -> None:
        # Runs without the session lock: closing a reference waits for any
        # delivery in progress on it, and that delivery takes the session lock.
        for op in released:
            self._release(op)
        self._emit_all(events)

    # --------------------------------------------------------- op management

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("ServiceSession %r is closed" % (self._name,))

    def _open(self, create: Callable[[], ServiceRef]) -> _Operation:
        ref = create()
        try:
            watch_id = self._dispatcher.register_watch(ref)
        except Exception:
            ref.close()
            raise
        return _Operation(ref, watch_id)

    def _release(self, op: Optional[_Operation]) -> None:
        if op is None:
            return
        self._dispatcher.unregister_watch(op.watch_id)
        op.ref.close()

    def _stop_locked(self) -> List[_Operation]:
        """Detach publish/resolve/lookup; the caller releases them unlocked."""

        self._generation += 1
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

        released = [
            op
            for op in (self._register_op, self._resolve_op, self._lookup_op)
            if op is not None
        ]
        self._register_op = self._resolve_op = self._lookup_op = None

        if self._state is not SessionState.IDLE:
            logger.debug("%r: %s -> idle", self._name, self._state.value)
        self._state = SessionState.IDLE
        return released

    # --------------------------------------------------------------- publish

    def publish(self) -> None:
        """Brief: Register this service with the daemon.

        Inputs:
          - None (uses name, type, domain, port and attribute_record).

        Outputs:
          - None. `published` fires once the daemon confirms the (possibly
            renamed) registration; `not_published` fires on failure.
        """

        events: List[Tuple[SessionEvent, Optional[Exception]]] = []
        with self._lock:
            self._check_open()
            released = self._stop_locked()
            gen = self._generation
            callback = functools.partial(self._on_register_reply, gen)
            try:
                self._register_op = self._open(
                    lambda: self._daemon.create_register_reference(
                        self._name, self._type, self._domain, self._port, self._txt, callback
                    )
                )
            except DaemonError as exc:
                logger.warning("Publishing %r failed: %s", self._name, exc)
                events.append((SessionEvent.NOT_PUBLISHED, exc))
            else:
                self._state = SessionState.PUBLISHING
                logger.info(
                    "Publishing %r type=%s domain=%s port=%d",
                    self._name,
                    self._type,
                    self._domain,
                    self._port,
                )
        self._finish(released, events)

    def _on_register_reply(self, gen: int, reply: RegisterReply) -> None:
        events: List[Tuple[SessionEvent, Optional[Exception]]] = []
        released: List[_Operation] = []
        with self._lock:
            if gen != self._generation or self._register_op is None:
                logger.debug("%r: ignoring stale register reply", self._name)
                return
            if reply.ok:
                self._name = reply.name
                self._type = reply.type
                self._domain = reply.domain
                logger.info("Published %r type=%s domain=%s", self._name, self._type, self._domain)
                events.append((SessionEvent.PUBLISHED, None))
            else:
                released = self._stop_locked()
                error = DaemonError("DNSServiceRegister", reply.error)
                logger.warning("Publishing %r failed: %s", self._name, error)
                events.append((SessionEvent.NOT_PUBLISHED, error))
        self._finish(released, events)

    # --------------------------------------------------------------- resolve

    def resolve_with_timeout(self, seconds: float) -> None:
        """Brief: Resolve host, port, TXT and addresses of this service.

        Inputs:
          - seconds: Deadline for the whole resolve, including address lookup.

        Outputs:
          - None. Exactly one of `resolved` or `not_resolved` fires for the
            attempt unless it is stopped or superseded first; a deadline
            expiry reports ResolveTimeoutError.
        """

        if seconds is None or float(seconds) < 0:
            raise ValueError("resolve timeout must be >= 0 seconds, got %r" % (seconds,))

        events: List[Tuple[SessionEvent, Optional[Exception]]] = []
        with self._lock:
            self._check_open()
            released = self._stop_locked()
            gen = self._generation
            callback = functools.partial(self._on_resolve_reply, gen)
            try:
                self._resolve_op = self._open(
                    lambda: self._daemon.create_resolve_reference(
                        self._name, self._type, self._domain, callback
                    )
                )
            except DaemonError as exc:
                logger.warning("Resolving %r failed: %s", self._name, exc)
                events.append((SessionEvent.NOT_RESOLVED, exc))
            else:
                self._state = SessionState.RESOLVING
                self._deadline = DeadlineTimer(
                    seconds, self._on_resolve_deadline, self._dispatcher.context, gen
                ).start()
                logger.debug("Resolving %r (timeout %.3fs)", self._name, float(seconds))
        self._finish(released, events)

    def _on_resolve_reply(self, gen: int, reply: ResolveReply) -> None:
        events: List[Tuple[SessionEvent, Optional[Exception]]] = []
        released: List[_Operation] = []
        with self._lock:
            if gen != self._generation or self._state is not SessionState.RESOLVING:
                logger.debug("%r: ignoring stale resolve reply", self._name)
                return
            if not reply.ok:
                released = self._stop_locked()
                error = DaemonError("DNSServiceResolve", reply.error)
                logger.warning("Resolving %r failed: %s", self._name, error)
                events.append((SessionEvent.NOT_RESOLVED, error))
            else:
                self._host_name = reply.hostname
                self._port = int(reply.port)

                txt = bytes(reply.txt or b"")
                if self._txt is None or txt != self._txt:
                    try:
                        decode_txt(txt)
                    except CodecError as exc:
                        logger.warning("%r: resolved TXT record is malformed: %s", self._name, exc)
                    self._txt = txt
                    events.append((SessionEvent.TXT_UPDATED, None))

                released.append(self._resolve_op)
                self._resolve_op = None
                released.extend(self._start_address_lookup(gen, events))
        self._finish(released, events)

    def _start_address_lookup(self, gen: int, events) -> List[_Operation]:
        self._addresses = []
        host = self._host_name or ""
        callback = functools.partial(self._on_address_reply, gen)
        try:
            self._lookup_op = self._open(
                lambda: self._daemon.create_query_reference(host, int(QTYPE.A), 0, callback)
            )
        except DaemonError as exc:
            logger.warning("Address lookup for %r (%s) failed: %s", self._name, host, exc)
            events.append((SessionEvent.NOT_RESOLVED, exc))
            return self._stop_locked()
        self._state = SessionState.ADDRESS_LOOKUP
        logger.debug("%r: resolved to %s:%d; looking up addresses", self._name, host, self._port)
        return []

    def _on_address_reply(self, gen: int, reply: QueryReply) -> None:
        events: List[Tuple[SessionEvent, Optional[Exception]]] = []
        released: List[_Operation] = []
        with self._lock:
            if gen != self._generation or self._state is not SessionState.ADDRESS_LOOKUP:
                logger.debug("%r: ignoring stale address reply", self._name)
                return
            if not reply.ok:
                released = self._stop_locked()
                error = DaemonError("DNSServiceQueryRecord", reply.error)
                logger.warning("Address lookup for %r failed: %s", self._name, error)
                events.append((SessionEvent.NOT_RESOLVED, error))
            else:
                if reply.added:
                    address = _address_from_rdata(reply.rdata)
                    if address is None:
                        logger.warning(
                            "%r: skipping address record with %d-byte rdata",
                            self._name,
                            len(reply.rdata),
                        )
                    else:
                        self._addresses.append((address, self._port))
                if not reply.more_coming:
                    released = self._stop_locked()
                    logger.info(
                        "Resolved %r -> %s:%d %s",
                        self._name,
                        self._host_name,
                        self._port,
                        [a for a, _ in self._addresses],
                    )
                    events.append((SessionEvent.RESOLVED, None))
        self._finish(released, events)

    def _on_resolve_deadline(self, gen: int) -> None:
        with self._lock:
            if gen != self._generation or self._state not in (
                SessionState.RESOLVING,
                SessionState.ADDRESS_LOOKUP,
            ):
                return
            released = self._stop_locked()
            logger.info("Resolving %r timed out", self._name)
        self._finish(released, [(SessionEvent.NOT_RESOLVED, ResolveTimeoutError())])

    # ------------------------------------------------------------------ stop

    def stop(self) -> None:
        """Brief: Stop publish/resolve/address lookup; monitoring is unaffected.

        Idempotent; every owned reference is deallocated and its watch removed
        before this returns. A reply being delivered on another thread at the
        same time is allowed to finish first and is then ignored.
        """

        with self._lock:
            released = self._stop_locked()
        self._finish(released, [])

    # ------------------------------------------------------------ monitoring

    def start_monitoring(self) -> None:
        """Brief: Follow changes to this service's TXT record.

        Inputs:
          - None.

        Outputs:
          - None. `txt_updated` fires for every record delivered. A second
            call while monitoring is a no-op.

        Raises:
          - DaemonError: When the daemon refuses the query.
        """

        with self._lock:
            self._check_open()
            if self._monitor_op is not None:
                return
            self._monitor_generation += 1
            gen = self._monitor_generation
            fqdn = construct_full_name(self._name, self._type, self._domain)
            callback = functools.partial(self._on_monitor_reply, gen)
            self._monitor_op = self._open(
                lambda: self._daemon.create_query_reference(
                    fqdn, int(QTYPE.TXT), FLAG_LONG_LIVED_QUERY, callback
                )
            )
            logger.debug("Monitoring TXT of %s", fqdn)

    def _detach_monitor_locked(self) -> List[_Operation]:
        self._monitor_generation += 1
        op, self._monitor_op = self._monitor_op, None
        return [op] if op is not None else []

    def stop_monitoring(self) -> None:
        with self._lock:
            released = self._detach_monitor_locked()
        self._finish(released, [])

    def _on_monitor_reply(self, gen: int, reply: QueryReply) -> None:
        with self._lock:
            if gen != self._monitor_generation or self._monitor_op is None:
                return
            if not reply.ok:
                logger.warning(
                    "%r: TXT monitor reported %s",
                    self._name,
                    DaemonError("DNSServiceQueryRecord", reply.error),
                )
                return
            self._txt = bytes(reply.rdata)
        self._emit(SessionEvent.TXT_UPDATED)

    # ------------------------------------------------------------ TXT record

    def set_attribute_record(self, data: Optional[bytes]) -> bool:
        """Brief: Replace the TXT record, updating the daemon when published.

        Inputs:
          - data: Encoded TXT record (see encode_txt) or None. While
            published, None is sent to the daemon as the empty record.

        Outputs:
          - bool: True once the record is stored (and published when needed).

        Raises:
          - DaemonError: When the daemon rejects the update.
        """

        new = None if data is None else bytes(data)
        with self._lock:
            op = self._register_op
            if op is None:
                self._txt = new
                return True
            if new == self._txt:
                return True
            ref = op.ref

        with ref.lock:
            if not ref.closed:
                self._daemon.update_record(ref, EMPTY_TXT_RECORD if new is None else new)
                logger.debug("%r: TXT record updated (%d bytes)", self._name, len(new or b""))
        with self._lock:
            self._txt = new
        return True

    # --------------------------------------------------------------- cleanup

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            released = self._stop_locked() + self._detach_monitor_locked()
        self._finish(released, [])

    def __enter__(self) -> "ServiceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
