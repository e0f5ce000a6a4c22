"""Resolver daemon contract.

Brief:
  The multicast DNS protocol engine lives in an external daemon. This module
  describes the reference-based operations signalbuoy consumes from it, the
  reply records handed to reply callbacks, and the owned ServiceRef handle.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..errors import DNSServiceErrorType, normalize_error_code

logger = logging.getLogger(__name__)

# DNSServiceFlags
FLAG_MORE_COMING = 0x1
FLAG_ADD = 0x2
FLAG_LONG_LIVED_QUERY = 0x100

NO_ERROR = DNSServiceErrorType.kDNSServiceErr_NoError


@dataclass
class RegisterReply:
    """Brief: Result of a register operation.

    Inputs:
      - error: Native error code (0 on success).
      - name/type/domain: Names actually registered; the daemon may have
        renamed the instance to resolve a conflict.
      - flags: DNSServiceFlags delivered with the reply.
    """

    error: int
    name: str = ""
    type: str = ""
    domain: str = ""
    flags: int = 0

    @property
    def ok(self) -> bool:
        return int(self.error) == NO_ERROR


@dataclass
class ResolveReply:
    """Brief: Result of a resolve operation (SRV + TXT of one instance)."""

    error: int
    fullname: str = ""
    hostname: str = ""
    port: int = 0
    txt: bytes = b""
    flags: int = 0
    interface: int = 0

    @property
    def ok(self) -> bool:
        return int(self.error) == NO_ERROR


@dataclass
class QueryReply:
    """Brief: One record delivered by a query operation.

    Inputs:
      - error: Native error code (0 on success).
      - flags: FLAG_ADD when the record was added (cleared on removal) and
        FLAG_MORE_COMING when further replies are already queued.
      - rrtype: DNS record type of `rdata`.
      - rdata: Raw record data.
      - ttl: Record time-to-live in seconds.
    """

    error: int
    flags: int = 0
    rrtype: int = 0
    rdata: bytes = b""
    ttl: int = 0
    fullname: str = ""
    rrclass: int = 1
    interface: int = 0

    @property
    def ok(self) -> bool:
        return int(self.error) == NO_ERROR

    @property
    def added(self) -> bool:
        return bool(self.flags & FLAG_ADD)

    @property
    def more_coming(self) -> bool:
        return bool(self.flags & FLAG_MORE_COMING)


RegisterCallback = Callable[[RegisterReply], None]
ResolveCallback = Callable[[ResolveReply], None]
QueryCallback = Callable[[QueryReply], None]


class ServiceRef:
    """Brief: Owned handle for one outstanding daemon operation.

    Inputs:
      - daemon: ResolverDaemon that issued the handle.
      - handle: Daemon-specific opaque value.
      - operation: Name of the creating daemon function (for logs/errors).

    Outputs:
      - ServiceRef whose only release point is close().

    Notes:
      - close() is idempotent and thread-safe. The handle is never released
        by a finalizer; owners must close it explicitly (or use `with`).
      - `lock` is held by close() and around every call that uses the native
        handle, so a handle is never released while one is in progress. It
        is re-entrant because reply callbacks may close their own reference.
    """

    def __init__(self, daemon: "ResolverDaemon", handle: Any, operation: str) -> None:
        self.daemon = daemon
        self.handle = handle
        self.operation = operation
        self._closed = False
        self.lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self.daemon.get_socket_descriptor(self)

    def close(self) -> None:
        with self.lock:
            if self._closed:
                return
            self._closed = True
            logger.debug("Deallocating %s reference %r", self.operation, self.handle)
            self.daemon.deallocate_reference(self)

    def __enter__(self) -> "ServiceRef":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return "<ServiceRef %s %r %s>" % (self.operation, self.handle, state)


class ResolverDaemon(ABC):
    """Brief: Reference-based operations offered by the resolver daemon.

    Notes:
      - Creation methods raise DaemonError on failure instead of returning a
        (reference, error) pair.
      - `callback` is invoked from process_pending_result() on whichever
        thread the dispatcher's execution context selects.
      - deallocate_reference() is called by ServiceRef.close(); callers
        should not invoke it directly.
      - process_pending_result() and update_record() are called with
        `ref.lock` held, so deallocation never overlaps them.
    """

    @abstractmethod
    def create_register_reference(
        self,
        name: str,
        type: str,
        domain: str,
        port: int,
        txt: Optional[bytes],
        callback: RegisterCallback,
    ) -> ServiceRef:
        pass

    @abstractmethod
    def create_resolve_reference(
        self, name: str, type: str, domain: str, callback: ResolveCallback
    ) -> ServiceRef:
        pass

    @abstractmethod
    def create_query_reference(
        self, fqdn: str, rrtype: int, flags: int, callback: QueryCallback
    ) -> ServiceRef:
        pass

    @abstractmethod
    def update_record(self, ref: ServiceRef, data: Optional[bytes]) -> None:
        pass

    @abstractmethod
    def get_socket_descriptor(self, ref: ServiceRef) -> int:
        pass

    @abstractmethod
    def process_pending_result(self, ref: ServiceRef) -> None:
        pass

    @abstractmethod
    def deallocate_reference(self, ref: ServiceRef) -> None:
        pass

    @abstractmethod
    def get_daemon_version(self) -> int:
        pass


def format_daemon_version(raw: int) -> float:
    """Brief: Convert the daemon's packed version integer into major.minor.

    Inputs:
      - raw: Value reported by get_daemon_version().

    Outputs:
      - float: major + minor / 1000.

    Example:
      >>> format_daemon_version(1180500)
      118.5
      >>> format_daemon_version(1760300)
      176.3
    """

    value = int(raw)
    major = value // 10000
    minor = value % 1000
    return float(major) + minor / 1000.0


def error_name(code: int) -> str:
    """Brief: Human-readable name for a native error code."""

    normalized = normalize_error_code(code)
    return getattr(normalized, "name", str(normalized))


_ESCAPE_CHARS = {ord("."), ord("\\")}


def construct_full_name(name: str, type: str, domain: str) -> str:
    """Brief: Build the fully-qualified DNS-SD name `<instance>.<type>.<domain>.`.

    Inputs:
      - name: Service instance label; '.' and '\\' are backslash-escaped and
        control characters written as `\\DDD`.
      - type: Service type such as `_http._tcp`.
      - domain: Domain such as `local.`.

    Outputs:
      - str: Full name with a trailing dot.

    Example:
      >>> construct_full_name("My.Printer", "_ipp._tcp.", "local.")
      'My\\\\.Printer._ipp._tcp.local.'
    """

    out = bytearray()
    for byte in str(name).encode("utf-8"):
        if byte in _ESCAPE_CHARS:
            out += b"\\" + bytes((byte,))
        elif byte < 0x20 or byte == 0x7F:
            out += ("\\%03d" % byte).encode("ascii")
        else:
            out.append(byte)
    instance = out.decode("utf-8")

    parts = [instance]
    for piece in (type, domain):
        piece = str(piece or "").strip(".")
        if piece:
            parts.append(piece)
    return ".".join(parts) + "."
