"""ctypes binding of the ResolverDaemon contract to the system dns_sd library.

Brief:
  Talks to mDNSResponder (macOS/Windows Bonjour) or Avahi's libdns_sd
  compatibility layer through the documented dns_sd C API. Each operation
  yields a DNSServiceRef whose socket is watched by the dispatcher; calling
  DNSServiceProcessResult() on that socket invokes the reply thunk registered
  here, which converts the C arguments into a reply record.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import socket
import sys
import threading
from typing import Any, Callable, Dict, List, Optional

from dnslib import CLASS

from ..errors import DaemonError, DaemonUnavailableError, DNSServiceErrorType
from .base import (
    NO_ERROR,
    QueryCallback,
    QueryReply,
    RegisterCallback,
    RegisterReply,
    ResolveCallback,
    ResolveReply,
    ResolverDaemon,
    ServiceRef,
)

logger = logging.getLogger(__name__)

if sys.platform == "win32":  # pragma: no cover - platform specific
    _FUNCTYPE = ctypes.WINFUNCTYPE
    _LIBRARY_LOADER = ctypes.WinDLL
else:
    _FUNCTYPE = ctypes.CFUNCTYPE
    _LIBRARY_LOADER = ctypes.CDLL

_DNSServiceRef = ctypes.c_void_p
_DNSServiceFlags = ctypes.c_uint32
_DNSServiceErrorType = ctypes.c_int32

_RegisterReplyType = _FUNCTYPE(
    None,
    _DNSServiceRef,
    _DNSServiceFlags,
    _DNSServiceErrorType,
    ctypes.c_char_p,  # name
    ctypes.c_char_p,  # regtype
    ctypes.c_char_p,  # domain
    ctypes.c_void_p,  # context
)

_ResolveReplyType = _FUNCTYPE(
    None,
    _DNSServiceRef,
    _DNSServiceFlags,
    ctypes.c_uint32,  # interfaceIndex
    _DNSServiceErrorType,
    ctypes.c_char_p,  # fullname
    ctypes.c_char_p,  # hosttarget
    ctypes.c_uint16,  # port (network order)
    ctypes.c_uint16,  # txtLen
    ctypes.c_void_p,  # txtRecord
    ctypes.c_void_p,  # context
)

_QueryReplyType = _FUNCTYPE(
    None,
    _DNSServiceRef,
    _DNSServiceFlags,
    ctypes.c_uint32,  # interfaceIndex
    _DNSServiceErrorType,
    ctypes.c_char_p,  # fullname
    ctypes.c_uint16,  # rrtype
    ctypes.c_uint16,  # rrclass
    ctypes.c_uint16,  # rdlen
    ctypes.c_void_p,  # rdata
    ctypes.c_uint32,  # ttl
    ctypes.c_void_p,  # context
)

_PROPERTY_DAEMON_VERSION = b"DaemonVersion"


def _default_library_candidates() -> List[str]:
    """Brief: Platform-specific names to try when loading dns_sd.

    Inputs:
      - None.

    Outputs:
      - list[str]: Library names/paths in preference order.
    """

    if sys.platform == "win32":  # pragma: no cover - platform specific
        return ["dnssd.dll"]
    if sys.platform == "darwin":  # pragma: no cover - platform specific
        return ["/usr/lib/libSystem.B.dylib"]
    out: List[str] = []
    found = ctypes.util.find_library("dns_sd")
    if found:
        out.append(found)
    out.extend(["libdns_sd.so.1", "libdns_sd.so"])
    return out


def load_library(library: Optional[str] = None) -> Any:
    """Brief: Load the dns_sd shared library and declare the functions used.

    Inputs:
      - library: Optional explicit library name or path. When omitted the
        platform defaults are tried in order.

    Outputs:
      - ctypes library handle with argtypes/restype configured.

    Raises:
      - DaemonUnavailableError: When no candidate could be loaded.
    """

    candidates = [library] if library else _default_library_candidates()
    lib = None
    errors = []
    for candidate in candidates:
        try:
            lib = _LIBRARY_LOADER(candidate)
            break
        except OSError as exc:
            errors.append("%s: %s" % (candidate, exc))
    if lib is None:
        raise DaemonUnavailableError(
            "Unable to load the dns_sd library (tried %s). Install mDNSResponder "
            "or avahi-compat-libdns_sd, or set daemon.library."
            % "; ".join(errors or candidates)
        )

    lib.DNSServiceRegister.argtypes = [
        ctypes.POINTER(_DNSServiceRef),
        _DNSServiceFlags,
        ctypes.c_uint32,
        ctypes.c_char_p,
        ctypes.c_char_p,
        ctypes.c_char_p,
        ctypes.c_char_p,
        ctypes.c_uint16,
        ctypes.c_uint16,
        ctypes.c_char_p,
        _RegisterReplyType,
        ctypes.c_void_p,
    ]
    lib.DNSServiceRegister.restype = _DNSServiceErrorType

    lib.DNSServiceResolve.argtypes = [
        ctypes.POINTER(_DNSServiceRef),
        _DNSServiceFlags,
        ctypes.c_uint32,
        ctypes.c_char_p,
        ctypes.c_char_p,
        ctypes.c_char_p,
        _ResolveReplyType,
        ctypes.c_void_p,
    ]
    lib.DNSServiceResolve.restype = _DNSServiceErrorType

    lib.DNSServiceQueryRecord.argtypes = [
        ctypes.POINTER(_DNSServiceRef),
        _DNSServiceFlags,
        ctypes.c_uint32,
        ctypes.c_char_p,
        ctypes.c_uint16,
        ctypes.c_uint16,
        _QueryReplyType,
        ctypes.c_void_p,
    ]
    lib.DNSServiceQueryRecord.restype = _DNSServiceErrorType

    lib.DNSServiceUpdateRecord.argtypes = [
        _DNSServiceRef,
        ctypes.c_void_p,
        _DNSServiceFlags,
        ctypes.c_uint16,
        ctypes.c_char_p,
        ctypes.c_uint32,
    ]
    lib.DNSServiceUpdateRecord.restype = _DNSServiceErrorType

    lib.DNSServiceRefSockFD.argtypes = [_DNSServiceRef]
    lib.DNSServiceRefSockFD.restype = ctypes.c_int

    lib.DNSServiceProcessResult.argtypes = [_DNSServiceRef]
    lib.DNSServiceProcessResult.restype = _DNSServiceErrorType

    lib.DNSServiceRefDeallocate.argtypes = [_DNSServiceRef]
    lib.DNSServiceRefDeallocate.restype = None

    lib.DNSServiceGetProperty.argtypes = [
        ctypes.c_char_p,
        ctypes.c_void_p,
        ctypes.POINTER(ctypes.c_uint32),
    ]
    lib.DNSServiceGetProperty.restype = _DNSServiceErrorType

    return lib


def _text(value: Optional[bytes]) -> str:
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace")


def _encode(value: Optional[str]) -> Optional[bytes]:
    if value is None or value == "":
        return None
    return str(value).encode("utf-8")


class DnsSdDaemon(ResolverDaemon):
    """Brief: ResolverDaemon backed by the system dns_sd library.

    Inputs:
      - library: Optional explicit library name or path.
      - interface_index: Interface to operate on (0 = all interfaces).

    Outputs:
      - DnsSdDaemon instance.

    Notes:
      - Exceptions raised by a reply callback cannot cross the C boundary, so
        they are captured in the thunk and re-raised from
        process_pending_result() on the same thread.
    """

    def __init__(self, library: Optional[str] = None, interface_index: int = 0) -> None:
        self._lib = load_library(library)
        self._interface_index = int(interface_index)
        self._lock = threading.Lock()
        # C thunks must stay alive as long as their DNSServiceRef.
        self._thunks: Dict[int, Any] = {}
        self._local = threading.local()

    def _wrap(self, callback: Callable[[Any], None], build: Callable[..., Any]):
        """Brief: Build a thunk body that converts C args and calls `callback`."""

        def thunk(*args):
            try:
                callback(build(*args))
            except Exception as exc:
                self._local.error = exc

        return thunk

    def _new_ref(self, operation: str, sd_ref: _DNSServiceRef, thunk: Any) -> ServiceRef:
        with self._lock:
            self._thunks[int(sd_ref.value)] = thunk
        return ServiceRef(self, sd_ref, operation)

    def create_register_reference(
        self,
        name: str,
        type: str,
        domain: str,
        port: int,
        txt: Optional[bytes],
        callback: RegisterCallback,
    ) -> ServiceRef:
        def build(_ref, flags, error, rname, rtype, rdomain, _ctx):
            return RegisterReply(
                error=int(error),
                name=_text(rname),
                type=_text(rtype),
                domain=_text(rdomain),
                flags=int(flags),
            )

        thunk = _RegisterReplyType(self._wrap(callback, build))
        sd_ref = _DNSServiceRef()
        data = bytes(txt) if txt else None
        err = self._lib.DNSServiceRegister(
            ctypes.byref(sd_ref),
            0,
            self._interface_index,
            _encode(name),
            _encode(type),
            _encode(domain),
            None,
            socket.htons(int(port) & 0xFFFF),
            len(data) if data else 0,
            data,
            thunk,
            None,
        )
        if err != NO_ERROR:
            raise DaemonError("DNSServiceRegister", err)
        return self._new_ref("DNSServiceRegister", sd_ref, thunk)

    def create_resolve_reference(
        self, name: str, type: str, domain: str, callback: ResolveCallback
    ) -> ServiceRef:
        def build(_ref, flags, iface, error, fullname, host, port, txt_len, txt, _ctx):
            data = ctypes.string_at(txt, txt_len) if txt and txt_len else b""
            return ResolveReply(
                error=int(error),
                fullname=_text(fullname),
                hostname=_text(host),
                port=socket.ntohs(port),
                txt=data,
                flags=int(flags),
                interface=int(iface),
            )

        thunk = _ResolveReplyType(self._wrap(callback, build))
        sd_ref = _DNSServiceRef()
        err = self._lib.DNSServiceResolve(
            ctypes.byref(sd_ref),
            0,
            self._interface_index,
            _encode(name),
            _encode(type),
            _encode(domain),
            thunk,
            None,
        )
        if err != NO_ERROR:
            raise DaemonError("DNSServiceResolve", err)
        return self._new_ref("DNSServiceResolve", sd_ref, thunk)

    def create_query_reference(
        self, fqdn: str, rrtype: int, flags: int, callback: QueryCallback
    ) -> ServiceRef:
        def build(_ref, rflags, iface, error, fullname, qtype, qclass, rdlen, rdata, ttl, _ctx):
            data = ctypes.string_at(rdata, rdlen) if rdata and rdlen else b""
            return QueryReply(
                error=int(error),
                flags=int(rflags),
                rrtype=int(qtype),
                rdata=data,
                ttl=int(ttl),
                fullname=_text(fullname),
                rrclass=int(qclass),
                interface=int(iface),
            )

        thunk = _QueryReplyType(self._wrap(callback, build))
        sd_ref = _DNSServiceRef()
        err = self._lib.DNSServiceQueryRecord(
            ctypes.byref(sd_ref),
            int(flags),
            self._interface_index,
            _encode(fqdn),
            int(rrtype),
            int(CLASS.IN),
            thunk,
            None,
        )
        if err != NO_ERROR:
            raise DaemonError("DNSServiceQueryRecord", err)
        return self._new_ref("DNSServiceQueryRecord", sd_ref, thunk)

    def update_record(self, ref: ServiceRef, data: Optional[bytes]) -> None:
        payload = bytes(data) if data else None
        with ref.lock:
            if ref.closed:
                raise DaemonError(
                    "DNSServiceUpdateRecord", DNSServiceErrorType.kDNSServiceErr_BadReference
                )
            err = self._lib.DNSServiceUpdateRecord(
                ref.handle, None, 0, len(payload) if payload else 0, payload, 0
            )
        if err != NO_ERROR:
            raise DaemonError("DNSServiceUpdateRecord", err)

    def get_socket_descriptor(self, ref: ServiceRef) -> int:
        fd = int(self._lib.DNSServiceRefSockFD(ref.handle))
        if fd < 0:
            raise DaemonError(
                "DNSServiceRefSockFD", DNSServiceErrorType.kDNSServiceErr_BadReference
            )
        return fd

    def process_pending_result(self, ref: ServiceRef) -> None:
        with ref.lock:
            if ref.closed:
                return
            self._local.error = None
            err = self._lib.DNSServiceProcessResult(ref.handle)
            pending = self._local.error
            self._local.error = None
        if pending is not None:
            raise pending
        if err != NO_ERROR:
            raise DaemonError("DNSServiceProcessResult", err)

    def deallocate_reference(self, ref: ServiceRef) -> None:
        self._lib.DNSServiceRefDeallocate(ref.handle)
        with self._lock:
            self._thunks.pop(int(ref.handle.value or 0), None)

    def get_daemon_version(self) -> int:
        result = ctypes.c_uint32(0)
        size = ctypes.c_uint32(ctypes.sizeof(result))
        err = self._lib.DNSServiceGetProperty(
            _PROPERTY_DAEMON_VERSION, ctypes.byref(result), ctypes.byref(size)
        )
        if err != NO_ERROR:
            raise DaemonError("DNSServiceGetProperty", err)
        return int(result.value)
