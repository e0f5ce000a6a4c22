"""Error types raised by signalbuoy.

Brief:
  Every failure reported by the resolver daemon is wrapped in DaemonError,
  which records the daemon function that failed and its native error code.
  Resolve deadlines surface as ResolveTimeoutError and malformed attribute
  records as CodecError.
"""

from __future__ import annotations

import enum
from typing import Union


class DNSServiceErrorType(enum.IntEnum):
    """Brief: Native dns_sd error codes (DNSServiceErrorType)."""

    kDNSServiceErr_NoError = 0
    kDNSServiceErr_Unknown = -65537
    kDNSServiceErr_NoSuchName = -65538
    kDNSServiceErr_NoMemory = -65539
    kDNSServiceErr_BadParam = -65540
    kDNSServiceErr_BadReference = -65541
    kDNSServiceErr_BadState = -65542
    kDNSServiceErr_BadFlags = -65543
    kDNSServiceErr_Unsupported = -65544
    kDNSServiceErr_NotInitialized = -65545
    kDNSServiceErr_AlreadyRegistered = -65547
    kDNSServiceErr_NameConflict = -65548
    kDNSServiceErr_Invalid = -65549
    kDNSServiceErr_Firewall = -65550
    kDNSServiceErr_Incompatible = -65551
    kDNSServiceErr_BadInterfaceIndex = -65552
    kDNSServiceErr_Refused = -65553
    kDNSServiceErr_NoSuchRecord = -65554
    kDNSServiceErr_NoAuth = -65555
    kDNSServiceErr_NoSuchKey = -65556
    kDNSServiceErr_NATTraversal = -65557
    kDNSServiceErr_DoubleNAT = -65558
    kDNSServiceErr_BadTime = -65559
    kDNSServiceErr_BadSig = -65560
    kDNSServiceErr_BadKey = -65561
    kDNSServiceErr_Transient = -65562
    kDNSServiceErr_ServiceNotRunning = -65563
    kDNSServiceErr_NATPortMappingUnsupported = -65564
    kDNSServiceErr_NATPortMappingDisabled = -65565
    kDNSServiceErr_NoRouter = -65566
    kDNSServiceErr_PollingMode = -65567
    kDNSServiceErr_Timeout = -65568


def normalize_error_code(code: int) -> Union[DNSServiceErrorType, int]:
    """Brief: Map a raw integer onto DNSServiceErrorType when it is known.

    Inputs:
      - code: Raw error value returned by the daemon.

    Outputs:
      - DNSServiceErrorType member, or the original int for unknown codes.

    Example:
      >>> normalize_error_code(-65548).name
      'kDNSServiceErr_NameConflict'
    """

    try:
        return DNSServiceErrorType(int(code))
    except ValueError:
        return int(code)


class SignalbuoyError(Exception):
    """Base class for all signalbuoy errors."""


class DaemonError(SignalbuoyError):
    """Brief: A resolver daemon call failed.

    Inputs:
      - operation: Name of the daemon function that reported the error.
      - code: Native error code (int or DNSServiceErrorType).

    Outputs:
      - DaemonError with `operation` and `code` attributes.
    """

    def __init__(self, operation: str, code: int) -> None:
        self.operation = str(operation)
        self.code = normalize_error_code(code)
        name = getattr(self.code, "name", str(self.code))
        super().__init__(
            "An error occurred in the function '%s': %s" % (self.operation, name)
        )


class ResolveTimeoutError(DaemonError, TimeoutError):
    """Brief: A resolve did not complete before its deadline."""

    def __init__(self) -> None:
        super().__init__("Timeout", DNSServiceErrorType.kDNSServiceErr_Timeout)


class DaemonUnavailableError(SignalbuoyError, RuntimeError):
    """The system dns_sd library could not be loaded."""


class CodecError(SignalbuoyError, ValueError):
    """Brief: An attribute (TXT) record could not be encoded or decoded."""


class SessionClosedError(SignalbuoyError, RuntimeError):
    """An operation was started on a ServiceSession after close()."""
