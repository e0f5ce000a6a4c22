"""
Brief: Tests for signalbuoy.daemon.base helpers and the error types.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from signalbuoy.daemon.base import (
    FLAG_ADD,
    FLAG_MORE_COMING,
    QueryReply,
    RegisterReply,
    construct_full_name,
    error_name,
    format_daemon_version,
)
from signalbuoy.daemon.dnssd import load_library
from signalbuoy.errors import (
    DaemonError,
    DaemonUnavailableError,
    DNSServiceErrorType,
    ResolveTimeoutError,
    normalize_error_code,
)


@pytest.mark.parametrize(
    "raw, expected",
    [(1180500, 118.5), (1760300, 176.3), (8780000, 878.0), (0, 0.0)],
)
def test_format_daemon_version(raw, expected) -> None:
    assert format_daemon_version(raw) == pytest.approx(expected)


@pytest.mark.parametrize(
    "name, type_, domain, expected",
    [
        ("web", "_http._tcp.", "local.", "web._http._tcp.local."),
        ("web", "_http._tcp", "local", "web._http._tcp.local."),
        ("My.Printer", "_ipp._tcp.", "local.", "My\\.Printer._ipp._tcp.local."),
        ("back\\slash", "_x._udp.", "local.", "back\\\\slash._x._udp.local."),
        ("tab\there", "_x._udp.", "local.", "tab\\009here._x._udp.local."),
        ("Büro", "_http._tcp.", "", "Büro._http._tcp."),
    ],
)
def test_construct_full_name(name, type_, domain, expected) -> None:
    """Brief: Instance labels are escaped; type and domain are dot-joined.

    Inputs:
      - name, type_, domain: name parts.
      - expected: full name with trailing dot.

    Outputs:
      - None; asserts exact output.
    """

    assert construct_full_name(name, type_, domain) == expected


def test_reply_flags() -> None:
    reply = QueryReply(0, FLAG_ADD | FLAG_MORE_COMING, 1, b"\x7f\x00\x00\x01")
    assert reply.ok and reply.added and reply.more_coming
    removed = QueryReply(0, 0)
    assert not removed.added and not removed.more_coming
    assert not RegisterReply(-65548).ok


def test_service_ref_close_is_idempotent(daemon) -> None:
    ref = daemon.create_query_reference("h.local.", 1, 0, lambda r: None)
    assert not ref.closed
    assert ref.fileno() >= 0

    ref.close()
    ref.close()

    assert ref.closed
    assert daemon.deallocated == [ref.handle]
    assert "closed" in repr(ref)


def test_service_ref_context_manager(daemon) -> None:
    with daemon.create_query_reference("h.local.", 1, 0, lambda r: None) as ref:
        pass
    assert ref.closed


def test_daemon_error_message_and_code() -> None:
    """Brief: DaemonError names the failing function and the symbolic code."""

    err = DaemonError("DNSServiceRegister", -65548)
    assert err.operation == "DNSServiceRegister"
    assert err.code is DNSServiceErrorType.kDNSServiceErr_NameConflict
    assert str(err) == (
        "An error occurred in the function 'DNSServiceRegister': kDNSServiceErr_NameConflict"
    )


def test_unknown_error_code_is_kept_as_int() -> None:
    assert normalize_error_code(-1) == -1
    assert error_name(-1) == "-1"
    assert error_name(-65563) == "kDNSServiceErr_ServiceNotRunning"
    assert "-1" in str(DaemonError("DNSServiceResolve", -1))


def test_resolve_timeout_error() -> None:
    err = ResolveTimeoutError()
    assert isinstance(err, DaemonError)
    assert isinstance(err, TimeoutError)
    assert err.operation == "Timeout"
    assert err.code is DNSServiceErrorType.kDNSServiceErr_Timeout


def test_load_library_missing_raises(tmp_path) -> None:
    with pytest.raises(DaemonUnavailableError):
        load_library(str(tmp_path / "libdoes_not_exist.so"))
