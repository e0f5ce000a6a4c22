"""Resolver daemon contract and the system dns_sd binding."""

from .base import (
    FLAG_ADD,
    FLAG_LONG_LIVED_QUERY,
    FLAG_MORE_COMING,
    QueryReply,
    RegisterReply,
    ResolveReply,
    ResolverDaemon,
    ServiceRef,
    construct_full_name,
    format_daemon_version,
)

__all__ = [
    "FLAG_ADD",
    "FLAG_LONG_LIVED_QUERY",
    "FLAG_MORE_COMING",
    "QueryReply",
    "RegisterReply",
    "ResolveReply",
    "ResolverDaemon",
    "ServiceRef",
    "construct_full_name",
    "format_daemon_version",
]
