"""
auth/network.py -- Client address normalization for the login audit trail.

The same client can reach the service as ::1, 0:0:0:0:0:0:0:1 or 127.0.0.1
depending on the listener's socket family. Audit rows store one canonical
spelling so per-address queries do not miss entries.
"""

from __future__ import annotations

import ipaddress

_LOOPBACK_V4 = "127.0.0.1"


def normalize_ip(raw: str | None) -> str | None:
    """Return the canonical text form of an IP address.

    - IPv6 loopback in any spelling -> "127.0.0.1"
    - IPv4-mapped IPv6 (::ffff:10.0.0.5) -> "10.0.0.5"
    - other IPv4/IPv6 literals -> ipaddress' compressed form
    - anything that is not an IP literal -> stripped input, unchanged
    """
    if raw is None:
        return None
    value = raw.strip()
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return value
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is not None:
            return str(addr.ipv4_mapped)
        if addr.is_loopback:
            return _LOOPBACK_V4
    return str(addr)


def client_ip(forwarded_for: str | None, peer: str | None) -> str | None:
    """Pick the client address: first X-Forwarded-For entry, else the socket peer.

    The header is client-controlled, so only an IP literal is taken from it;
    anything else falls back to the peer rather than reaching the audit log.
    """
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        try:
            ipaddress.ip_address(first)
        except ValueError:
            return normalize_ip(peer)
        return normalize_ip(first)
    return normalize_ip(peer)
