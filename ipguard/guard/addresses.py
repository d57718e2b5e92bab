"""Client address resolution.

The canonical address is the cache and store key for every guard
decision, so all guards resolve it the same way and memoize it on
``request.state``, once per ``trust_forwarded_for`` setting.
"""

from __future__ import annotations

import ipaddress
from typing import Dict, Optional

from starlette.requests import Request

from .errors import InvalidAddress


def canonicalize_address(raw: Optional[str]) -> str:
    """Normalize an address string; IPs get their compressed form.

    Non-IP strings (unix socket peers, test clients) are kept as-is so the
    guard still has a stable key for them.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise InvalidAddress()
    try:
        ip = ipaddress.ip_address(candidate.strip("[]"))
    except ValueError:
        return candidate
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return ip.compressed


def resolve_client_address(request: Request, *, trust_forwarded_for: bool = True) -> str:
    """First X-Forwarded-For entry, else the socket peer.

    Raises InvalidAddress when neither yields an address.
    """
    resolved: Dict[bool, str] = getattr(request.state, "client_addresses", None) or {}
    if trust_forwarded_for in resolved:
        return resolved[trust_forwarded_for]

    address: Optional[str] = None
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # Take the first IP in the chain (original client)
            address = forwarded.split(",")[0].strip() or None

    if address is None and request.client is not None:
        address = request.client.host

    canonical = canonicalize_address(address)
    resolved[trust_forwarded_for] = canonical
    request.state.client_addresses = resolved
    return canonical


__all__ = ["canonicalize_address", "resolve_client_address"]
