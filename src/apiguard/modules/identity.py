from __future__ import annotations

from typing import Mapping, Optional

FALLBACK_IDENTITY = "0.0.0.0"
LOOPBACK = "127.0.0.1"

_MAPPED_PREFIX = "::ffff:"
_LOOPBACK_FORMS = {"::1", "::ffff:127.0.0.1", "0:0:0:0:0:0:0:1"}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # Starlette's Headers is already case-insensitive; plain dicts are not
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, val in headers.items():
            if key.lower() == lowered:
                return val
    return value


def normalize_ip(ip: str) -> str:
    """Collapse loopback forms to 127.0.0.1 and unwrap IPv4-mapped IPv6."""
    ip = ip.strip()
    lowered = ip.lower()
    if lowered in _LOOPBACK_FORMS:
        return LOOPBACK
    if lowered.startswith(_MAPPED_PREFIX):
        return ip[len(_MAPPED_PREFIX):]
    return ip


def resolve_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Derive the client identity for a request.

    X-Forwarded-For (first hop) wins over X-Real-IP, which wins over the
    transport peer.  Never raises: anything unresolvable maps to
    ``FALLBACK_IDENTITY``.
    """
    candidates = []
    forwarded_for = _header(headers, "x-forwarded-for")
    if forwarded_for:
        candidates.append(forwarded_for.split(",")[0])
    candidates.append(_header(headers, "x-real-ip"))
    candidates.append(peer)

    for candidate in candidates:
        if candidate and candidate.strip():
            return normalize_ip(candidate)
    return FALLBACK_IDENTITY
