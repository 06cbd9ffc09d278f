"""Normalization of actor identities used as rate-limit keys."""

import ipaddress
from typing import Optional, Union

UNKNOWN_IDENTITY = "ip:unknown"


def build_identity(
    user_id: Optional[Union[int, str]] = None,
    client_address: Optional[str] = None,
    credential: Optional[str] = None,
) -> str:
    """Build the rate-limit identity for an actor.

    Authenticated users are keyed by id, login attempts by credential, and
    everything else by client address.

    Example:
        >>> build_identity(user_id=42)
        'user:42'
        >>> build_identity(client_address="::ffff:10.0.0.1")
        'ip:10.0.0.1'
    """
    if user_id is not None and str(user_id).strip():
        return f"user:{str(user_id).strip()}"

    if credential and credential.strip():
        return f"auth:{credential.strip().lower()}"

    address = normalize_address(client_address)
    if address is None:
        return UNKNOWN_IDENTITY
    return f"ip:{address}"


def normalize_address(raw: Optional[str]) -> Optional[str]:
    """Canonicalize an IP address; returns None for empty or unparseable input.

    The first entry of a forwarded-for list is used. IPv4-mapped IPv6
    addresses collapse to their IPv4 form.
    """
    if not raw:
        return None

    candidate = raw.split(",")[0].strip()
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1 : candidate.index("]")]

    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return None

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)
