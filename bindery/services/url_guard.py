from __future__ import annotations

import ipaddress
from urllib.parse import urlparse

from bindery.services.errors import (
    DisallowedSchemeError,
    InvalidUrlError,
    PrivateAddressError,
)

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})
BLOCKED_HOSTNAMES: frozenset[str] = frozenset({"localhost", "::1", "0.0.0.0"})
BLOCKED_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/32"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
)


def validate_url(url_string: str) -> str:
    """Check that ``url_string`` is safe to fetch and return it unchanged.

    The private-address check is literal: only the hostname as written is
    inspected, nothing is resolved through DNS. Callers that follow
    redirects must validate every hop and the final URL again.
    """
    candidate = url_string.strip() if isinstance(url_string, str) else ""
    if not candidate:
        raise InvalidUrlError("Invalid URL.")
    try:
        parsed = urlparse(candidate)
        host = parsed.hostname
        _ = parsed.port
    except ValueError as exc:
        raise InvalidUrlError("Invalid URL.") from exc
    if not parsed.scheme or not parsed.netloc:
        raise InvalidUrlError("Invalid URL.")
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise DisallowedSchemeError("Only HTTP and HTTPS URLs are allowed.")
    if not host:
        raise InvalidUrlError("Invalid URL.")
    if is_private_hostname(host):
        raise PrivateAddressError("URL points to a private or reserved address.")
    return candidate


def is_private_hostname(hostname: str) -> bool:
    host = hostname.strip().lower().strip("[]").rstrip(".")
    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped
    return any(address in network for network in BLOCKED_NETWORKS)
