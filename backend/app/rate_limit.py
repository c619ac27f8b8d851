"""Request rate limiting for the mindnote backend.

Keys requests by authenticated user when a valid bearer token is present,
otherwise by client IP. Forwarded headers are only trusted from known
proxy networks to prevent X-Forwarded-For spoofing.

These limits guard the HTTP surface against request floods. The per-user
daily and interval processing caps live in ``mindnote.rate_limit``.
"""

import ipaddress
import logging
import os
from typing import Optional

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger("mindnote.api.rate_limit")

# Only peers in these networks may set X-Forwarded-For. The defaults cover
# a reverse proxy on a private network in front of the API.
# Override with TRUSTED_PROXY_CIDRS env var (comma-separated CIDRs).
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",  # private network / cluster ingress
    "172.16.0.0/12",  # container bridge networks
    "192.168.0.0/16",  # LAN proxy in local setups
    "127.0.0.0/8",  # proxy on the same host
    "::1/128",  # same host over IPv6
]


def _load_trusted_cidrs() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Load trusted proxy CIDRs from env or defaults."""
    raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] if raw else _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning("Ignoring invalid trusted proxy CIDR: %s", cidr)
    return networks


_trusted_networks: Optional[list] = None


def _get_trusted_networks():
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = _load_trusted_cidrs()
    return _trusted_networks


def _is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _get_trusted_networks())


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies.

    Used as the limiter key for unauthenticated requests, so a spoofed
    header from an untrusted peer must not let a client pick its own
    bucket.
    """
    direct_ip = get_remote_address(request)
    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return direct_ip


def get_rate_limit_key(request) -> str:
    """``user:<id>`` for a valid bearer token, else ``ip:<address>``."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        settings = get_settings()
        try:
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        except JWTError:
            payload = {}
        if payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_rate_limit_key)
