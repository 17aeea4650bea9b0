"""Rate limiting for the Taakl backend.

Requests are keyed on the client address. ``X-Forwarded-For`` is honoured
only when the direct peer is one of ``Settings.trusted_proxy_cidrs``, so a
client cannot pick its own rate-limit bucket.
"""

import ipaddress
import logging
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _trusted_networks(cidrs: tuple[str, ...]) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return tuple(networks)


def is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    networks = _trusted_networks(tuple(get_settings().trusted_proxy_cidrs))
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Address a request is rate limited under.

    Behind a trusted proxy this is the leftmost ``X-Forwarded-For`` entry;
    otherwise it is the direct peer.
    """
    direct_ip = get_remote_address(request)
    if not is_trusted_proxy(direct_ip):
        return direct_ip

    forwarded_for = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded_for.split(",")[0].strip()
    return client_ip or direct_ip


def auth_rate_limit() -> str:
    """Limit for register/login, read from settings at request time."""
    return get_settings().auth_rate_limit


def api_rate_limit() -> str:
    """Limit for authenticated sync and settings calls."""
    return get_settings().rate_limit


limiter = Limiter(key_func=get_client_ip)
