"""
Short codes + link input validation.

Auto-generated codes: 7 chars from [0-9a-zA-Z] (62^7 ≈ 3.5e12 space).
Custom codes: 4-32 chars of [a-zA-Z0-9_-].
"""

import ipaddress
import re
import secrets
import socket
from urllib.parse import urlparse

from app.config import get_settings

CODE_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
CODE_LENGTH = 7

CUSTOM_CODE_PATTERN = r"[a-zA-Z0-9_-]{4,32}"
DOMAIN_PATTERN = r"[a-zA-Z0-9.-]+"

# Open-redirect / SSRF guard: private networks and script URLs are refused
_BLOCKED_HOSTS = {"localhost", "localhost.localdomain"}


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def is_valid_custom_code(code: str) -> bool:
    return bool(re.fullmatch(CUSTOM_CODE_PATTERN, code or ""))


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """IP literal in any form inet_aton accepts (127.1, 0x7f000001, 2130706433), or None."""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def _is_internal_ip(ip) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def is_safe_url(url: str | None) -> bool:
    """Must be http(s) and must not target private networks."""
    u = str(url or "").strip()
    try:
        parsed = urlparse(u)
        host = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme.lower() not in ("http", "https") or not host:
        return False

    host = host.rstrip(".")
    if host in _BLOCKED_HOSTS or host.endswith(".localhost"):
        return False

    ip = _parse_ip(host)
    return ip is None or not _is_internal_ip(ip)


def normalize_domain(domain: str | None) -> str:
    """Lower-case, no protocol, no trailing slash."""
    d = str(domain or "").strip().lower()
    d = re.sub(r"^https?://", "", d)
    return d.rstrip("/")


def build_short_url(code: str, domain: str | None = None) -> str:
    if domain:
        return f"https://{domain}/r/{code}"
    return f"{get_settings().base_url.rstrip('/')}/r/{code}"
