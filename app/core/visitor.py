"""
Visitor context: what a redirect records about the request.

  - Client IP (first public hop of X-Forwarded-For, else socket peer)
  - Country from CDN headers (Cloudflare / Vercel / generic proxy)
  - Coarse device + browser from the User-Agent
  - UTM source / medium / campaign from the query string
"""

from dataclasses import dataclass

from fastapi import Request
from user_agents import parse as parse_ua

UTM_MAX_LEN = 64

PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.",
    "172.20.", "172.21.", "172.22.", "172.23.", "172.24.",
    "172.25.", "172.26.", "172.27.", "172.28.", "172.29.",
    "172.30.", "172.31.", "192.168.", "127.", "::1",
)

COUNTRY_HEADERS = ("cf-ipcountry", "x-vercel-ip-country", "x-geo-country")


@dataclass
class DeviceInfo:
    device: str    # mobile, tablet, desktop
    browser: str   # Chrome, Safari, ... or "Unknown"


def get_real_ip(request: Request) -> str:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",")]
        for ip in ips:
            if not ip.startswith(PRIVATE_PREFIXES):
                return ip
        return ips[0]
    return request.client.host if request.client else "0.0.0.0"


def country_from_headers(headers) -> str | None:
    for name in COUNTRY_HEADERS:
        value = headers.get(name)
        if value:
            return str(value).strip().upper() or None
    return None


def parse_device(user_agent: str | None) -> DeviceInfo:
    parsed = parse_ua(user_agent or "")
    if parsed.is_tablet:
        device = "tablet"
    elif parsed.is_mobile:
        device = "mobile"
    else:
        device = "desktop"
    family = parsed.browser.family
    browser = family if family and family != "Other" else "Unknown"
    return DeviceInfo(device=device, browser=browser)


def parse_utm(query_params) -> dict:
    """utm_* params → {"source", "medium", "campaign"} (only those present, truncated)."""
    utm = {}
    for key in ("source", "medium", "campaign"):
        value = query_params.get(f"utm_{key}")
        if value:
            utm[key] = str(value)[:UTM_MAX_LEN]
    return utm


def parse_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
