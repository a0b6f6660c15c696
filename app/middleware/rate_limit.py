"""
Rate limiter: in-memory sliding window.

Limits:
  - General API: per IP, configurable (default 60/min)
  - Redirect path: per IP, configurable (default 50 per 10s)
  - Per link: per code+IP combo, configurable (default 12 per 5s)

Windows live in process memory, so each worker counts on its own.
"""

import time

from fastapi import HTTPException, Request

from app.config import get_settings
from app.core.visitor import get_real_ip

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}
_windows: dict[str, int] = {}

SWEEP_THRESHOLD = 10000


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    now = time.time()
    cutoff = now - window_seconds

    if len(_memory_store) > SWEEP_THRESHOLD:
        _sweep(now)

    _windows[key] = window_seconds
    _memory_store[key] = [t for t in _memory_store.get(key, []) if t > cutoff]
    current_count = len(_memory_store[key])

    if current_count >= limit:
        return False, 0

    _memory_store[key].append(now)
    return True, limit - current_count - 1


def _sweep(now: float):
    """Drop keys with no hits left inside their window."""
    stale = [
        k for k, hits in _memory_store.items()
        if not hits or hits[-1] <= now - _windows.get(k, 0)
    ]
    for k in stale:
        _memory_store.pop(k, None)
        _windows.pop(k, None)


def check_rate_limit(key: str, limit: int, window: int = 60):
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.info("rate_limited", key=key.split(":", 1)[0], limit=limit, window=window)
        raise HTTPException(
            status_code=429,
            detail="Too many requests, please try again later.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def reset_rate_limits():
    _memory_store.clear()
    _windows.clear()


async def rate_limit_api(request: Request):
    """Router dependency: generic per-IP throttle for /api routes."""
    settings = get_settings()
    ip = get_real_ip(request)
    return check_rate_limit(f"api:{ip}", settings.rate_limit_per_minute, 60)


def rate_limit_redirect(request: Request):
    settings = get_settings()
    ip = get_real_ip(request)
    return check_rate_limit(
        f"redirect:{ip}",
        settings.redirect_rate_limit,
        settings.redirect_rate_window_seconds,
    )


def rate_limit_link(request: Request, code: str):
    settings = get_settings()
    ip = get_real_ip(request)
    return check_rate_limit(
        f"link:{code}|{ip}",
        settings.per_link_rate_limit,
        settings.per_link_rate_window_seconds,
    )
