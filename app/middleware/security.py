"""Response hardening applied to every request."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

NO_STORE_PREFIXES = ("/api/", "/r/")

BASE_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        headers = response.headers

        for name in ("server", "x-powered-by"):
            if name in headers:
                del headers[name]

        for name, value in BASE_HEADERS.items():
            headers[name] = value
        headers.setdefault("Content-Security-Policy", "frame-ancestors 'none'")

        if request.url.path.startswith(NO_STORE_PREFIXES):
            headers["Cache-Control"] = "no-store"

        # destinations never see which short link sent the visitor
        if request.url.path.startswith("/r/"):
            headers["Referrer-Policy"] = "no-referrer"

        headers["Strict-Transport-Security"] = HSTS

        return response
