"""Security headers, origin policy and request correlation."""
from __future__ import annotations

import re
from typing import Dict, Iterable, Pattern

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .logging_config import CORRELATION_HEADER, get_correlation_id

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "; ".join(
        [
            "default-src 'self'",
            "style-src 'self' 'unsafe-inline'",
            "script-src 'self'",
            "img-src 'self' data:",
            "connect-src 'self'",
        ]
    ),
}


class SecurityPolicyMiddleware(BaseHTTPMiddleware):
    """Adds security headers everywhere and gates cross-origin requests."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        allowed_origins: Iterable[str],
        preview_pattern: str,
    ) -> None:
        super().__init__(app)
        self.allowed_origins = frozenset(allowed_origins)
        self.preview_pattern: Pattern[str] = re.compile(preview_pattern, re.IGNORECASE)

    def is_allowed_origin(self, origin: str) -> bool:
        if origin in self.allowed_origins:
            return True
        return bool(self.preview_pattern.match(origin))

    def _cors_headers(self, request: Request, origin: str) -> Dict[str, str]:
        requested = request.headers.get("access-control-request-headers")
        return {
            "Access-Control-Allow-Origin": origin,
            "Vary": "Origin",
            "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
            "Access-Control-Allow-Headers": requested or "Content-Type, Authorization",
            "Access-Control-Allow-Credentials": "true",
        }

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")
        own_origin = f"{request.url.scheme}://{request.url.netloc}"
        extra_headers = dict(SECURITY_HEADERS)

        if origin and origin != own_origin:
            if not self.is_allowed_origin(origin):
                return JSONResponse(
                    {"error": "Forbidden origin"}, status_code=403, headers=extra_headers
                )
            extra_headers.update(self._cors_headers(request, origin))
            if request.method == "OPTIONS":
                return Response(status_code=204, headers=extra_headers)

        response = await call_next(request)
        for key, value in extra_headers.items():
            if key == "Vary" and "vary" in response.headers:
                response.headers["Vary"] = f"{response.headers['vary']}, {value}"
            else:
                response.headers[key] = value
        return response


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id to each request and echoes it on the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = get_correlation_id(request.headers)
        request.state.correlation_id = correlation_id
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
