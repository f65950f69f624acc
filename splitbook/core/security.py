"""Security response headers applied to every response."""

from __future__ import annotations

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
}
HSTS_VALUE = "max-age=15552000; includeSubDomains"


async def security_headers_middleware(request, call_next):  # type: ignore
    response = await call_next(request)
    for name, value in BASE_HEADERS.items():
        response.headers.setdefault(name, value)
    settings = request.app.state.settings
    if settings.is_production:
        response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
    return response
