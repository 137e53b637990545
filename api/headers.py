"""
api/headers.py -- Security headers added to every response.

HSTS is only sent in production; sending it from a plain-HTTP dev server would
pin browsers to HTTPS for localhost.
"""

from __future__ import annotations

from starlette.responses import Response

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": (
        "default-src 'self'; img-src 'self' data: https:; font-src 'self' data:; "
        "connect-src 'self'; frame-ancestors 'none';"
    ),
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


def apply_security_headers(response: Response, production: bool) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if production:
        response.headers["Strict-Transport-Security"] = HSTS_VALUE
    return response
