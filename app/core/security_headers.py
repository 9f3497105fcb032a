"""Security response headers and HTTPS enforcement.

Two middlewares: header stamping wraps the rate limiter so rejections are
hardened too, while the HTTPS redirect sits inside it so redirects are still
counted.

Usage:
    app.middleware("http")(https_redirect_middleware)
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(security_headers_middleware)
"""

from __future__ import annotations

from fastapi import Request, Response, status
from fastapi.responses import RedirectResponse

from app.core.config import Settings

PERMISSIONS_POLICY = (
    "geolocation=(), microphone=(), camera=(), payment=(), usb=(), "
    "accelerometer=(), gyroscope=(), magnetometer=()"
)


def build_security_headers(cfg: Settings) -> dict[str, str]:
    return {
        "Content-Security-Policy": cfg.security.content_security_policy,
        "Strict-Transport-Security": (
            f"max-age={cfg.security.hsts_max_age_seconds}; includeSubDomains; preload"
        ),
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "X-XSS-Protection": "1; mode=block",
        "Permissions-Policy": PERMISSIONS_POLICY,
        "Server": cfg.security.server_header,
    }


def _request_scheme(request: Request) -> str:
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip().lower()
    return request.url.scheme


def https_redirect_url(request: Request) -> str:
    """Same host, path and query as the request, on https."""
    return str(request.url.replace(scheme="https"))


async def https_redirect_middleware(request: Request, call_next) -> Response:
    """Redirect plain HTTP to https when running in production.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: A 308 redirect to https, or the downstream response.
    """

    cfg: Settings = request.app.state.settings

    if (
        cfg.security.enforce_https
        and cfg.app.environment == "production"
        and _request_scheme(request) == "http"
    ):
        return RedirectResponse(
            https_redirect_url(request),
            status_code=status.HTTP_308_PERMANENT_REDIRECT,
        )

    return await call_next(request)


async def security_headers_middleware(request: Request, call_next) -> Response:
    """Set security headers on every response, 429 and 308 included."""

    cfg: Settings = request.app.state.settings

    response: Response = await call_next(request)
    if cfg.security.headers_enabled:
        # Assignment replaces any upstream Server header.
        for name, value in build_security_headers(cfg).items():
            response.headers[name] = value
    return response
