"""Rate limiting middleware for every inbound request.

This module wires the admission controller into the HTTP layer.

Design goals:
- Minimal coupling: the controller is read from ``app.state``, not a module
  global, so every app instance owns its own counters.
- Per-client keys: first X-Forwarded-For hop, then X-Real-IP, then the peer
  address, then a shared "unknown" bucket.
- Denied requests short-circuit with 429; admitted requests carry the same
  quota headers on their eventual response.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import AdmissionDecision
from app.core.admission import UNKNOWN_CLIENT_KEY, AdmissionController
from app.core.config import RateLimitSettings

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


def get_client_key(request: Request, *, trust_forwarded: bool = True) -> str:
    """Derive the rate limit identity for a request.

    Args:
        request: Incoming request.
        trust_forwarded: Whether proxy headers may be used.

    Returns:
        str: Client IP address or the ``"unknown"`` sentinel.
    """

    if trust_forwarded:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT_KEY


def _hash_client_key(key: str) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def format_reset(reset_at_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC timestamp."""
    moment = datetime.fromtimestamp(reset_at_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_rate_limit_headers(decision: AdmissionDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": format_reset(decision.reset_at_ms),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def build_rejection(decision: AdmissionDecision, *, include_headers: bool = True) -> JSONResponse:
    """Translate a denied decision into a 429 response."""
    headers = build_rate_limit_headers(decision) if include_headers else None
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": RATE_LIMIT_MESSAGE, "retryAfter": decision.retry_after_seconds},
        headers=headers,
    )


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing per-client admission control.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: A 429 rejection, or the downstream response with
            X-RateLimit-* headers attached.
    """

    cfg: RateLimitSettings = request.app.state.settings.rate_limit
    if not cfg.enabled:
        return await call_next(request)

    controller: AdmissionController = request.app.state.admission_controller
    client_key = get_client_key(request, trust_forwarded=cfg.trust_forwarded_headers)
    decision = controller.evaluate(client_key, request.url.path)

    if not decision.allowed:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_client_key(client_key),
                "policy": decision.policy,
                "limit": decision.limit,
                "path": request.url.path,
                "retry_after_s": decision.retry_after_seconds,
            },
        )
        return build_rejection(decision, include_headers=cfg.include_headers)

    logger.debug(
        "rate_limit.allowed",
        extra={
            "key_hash": _hash_client_key(client_key),
            "policy": decision.policy,
            "remaining": decision.remaining,
        },
    )

    response: Response = await call_next(request)
    if cfg.include_headers:
        response.headers.update(build_rate_limit_headers(decision))
    return response
