"""
FastAPI glue for the security decision layer.

- get_client_ip: caller address for audit events, privacy-masked
- get_correlation_id: request correlation id for tying events together
- ensure_authorized: turn any denial into the same 404 response
"""

import re
from uuid import uuid4

from fastapi import HTTPException, Request, status

from ..core.models import PUBLIC_DENIAL_MESSAGE, AuthorizationResult
from ..core.sanitizer import PLACEHOLDER, sanitize_ip_address

CORRELATION_HEADER = "x-correlation-id"
_CORRELATION_RE = re.compile(r"[A-Za-z0-9\-_.]{8,64}")


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP from a request and mask it for logging.

    Handles X-Forwarded-For (reverse proxy), CF-Connecting-IP (Cloudflare)
    and direct connections. Unparsable values yield ``"unknown"``.

    Args:
        request: FastAPI request object

    Returns:
        Masked client IP address
    """
    # Take first IP in list (original client)
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return sanitize_ip_address(forwarded_for.split(",")[0])

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return sanitize_ip_address(cf_ip)

    if request.client:
        return sanitize_ip_address(request.client.host)

    return PLACEHOLDER


def get_correlation_id(request: Request) -> str:
    """Caller-supplied correlation id when well formed, otherwise a new one."""
    supplied = request.headers.get(CORRELATION_HEADER, "")
    if _CORRELATION_RE.fullmatch(supplied):
        return supplied
    return uuid4().hex


def ensure_authorized(result: AuthorizationResult) -> AuthorizationResult:
    """
    Raise the uniform not-found response for every denial kind.

    A missing resource, someone else's resource, a bad identity and a store
    outage all produce the same status code and body.

    Raises:
        HTTPException: 404 with a generic detail when not authorized.
    """
    if not result.is_authorized:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=PUBLIC_DENIAL_MESSAGE,
        )
    return result
