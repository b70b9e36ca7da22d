"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

require(level) builds a dependency that resolves the caller from the
principal header and runs the authorization policy for that level:

    @router.post("/configuration-items")
    def create(principal: Principal = Depends(require(AccessLevel.AUTHENTICATED))): ...

Routes whose required level depends on the request (GET /user-roles with
?all=true needs AGENT) take the AUTHENTICATED principal and call escalate().

Errors are raised as core.errors classes; api/main.py renders them.

Layer rule: no imports from api/ or cmdb/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from auth.identity import resolve_identity
from auth.models import AccessLevel, Principal
from auth.policy import authorize
from core.config import get_settings

logger = logging.getLogger("servicedesk.auth")


def get_principal(request: Request, level: AccessLevel) -> Principal | None:
    """Resolve and authorize the caller. Returns None only for level NONE
    when no principal header was sent and development mode is off."""
    settings = get_settings()
    header_value = request.headers.get(settings.principal_header)
    if level == AccessLevel.NONE and not header_value and not settings.dev_mode:
        return None
    identity = resolve_identity(header_value, settings)
    if identity.is_development:
        logger.info(
            "%s %s without %s header; running as %s",
            request.method,
            request.url.path,
            settings.principal_header,
            identity.email,
        )
    return authorize(identity, level, request.app.state.user_store, settings)


def require(level: AccessLevel) -> Callable[[Request], Principal | None]:
    """Return a dependency enforcing level."""

    def dependency(request: Request) -> Principal | None:
        return get_principal(request, level)

    dependency.__name__ = f"require_{level.name.lower()}"
    return dependency


def escalate(request: Request, principal: Principal, level: AccessLevel) -> Principal:
    """Re-check an already authenticated principal against a higher level."""
    if principal.role is not None and principal.role.satisfies(level):
        return principal
    return authorize(principal.identity, level, request.app.state.user_store, get_settings())
