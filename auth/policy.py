"""
auth/policy.py -- Layered authorization policy.

    NONE           anyone, no identity needed
    AUTHENTICATED  a resolved identity, no directory lookup
    AGENT          active user with role agent or admin
    ADMIN          active user with role admin

AGENT and ADMIN look the caller up in the Users table by email
(case-insensitive) or external id. A missing Users table or column is a
deployment problem; in development mode it is tolerated (implicitly
authorized, logged as a warning) so a fresh checkout works before the schema
exists. Every other store failure is a 500.

Layer rule: no imports from api/ or cmdb/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AccessLevel, Identity, Principal
from auth.store import UserStore
from core.config import Settings
from core.errors import Forbidden, InternalError, StoreObjectMissing

logger = logging.getLogger("servicedesk.auth")

_DENIED = {
    AccessLevel.AGENT: "Agent access required",
    AccessLevel.ADMIN: "Admin access required",
}


def authorize(identity: Identity, level: AccessLevel, user_store: UserStore, settings: Settings) -> Principal:
    """Check identity against level and return the authorized Principal.

    Raises Forbidden when the caller lacks the role, InternalError when the
    user directory cannot be queried.
    """
    if level <= AccessLevel.AUTHENTICATED:
        return Principal(identity=identity)

    try:
        role = user_store.get_role_for(identity.email, identity.external_id)
    except StoreObjectMissing as exc:
        if settings.dev_mode:
            logger.warning(
                "User directory unavailable (%s); development mode grants %s to %s",
                exc,
                level.name,
                identity.email,
            )
            return Principal(identity=identity)
        logger.error("User directory unavailable: %s", exc)
        raise InternalError("Authorization check failed") from exc
    except SQLAlchemyError as exc:
        logger.exception("Role lookup failed for %s", identity.email)
        raise InternalError("Authorization check failed") from exc

    if role is None or not role.satisfies(level):
        raise Forbidden(_DENIED[level])
    return Principal(identity=identity, role=role)
