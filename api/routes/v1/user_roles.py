"""
api/routes/v1/user_roles.py -- User directory and role administration routes.

Routes:
  GET    /user-roles                        -- caller's own role (authenticated)
  GET    /user-roles?all=true               -- every active user (agent)
  GET    /user-roles?email=                 -- one user (agent)
  POST   /user-roles                        -- create a user (agent)
  PUT    /user-roles                        -- partial update (agent; admin for admin roles)
  DELETE /user-roles/{email}                -- deactivate (admin; self always 400)
  GET    /user-roles/impersonate/{email}    -- view as another user (admin)

Role rules on top of the route levels:
  - granting the admin role, or changing a user who is already admin,
    needs the ADMIN level;
  - nobody can deactivate their own account;
  - admins cannot be impersonated. Every successful impersonation writes an
    AuditLog row and an INFO log line; refused attempts log a WARNING.

Email path parameters arrive percent-decoded and are matched case-insensitively.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, read_limit, write_limit
from api.models import (
    AuditRecord,
    Envelope,
    Impersonation,
    OwnRole,
    UserCreateBody,
    UserCreated,
    UserDeactivated,
    UserRecord,
    UserUpdateBody,
    UserUpdated,
)
from auth.dependencies import escalate, require
from auth.models import AccessLevel, AuditEntry, Principal, Role, User
from auth.store import UserStore, UserUpdate
from core.config import get_settings
from core.db import now_iso
from core.errors import ConflictError, Forbidden, InternalError, NotFound, StoreObjectMissing, ValidationError
from core.validators import validate_email, validate_user_create, validate_user_update

logger = logging.getLogger("servicedesk.auth")

router = APIRouter()

_authenticated = require(AccessLevel.AUTHENTICATED)


def _find_user(store: UserStore, email: str) -> User:
    user = store.get_by_email(email.strip())
    if user is None:
        raise NotFound("User not found", details={"email": email})
    return user


# ---------------------------------------------------------------------------
# GET /user-roles
# ---------------------------------------------------------------------------


def _own_role(store: UserStore, principal: Principal) -> OwnRole:
    identity = principal.identity
    try:
        role = store.get_role_for(identity.email, identity.external_id)
        user = store.get_by_email(identity.email) if identity.email else None
    except StoreObjectMissing as exc:
        settings = get_settings()
        if not settings.dev_mode:
            logger.error("User directory unavailable: %s", exc)
            raise InternalError("User directory unavailable") from exc
        logger.warning("User directory unavailable (%s); reporting development role", exc)
        role, user = Role.parse(settings.dev_identity_role), None

    effective = role or Role.USER
    return OwnRole(
        user_email=identity.email,
        user_object_id=identity.external_id,
        display_name=user.display_name if user else None,
        role=effective,
        roles=[role] if role else [],
        is_agent=effective.satisfies(AccessLevel.AGENT),
        is_admin=effective is Role.ADMIN,
        registered=role is not None,
    )


@router.get("/user-roles")
@limiter.limit(read_limit)
def get_user_roles(
    request: Request,
    all_users: bool = Query(default=False, alias="all"),
    email: Optional[str] = None,
    principal: Principal = Depends(_authenticated),
) -> Envelope[Any]:
    """Return the caller's role, or (agents only) the full directory or one user."""
    store: UserStore = request.app.state.user_store
    if not all_users and not email:
        return Envelope(data=_own_role(store, principal))

    escalate(request, principal, AccessLevel.AGENT)
    if email:
        return Envelope(data=UserRecord.from_user(_find_user(store, email)))
    return Envelope(data=[UserRecord.from_user(u) for u in store.list_users()])


# ---------------------------------------------------------------------------
# POST /user-roles -- create
# ---------------------------------------------------------------------------


@router.post("/user-roles", status_code=201)
@limiter.limit(write_limit)
def create_user(
    request: Request,
    body: UserCreateBody,
    principal: Principal = Depends(require(AccessLevel.AGENT)),
) -> Envelope[UserCreated]:
    """Create a directory user. Agents may also be placed in assignment groups."""
    store: UserStore = request.app.state.user_store
    fields = validate_user_create(body.model_dump(by_alias=True))
    role = Role(fields["role"])
    if role is Role.ADMIN:
        escalate(request, principal, AccessLevel.ADMIN)

    if store.email_exists(fields["email"]):
        raise ConflictError("A user with this email already exists", details={"email": fields["email"]})

    group_ids: list[int] = []
    if role is Role.AGENT:
        group_ids = list(dict.fromkeys(body.assignment_groups))
        known = store.active_group_ids()
        unknown = [g for g in group_ids if g not in known]
        if unknown:
            raise ValidationError("Unknown assignment group", details={"assignmentGroups": unknown})
    elif body.assignment_groups:
        logger.info("Ignoring assignment groups for %s user %s", role.value, fields["email"])

    user = User(
        email=fields["email"],
        display_name=fields["displayName"],
        role=role,
        external_id=fields.get("externalId"),
        first_name=fields.get("firstName"),
        last_name=fields.get("lastName"),
        department=fields.get("department"),
        job_title=fields.get("jobTitle"),
    )
    try:
        user_id, added = store.create_user(
            user,
            created_by=principal.email,
            group_ids=group_ids,
            atomic=get_settings().atomic_user_writes,
        )
    except IntegrityError as exc:
        raise ConflictError("A user with this email already exists", details={"email": user.email}) from exc

    logger.info("User %s (%s, id=%d) created by %s", user.email, role.value, user_id, principal.email)
    return Envelope(
        data=UserCreated(
            email=user.email,
            display_name=user.display_name,
            role=role,
            assignment_groups=added,
            assigned_by=principal.email,
            assigned_date=now_iso(),
        ),
        message="User created successfully",
    )


# ---------------------------------------------------------------------------
# PUT /user-roles -- partial update
# ---------------------------------------------------------------------------


@router.put("/user-roles")
@limiter.limit(write_limit)
def update_user(
    request: Request,
    body: UserUpdateBody,
    principal: Principal = Depends(require(AccessLevel.AGENT)),
) -> Envelope[UserUpdated]:
    """Update only the fields present in the body on the user named by targetUserEmail."""
    store: UserStore = request.app.state.user_store
    fields = validate_user_update(body.present_fields())
    if "displayName" in fields:
        fields["displayName"] = fields["displayName"].strip()

    target = _find_user(store, fields["targetUserEmail"])
    new_role = Role(fields["newRole"]) if "newRole" in fields else None
    if new_role is Role.ADMIN or target.role is Role.ADMIN:
        escalate(request, principal, AccessLevel.ADMIN)

    update = UserUpdate.from_fields(fields)
    try:
        updated = store.update_user(target.email, update, modified_by=principal.email)
    except IntegrityError as exc:
        raise ConflictError("External ID is already assigned to another user") from exc
    if not updated:
        raise NotFound("User not found", details={"email": target.email})

    changed = sorted(name for name in fields if name != "targetUserEmail")
    logger.info("User %s updated by %s: %s", target.email, principal.email, ", ".join(changed))
    message = f"User role updated to {new_role.value}" if new_role else "User updated successfully"
    return Envelope(
        data=UserUpdated(
            target_user_email=target.email,
            updated_fields=changed,
            new_role=new_role,
            modified_by=principal.email,
            modified_date=now_iso(),
        ),
        message=message,
    )


# ---------------------------------------------------------------------------
# DELETE /user-roles/{email} -- deactivate
# ---------------------------------------------------------------------------


@router.delete("/user-roles/{email}")
@limiter.limit(write_limit)
def deactivate_user(
    request: Request,
    email: str,
    principal: Principal = Depends(_authenticated),
) -> Envelope[UserDeactivated]:
    """Soft-delete a user. Callers can never deactivate themselves, whatever their role."""
    target_email = validate_email(email)
    if target_email == principal.email.lower():
        raise ValidationError("You cannot deactivate your own account")
    principal = escalate(request, principal, AccessLevel.ADMIN)

    store: UserStore = request.app.state.user_store
    target = _find_user(store, target_email)
    if principal.identity.external_id and target.external_id == principal.identity.external_id:
        raise ValidationError("You cannot deactivate your own account")

    if not store.deactivate_user(target.email, modified_by=principal.email):
        raise NotFound("User not found", details={"email": target_email})

    logger.info("User %s deactivated by %s", target.email, principal.email)
    return Envelope(
        data=UserDeactivated(email=target.email, deactivated_by=principal.email, deactivated_date=now_iso()),
        message="User deactivated successfully",
    )


# ---------------------------------------------------------------------------
# GET /user-roles/impersonate/{email}
# ---------------------------------------------------------------------------


@router.get("/user-roles/impersonate/{email}")
@limiter.limit(write_limit)
def impersonate_user(
    request: Request,
    email: str,
    principal: Principal = Depends(_authenticated),
) -> Envelope[Impersonation]:
    """Return another user's effective role so an admin can view the app as them."""
    try:
        principal = escalate(request, principal, AccessLevel.ADMIN)
    except Forbidden:
        logger.warning("Impersonation of %s refused: %s is not an admin", email, principal.email)
        raise

    store: UserStore = request.app.state.user_store
    target = _find_user(store, email)
    if target.role is Role.ADMIN:
        logger.warning("Impersonation of admin %s refused for %s", target.email, principal.email)
        raise Forbidden("Cannot impersonate admin users")

    timestamp = now_iso()
    store.record_audit(
        AuditEntry(
            action="impersonate",
            actor_email=principal.email,
            target_email=target.email,
            created_date=timestamp,
            detail=f"role={target.role.value}",
        )
    )
    logger.info("Impersonation: %s is viewing as %s (%s)", principal.email, target.email, target.role.value)
    return Envelope(
        data=Impersonation(
            user_email=target.email,
            user_object_id=target.external_id,
            display_name=target.display_name,
            role=target.role,
            is_agent=target.role.satisfies(AccessLevel.AGENT),
            is_admin=False,
            audit=AuditRecord(actor=principal.email, target=target.email, timestamp=timestamp),
        )
    )
