"""
API request and response models for the ServiceDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in cmdb/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Naming on the wire follows what the web front end already consumes:
  configuration items, CI types and assignment groups use the database's
  PascalCase column names (CiId, CiName, SupportGroup ...);
  user-role payloads use camelCase (userEmail, displayName, isAgent ...).
Both are produced with alias generators so the Python side stays snake_case.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel, to_pascal

from auth.models import AccessLevel, AssignmentGroup, Role, User
from cmdb.models import CiType, ConfigurationItem

T = TypeVar("T")

# Request bodies: accept camelCase (what the front end sends) or snake_case.
_CAMEL_IN = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")
_CAMEL_OUT = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)
_PASCAL_OUT = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class Envelope(BaseModel, Generic[T]):
    """Success envelope: {"success": true, "data": ..., "message"?: ...}."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

    @model_serializer(mode="wrap")
    def _omit_empty_message(self, handler):
        out = handler(self)
        if out.get("message") is None:
            out.pop("message", None)
        return out


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: str
    code: str
    details: Any = None


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


# ---------------------------------------------------------------------------
# Configuration items -- request
# ---------------------------------------------------------------------------


class CiBody(BaseModel):
    """Request body for POST and PUT /api/configuration-items.

    Everything is optional at the schema level: required-field and enumeration
    rules are business validation (core/validators.py) so they produce the
    same 400 messages the UI already displays.
    """

    model_config = _CAMEL_IN

    ci_id: Optional[int] = None  # PUT only, when the id is not in the path
    ci_name: Optional[str] = None
    ci_type: Optional[str] = None
    sub_type: Optional[str] = None
    status: Optional[str] = None
    environment: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    version: Optional[str] = None
    vendor: Optional[str] = None
    support_group_id: Optional[int] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    attributes: Any = None
    serial_number: Optional[str] = None
    asset_tag: Optional[str] = None
    purchase_date: Optional[str] = None
    expiry_date: Optional[str] = None
    cost: Optional[float] = None

    def item_fields(self) -> dict[str, Any]:
        """Return the item fields keyed by their camelCase request names."""
        return self.model_dump(by_alias=True, exclude={"ci_id"})


# ---------------------------------------------------------------------------
# Configuration items -- response
# ---------------------------------------------------------------------------


class CiSummary(BaseModel):
    """One row of the CI list. Omits attributes, asset and cost detail."""

    model_config = _PASCAL_OUT

    ci_id: int
    ci_name: str
    ci_type: str
    sub_type: Optional[str] = None
    status: str
    environment: str
    location: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    version: Optional[str] = None
    vendor: Optional[str] = None
    support_group_id: Optional[int] = None
    support_group: Optional[str] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    created_date: str
    created_by: Optional[str] = None
    modified_date: Optional[str] = None
    modified_by: Optional[str] = None

    @classmethod
    def from_item(cls, item: ConfigurationItem) -> CiSummary:
        return cls(ci_id=item.id, **_item_values(item, cls))


class CiRecord(CiSummary):
    """Full CI detail returned by GET /configuration-items/{id}."""

    attributes: Optional[dict] = None
    serial_number: Optional[str] = None
    asset_tag: Optional[str] = None
    purchase_date: Optional[str] = None
    expiry_date: Optional[str] = None
    cost: Optional[float] = None


class CiKeyFields(BaseModel):
    """Projection returned after a create or replace."""

    model_config = _PASCAL_OUT

    ci_id: int
    ci_name: str
    ci_type: str
    environment: str
    status: str

    @classmethod
    def from_item(cls, item: ConfigurationItem) -> CiKeyFields:
        return cls(
            ci_id=item.id,
            ci_name=item.ci_name,
            ci_type=item.ci_type,
            environment=item.environment,
            status=item.status,
        )


class CiTypeRecord(BaseModel):
    model_config = _PASCAL_OUT

    type_id: int
    type_name: str
    category: Optional[str] = None
    icon: Optional[str] = None

    @classmethod
    def from_type(cls, ci_type: CiType) -> CiTypeRecord:
        return cls(type_id=ci_type.id, type_name=ci_type.type_name, category=ci_type.category, icon=ci_type.icon)


def _item_values(item: ConfigurationItem, model: type[BaseModel]) -> dict[str, Any]:
    names = set(model.model_fields) - {"ci_id"}
    return {name: getattr(item, name) for name in names}


# ---------------------------------------------------------------------------
# Assignment groups
# ---------------------------------------------------------------------------


class AssignmentGroupRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    assignment_group_id: int = Field(alias="AssignmentGroupID")
    group_name: str = Field(alias="GroupName")
    description: Optional[str] = Field(default=None, alias="Description")
    is_active: bool = Field(default=True, alias="IsActive")

    @classmethod
    def from_group(cls, group: AssignmentGroup) -> AssignmentGroupRecord:
        return cls(
            assignment_group_id=group.id,
            group_name=group.group_name,
            description=group.description,
            is_active=group.is_active,
        )


# ---------------------------------------------------------------------------
# User roles -- request
# ---------------------------------------------------------------------------


class UserCreateBody(BaseModel):
    """Request body for POST /api/user-roles."""

    model_config = _CAMEL_IN

    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[str] = None
    assignment_groups: list[int] = Field(default_factory=list, max_length=50)
    external_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None


class UserUpdateBody(BaseModel):
    """Request body for PUT /api/user-roles.

    Only keys the client actually sent are applied; route code reads them
    with model_dump(exclude_unset=True).
    """

    model_config = _CAMEL_IN

    target_user_email: Optional[str] = None
    new_role: Optional[str] = None
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    external_id: Optional[str] = None

    def present_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


# ---------------------------------------------------------------------------
# User roles -- response
# ---------------------------------------------------------------------------


class UserRecord(BaseModel):
    """A directory user as returned by GET /api/user-roles."""

    model_config = _CAMEL_OUT

    user_email: str
    user_object_id: Optional[str] = None
    display_name: str
    role: Role
    is_agent: bool
    is_admin: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    assignment_groups: list[int] = Field(default_factory=list)
    created_date: Optional[str] = None
    created_by: Optional[str] = None
    modified_date: Optional[str] = None
    modified_by: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> UserRecord:
        return cls(
            user_email=user.email,
            user_object_id=user.external_id,
            display_name=user.display_name,
            role=user.role,
            is_agent=user.role.satisfies(AccessLevel.AGENT),
            is_admin=user.role is Role.ADMIN,
            first_name=user.first_name,
            last_name=user.last_name,
            department=user.department,
            job_title=user.job_title,
            assignment_groups=user.assignment_groups,
            created_date=user.created_date,
            created_by=user.created_by,
            modified_date=user.modified_date,
            modified_by=user.modified_by,
        )


class OwnRole(BaseModel):
    """The caller's own role, returned by GET /api/user-roles without filters.

    registered is False when the caller has no active directory entry; the
    role then defaults to user.
    """

    model_config = _CAMEL_OUT

    user_email: str
    user_object_id: str = ""
    display_name: Optional[str] = None
    role: Role
    roles: list[Role] = Field(default_factory=list)
    is_agent: bool
    is_admin: bool
    registered: bool


class UserCreated(BaseModel):
    model_config = _CAMEL_OUT

    email: str
    display_name: str
    role: Role
    assignment_groups: list[int] = Field(default_factory=list)
    assigned_by: str
    assigned_date: str


class UserUpdated(BaseModel):
    model_config = _CAMEL_OUT

    target_user_email: str
    updated_fields: list[str]
    new_role: Optional[Role] = None
    modified_by: str
    modified_date: str


class UserDeactivated(BaseModel):
    model_config = _CAMEL_OUT

    email: str
    deactivated_by: str
    deactivated_date: str


class AuditRecord(BaseModel):
    model_config = _CAMEL_OUT

    actor: str
    target: str
    timestamp: str


class Impersonation(BaseModel):
    """Response for GET /api/user-roles/impersonate/{email}."""

    model_config = _CAMEL_OUT

    user_email: str
    user_object_id: Optional[str] = None
    display_name: str
    role: Role
    is_agent: bool
    is_admin: bool
    audit: AuditRecord
