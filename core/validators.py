"""
core/validators.py -- Field validation for configuration items and users.

Each validator takes the raw request fields (already parsed from JSON by the
API models, but not yet checked for business rules), applies defaults, and
either returns the cleaned values or raises ValidationError naming the first
problem it finds. Validation always runs before any statement is sent to the
database.

Layer rule: no imports from api/, auth/, or cmdb/.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from core.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ROLES = ("user", "agent", "admin")

CI_STATUSES = ("Active", "Inactive", "Decommissioned", "Planned", "Maintenance")
CI_ENVIRONMENTS = ("Production", "Staging", "Development", "Test", "DR")

DEFAULT_CI_STATUS = "Active"
DEFAULT_CI_ENVIRONMENT = "Production"
DEFAULT_ROLE = "user"

# (request field, human label) in the order they are reported when missing.
_CI_REQUIRED = (("ciName", "CI name"), ("ciType", "CI type"))


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_ci_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate a configuration item body for create or full replace.

    Requires ciName and ciType. Blank optional values collapse to None;
    status and environment fall back to their defaults and must otherwise be
    members of their enumerations. Returns a new dict keyed by request field.
    """
    for name, label in _CI_REQUIRED:
        if _blank(fields.get(name)):
            raise ValidationError(f"{label} is required", details={"field": name})

    cleaned = {k: (None if _blank(v) else v) for k, v in fields.items()}
    cleaned["ciName"] = cleaned["ciName"].strip()
    cleaned["ciType"] = cleaned["ciType"].strip()

    status = cleaned.get("status") or DEFAULT_CI_STATUS
    if status not in CI_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(CI_STATUSES)}",
            details={"field": "status"},
        )
    cleaned["status"] = status

    environment = cleaned.get("environment") or DEFAULT_CI_ENVIRONMENT
    if environment not in CI_ENVIRONMENTS:
        raise ValidationError(
            f"Environment must be one of: {', '.join(CI_ENVIRONMENTS)}",
            details={"field": "environment"},
        )
    cleaned["environment"] = environment

    attributes = cleaned.get("attributes")
    if attributes is not None and not isinstance(attributes, dict):
        raise ValidationError("Attributes must be a JSON object", details={"field": "attributes"})

    return cleaned


def validate_email(email: Optional[str]) -> str:
    """Return the trimmed, lower-cased email or raise ValidationError."""
    if _blank(email):
        raise ValidationError("Email is required", details={"field": "email"})
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format", details={"field": "email"})
    return normalized


def validate_role(role: Optional[str], field: str = "role") -> str:
    """Return the canonical lower-case role name or raise ValidationError."""
    normalized = (role or "").strip().lower()
    if normalized not in ROLES:
        raise ValidationError(
            f"Role must be one of: {', '.join(ROLES)}",
            details={"field": field},
        )
    return normalized


def validate_user_create(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate a new-user body.

    email and displayName are required; role defaults to "user". The
    duplicate-email check needs the store and lives in the route.
    """
    if _blank(fields.get("email")) or _blank(fields.get("displayName")):
        missing = "email" if _blank(fields.get("email")) else "displayName"
        raise ValidationError("Email and display name are required", details={"field": missing})

    cleaned = dict(fields)
    cleaned["email"] = validate_email(fields["email"])
    cleaned["displayName"] = fields["displayName"].strip()
    cleaned["role"] = validate_role(fields.get("role") or DEFAULT_ROLE)
    return cleaned


def validate_user_update(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial user update.

    fields holds only the keys present in the request body. targetUserEmail
    identifies the row and is required; everything else is optional but at
    least one updatable field must be supplied.
    """
    cleaned = dict(fields)
    cleaned["targetUserEmail"] = validate_email(fields.get("targetUserEmail"))
    if cleaned.get("newRole") is None:
        cleaned.pop("newRole", None)
    else:
        cleaned["newRole"] = validate_role(cleaned["newRole"], field="newRole")
    if "displayName" in cleaned and _blank(cleaned["displayName"]):
        raise ValidationError("Display name cannot be empty", details={"field": "displayName"})
    if len(cleaned) == 1:
        raise ValidationError("No fields to update")
    return cleaned
