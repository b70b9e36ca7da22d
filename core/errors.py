"""
core/errors.py -- Error taxonomy shared by the stores, the policy and the API.

Every error a request can end with is one of these classes. Each carries the
HTTP status and a machine-readable code; api/main.py turns them into the
standard {"success": false, "error": ...} envelope in a single handler, so
route code raises and never builds error responses itself.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cmdb/.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(ServiceError):
    """The identity header was present but could not be decoded."""

    status_code = 401
    code = "authentication_error"


class AuthenticationRequired(ServiceError):
    """No identity header and development mode is off."""

    status_code = 401
    code = "authentication_required"


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"


class ConflictError(ServiceError):
    """Duplicate record, or a delete blocked by existing references."""

    status_code = 400
    code = "conflict"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class MethodNotAllowed(ServiceError):
    status_code = 405
    code = "method_not_allowed"


class InternalError(ServiceError):
    status_code = 500
    code = "internal_error"


class StoreObjectMissing(Exception):
    """Raised by a store when the database reports a missing table or column.

    Kept outside the ServiceError hierarchy: the authorization policy decides
    whether it means "implicitly authorized" (development mode) or a 500.
    """
