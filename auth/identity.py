"""
auth/identity.py -- Resolve the caller's identity from the principal header.

The front-end host authenticates users and forwards the result as a
base64-encoded JSON document in a request header (x-ms-client-principal by
default):

    {"userDetails": "ada@example.com", "userId": "8f0c...", "userRoles": [...]}

Only userDetails (email) and userId (external id) are used. Roles claimed in
the header are ignored; roles come from the Users table via auth/policy.py.

Layer rule: no imports from api/ or cmdb/.
"""

from __future__ import annotations

import base64
import binascii
import json

from auth.models import Identity
from core.config import Settings
from core.errors import AuthenticationError, AuthenticationRequired


def decode_principal(header_value: str) -> Identity:
    """Decode a principal header value into an Identity.

    Raises AuthenticationError if the value is not base64 JSON describing
    an object with at least one of userDetails / userId.
    """
    try:
        payload = json.loads(base64.b64decode(header_value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise AuthenticationError("Invalid authentication header") from exc

    if not isinstance(payload, dict):
        raise AuthenticationError("Invalid authentication header")

    email = payload.get("userDetails") or ""
    external_id = payload.get("userId") or ""
    if not isinstance(email, str) or not isinstance(external_id, str):
        raise AuthenticationError("Invalid authentication header")
    if not email and not external_id:
        raise AuthenticationError("Authentication header carries no user")

    return Identity(email=email.strip(), external_id=external_id.strip())


def resolve_identity(header_value: str | None, settings: Settings) -> Identity:
    """Return the caller's Identity.

    Header present -> decoded identity. Header absent -> the configured
    development identity when DEV_MODE is on, AuthenticationRequired otherwise.
    """
    if header_value:
        return decode_principal(header_value)
    if settings.dev_mode:
        return Identity(
            email=settings.dev_identity_email,
            external_id=settings.dev_identity_id,
            is_development=True,
        )
    raise AuthenticationRequired("Authentication required")
