"""
auth/models.py -- Domain dataclasses for identities, users and roles.

Pattern: Data class (pure data container). Mirrors cmdb/models.py --
dataclasses own domain shape; stores and routes do the work. Role is the one
exception that carries behaviour: the capability ordering lives next to the
enum so no call site repeats it.

Layer rule: no imports from api/ or cmdb/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class AccessLevel(IntEnum):
    """Capability required by an endpoint, weakest first."""

    NONE = 0
    AUTHENTICATED = 1
    AGENT = 2
    ADMIN = 3


class Role(str, Enum):
    """Stored user role. admin ⊇ agent ⊇ user."""

    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | None) -> Role:
        """Normalize a stored role string (any case) to a Role.

        Unknown or empty values map to USER, the least-privileged role.
        """
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.USER

    def satisfies(self, level: AccessLevel) -> bool:
        if level >= AccessLevel.ADMIN:
            return self is Role.ADMIN
        if level == AccessLevel.AGENT:
            return self in (Role.AGENT, Role.ADMIN)
        return True


@dataclass(frozen=True)
class Identity:
    """The caller as described by the principal header.

    is_development is True only for the fixed fallback identity substituted
    when DEV_MODE is on and no header was sent.
    """

    email: str
    external_id: str = ""
    is_development: bool = False


@dataclass(frozen=True)
class Principal:
    """An identity that passed the authorization policy.

    role is None when the required level did not need a store lookup, or
    when the lookup was bypassed in development mode.
    """

    identity: Identity
    role: Role | None = None

    @property
    def email(self) -> str:
        return self.identity.email


@dataclass
class User:
    """A row of the Users directory.

    email is stored lower-case; lookups compare case-insensitively.
    id is None before the record is written to the database.
    """

    email: str
    display_name: str
    role: Role = Role.USER
    id: int | None = None
    external_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    job_title: str | None = None
    is_active: bool = True
    created_date: str | None = None
    created_by: str | None = None
    modified_date: str | None = None
    modified_by: str | None = None
    assignment_groups: list[int] = field(default_factory=list)


@dataclass
class AssignmentGroup:
    group_name: str
    id: int | None = None
    description: str | None = None
    is_active: bool = True


@dataclass
class AuditEntry:
    """Immutable record of a privileged action. Never updated or deleted."""

    action: str
    actor_email: str
    target_email: str
    created_date: str
    detail: str | None = None
    id: int | None = None
