"""
auth/store.py -- SQLAlchemy Core persistence layer for the user directory.

Pattern: Repository + Data Mapper (same as cmdb/store.py).
UserStore is the repository; _row_to_user / _row_to_audit are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL. Partial updates go
  through UserUpdate, which only accepts columns from a fixed whitelist.

Roles:
  The Role column is free text in the database (older rows hold "Agent",
  "ADMIN", ...). _row_to_user normalizes it once via Role.parse so no caller
  repeats case-folding. Emails are stored lower-case and compared with
  lower() so rows written by other tools still match.

Transactions:
  create_user() writes the user and its group memberships. With atomic=True
  both happen in one transaction; with atomic=False memberships are
  best-effort and a failed membership never undoes the created user.

Layer rule: no imports from api/ or cmdb/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text, UniqueConstraint, func, or_, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AssignmentGroup, AuditEntry, Role, User
from core.config import get_settings
from core.db import assignment_groups, create_schema, make_engine, metadata, missing_objects_reported, now_iso

logger = logging.getLogger("servicedesk.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "Users",
    metadata,
    Column("UserID", Integer, primary_key=True, autoincrement=True),
    Column("Email", String(255), nullable=False, unique=True),
    Column("ExternalID", String(255), unique=True),  # identity provider object id
    Column("DisplayName", String(200), nullable=False),
    Column("FirstName", String(100)),
    Column("LastName", String(100)),
    Column("Department", String(100)),
    Column("JobTitle", String(100)),
    Column("Role", String(20), nullable=False, server_default="user", index=True),
    Column("IsActive", Integer, nullable=False, server_default="1", index=True),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255)),
    Column("ModifiedDate", String(32)),
    Column("ModifiedBy", String(255)),
)

_members = Table(
    "AssignmentGroupMembers",
    metadata,
    Column("AssignmentGroupMemberID", Integer, primary_key=True, autoincrement=True),
    Column("AssignmentGroupID", Integer, ForeignKey("AssignmentGroups.AssignmentGroupID"), nullable=False),
    Column("UserEmail", String(255), nullable=False, index=True),
    Column("IsActive", Integer, nullable=False, server_default="1"),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255), nullable=False),
    UniqueConstraint("AssignmentGroupID", "UserEmail", name="UQ_AssignmentGroupMembers_GroupUser"),
)

_audit = Table(
    "AuditLog",
    metadata,
    Column("AuditId", Integer, primary_key=True, autoincrement=True),
    Column("Action", String(50), nullable=False),
    Column("ActorEmail", String(255), nullable=False),
    Column("TargetEmail", String(255), nullable=False, index=True),
    Column("Detail", Text),
    Column("CreatedDate", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Partial update builder
# ---------------------------------------------------------------------------


class UserUpdate:
    """Collects (column, value) pairs for a partial user update.

    Only fields explicitly present in the request end up in the statement;
    a field that was never set is left untouched in the database. Field names
    are the request's camelCase keys, mapped through a fixed whitelist.

    Usage:
        update = UserUpdate.from_fields({"displayName": "Ada"})
        store.update_user("ada@example.com", update, modified_by="admin@example.com")
    """

    FIELDS: dict[str, str] = {
        "displayName": "DisplayName",
        "newRole": "Role",
        "firstName": "FirstName",
        "lastName": "LastName",
        "department": "Department",
        "jobTitle": "JobTitle",
        "externalId": "ExternalID",
    }

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> UserUpdate:
        """Build an update from the keys present in fields, ignoring non-column keys."""
        update = cls()
        for name, value in fields.items():
            if name in cls.FIELDS:
                update.set(name, value)
        return update

    def set(self, name: str, value: Any) -> UserUpdate:
        if name not in self.FIELDS:
            raise KeyError(f"{name!r} is not an updatable user field")
        if isinstance(value, Role):
            value = value.value
        elif name == "externalId" and isinstance(value, str):
            # Blank external ids are stored as NULL, as on create.
            value = value.strip() or None
        self._values[self.FIELDS[name]] = value
        return self

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def __contains__(self, column: str) -> bool:
        return column in self._values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, assignment group memberships and the audit log.

    Usage:
        store = UserStore()
        store.create_user(User(email="ada@example.com", display_name="Ada", role=Role.AGENT), "system")
        role = store.get_role_for("ada@example.com", "")
        store.close()
    """

    def __init__(self, db_url: str | None = None, create: bool | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(db_url or settings.database_url)
        create_tables = settings.auto_create_schema if create is None else create
        if create_tables:
            create_schema(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_role_for(self, email: str, external_id: str = "") -> Role | None:
        """Return the stored role of the active user matching email OR external_id.

        A match on email wins over a match on external id. Returns None when
        no active user matches. Raises StoreObjectMissing when the Users table
        or one of its columns does not exist.
        """
        conditions = [func.lower(_users.c.Email) == (email or "").lower()]
        if external_id:
            conditions.append(_users.c.ExternalID == external_id)
        stmt = select(_users.c.Email, _users.c.Role).where((_users.c.IsActive == 1) & or_(*conditions))
        with missing_objects_reported():
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        if not rows:
            return None
        by_email = [r for r in rows if (r.Email or "").lower() == (email or "").lower()]
        return Role.parse((by_email or rows)[0].Role)

    def get_by_email(self, email: str, include_inactive: bool = False) -> User | None:
        """Look up a user by email (case-insensitive). Inactive users are skipped by default."""
        stmt = _users.select().where(func.lower(_users.c.Email) == email.lower())
        if not include_inactive:
            stmt = stmt.where(_users.c.IsActive == 1)
        with missing_objects_reported():
            with self.engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
                if row is None:
                    return None
                groups = self._group_ids(conn, row.Email)
        return _row_to_user(row, groups)

    def email_exists(self, email: str) -> bool:
        """Return True if any user, active or not, already holds this email."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.UserID).where(func.lower(_users.c.Email) == email.lower())
            ).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all active users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.IsActive == 1).order_by(_users.c.Email)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # User writes
    # ------------------------------------------------------------------

    def create_user(
        self,
        user: User,
        created_by: str,
        group_ids: Iterable[int] = (),
        atomic: bool = True,
    ) -> tuple[int, list[int]]:
        """Insert a user plus one membership row per group id.

        Returns (user_id, group ids actually added). Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        group_ids = list(group_ids)
        if atomic:
            with self.engine.begin() as conn:
                user_id = self._insert_user(conn, user, created_by)
                for group_id in group_ids:
                    self._insert_membership(conn, group_id, user.email, created_by)
            return user_id, group_ids

        with self.engine.begin() as conn:
            user_id = self._insert_user(conn, user, created_by)
        added: list[int] = []
        for group_id in group_ids:
            try:
                with self.engine.begin() as conn:
                    self._insert_membership(conn, group_id, user.email, created_by)
            except SQLAlchemyError:
                logger.warning(
                    "Membership of %s in group %s failed; user %s kept",
                    user.email,
                    group_id,
                    user_id,
                    exc_info=True,
                )
                continue
            added.append(group_id)
        return user_id, added

    def update_user(self, email: str, update: UserUpdate, modified_by: str) -> bool:
        """Apply a partial update to the active user with this email.

        Emits a single UPDATE covering exactly the columns in update plus the
        modification stamp. Returns False if no active user matched.
        """
        if not update:
            raise ValueError("update has no fields")
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((func.lower(_users.c.Email) == email.lower()) & (_users.c.IsActive == 1))
                .values(**update.values, ModifiedDate=now_iso(), ModifiedBy=modified_by)
            )
        return result.rowcount > 0

    def deactivate_user(self, email: str, modified_by: str) -> bool:
        """Soft-delete the active user with this email. Returns False if none matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((func.lower(_users.c.Email) == email.lower()) & (_users.c.IsActive == 1))
                .values(IsActive=0, ModifiedDate=now_iso(), ModifiedBy=modified_by)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Assignment groups
    # ------------------------------------------------------------------

    def list_groups(self) -> list[AssignmentGroup]:
        """Return active assignment groups ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                assignment_groups.select()
                .where(assignment_groups.c.IsActive == 1)
                .order_by(assignment_groups.c.GroupName)
            ).fetchall()
        return [
            AssignmentGroup(
                id=r.AssignmentGroupID,
                group_name=r.GroupName,
                description=r.Description,
                is_active=bool(r.IsActive),
            )
            for r in rows
        ]

    def active_group_ids(self) -> set[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(assignment_groups.c.AssignmentGroupID).where(assignment_groups.c.IsActive == 1)
            ).fetchall()
        return {r.AssignmentGroupID for r in rows}

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def record_audit(self, entry: AuditEntry) -> int:
        """Append an audit entry and return its ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _audit.insert().values(
                    Action=entry.action,
                    ActorEmail=entry.actor_email,
                    TargetEmail=entry.target_email,
                    Detail=entry.detail,
                    CreatedDate=entry.created_date,
                )
            )
            return result.inserted_primary_key[0]

    def list_audit(self, target_email: str | None = None) -> list[AuditEntry]:
        """Return audit entries, oldest first, optionally for one target."""
        stmt = _audit.select().order_by(_audit.c.CreatedDate, _audit.c.AuditId)
        if target_email:
            stmt = stmt.where(func.lower(_audit.c.TargetEmail) == target_email.lower())
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_audit(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_user(conn: Connection, user: User, created_by: str) -> int:
        result = conn.execute(
            _users.insert().values(
                Email=user.email.lower(),
                ExternalID=user.external_id or None,
                DisplayName=user.display_name,
                FirstName=user.first_name,
                LastName=user.last_name,
                Department=user.department,
                JobTitle=user.job_title,
                Role=user.role.value,
                IsActive=1 if user.is_active else 0,
                CreatedDate=now_iso(),
                CreatedBy=created_by,
            )
        )
        return result.inserted_primary_key[0]

    @staticmethod
    def _insert_membership(conn: Connection, group_id: int, email: str, created_by: str) -> None:
        conn.execute(
            _members.insert().values(
                AssignmentGroupID=group_id,
                UserEmail=email.lower(),
                IsActive=1,
                CreatedDate=now_iso(),
                CreatedBy=created_by,
            )
        )

    @staticmethod
    def _group_ids(conn: Connection, email: str) -> list[int]:
        rows = conn.execute(
            select(_members.c.AssignmentGroupID)
            .where((func.lower(_members.c.UserEmail) == email.lower()) & (_members.c.IsActive == 1))
            .order_by(_members.c.AssignmentGroupID)
        ).fetchall()
        return [r.AssignmentGroupID for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, assignment_groups: list[int] | None = None) -> User:
    return User(
        id=row.UserID,
        email=row.Email,
        external_id=row.ExternalID,
        display_name=row.DisplayName,
        first_name=row.FirstName,
        last_name=row.LastName,
        department=row.Department,
        job_title=row.JobTitle,
        role=Role.parse(row.Role),
        is_active=bool(row.IsActive),
        created_date=row.CreatedDate,
        created_by=row.CreatedBy,
        modified_date=row.ModifiedDate,
        modified_by=row.ModifiedBy,
        assignment_groups=assignment_groups or [],
    )


def _row_to_audit(row) -> AuditEntry:
    return AuditEntry(
        id=row.AuditId,
        action=row.Action,
        actor_email=row.ActorEmail,
        target_email=row.TargetEmail,
        detail=row.Detail,
        created_date=row.CreatedDate,
    )
