"""
core/db.py -- Engine construction and schema pieces shared by both stores.

CMDBStore and UserStore each own their tables, but they live in one database:
configuration items join to AssignmentGroups for the support-group name, and
group memberships point at the same table. All tables therefore register on
the single MetaData defined here so cross-store foreign keys resolve.

Security: all queries built on these tables use bound parameters.

Layer rule: no imports from api/, auth/, or cmdb/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, ProgrammingError

from core.errors import StoreObjectMissing

logger = logging.getLogger("servicedesk.db")

metadata = MetaData()

assignment_groups = Table(
    "AssignmentGroups",
    metadata,
    Column("AssignmentGroupID", Integer, primary_key=True, autoincrement=True),
    Column("GroupName", String(50), nullable=False, unique=True),
    Column("Description", String(200)),
    Column("IsActive", Integer, nullable=False, server_default="1"),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(100), nullable=False),
)

_DEFAULT_GROUPS = [
    ("Development", "Software development and application support team"),
    ("Infrastructure", "IT infrastructure, servers, and network support team"),
    ("Service Desk", "First-line support and general IT assistance team"),
    ("Security", "Information security and compliance team"),
]

# Substrings the supported drivers use for a missing table or column:
# SQLite, PostgreSQL, SQL Server.
_MISSING_OBJECT_MARKERS = (
    "no such table",
    "no such column",
    "does not exist",
    "invalid object name",
    "invalid column name",
)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def make_engine(db_url: str) -> Engine:
    """Create the pooled engine for db_url.

    SQLite requires check_same_thread=False because FastAPI runs sync route
    handlers in a thread pool, so one pooled connection may be used from
    several threads.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_pragmas)
    return engine


def create_schema(engine: Engine) -> None:
    """Create every registered table that does not exist yet and seed groups."""
    metadata.create_all(engine)
    with engine.begin() as conn:
        count = conn.execute(select(func.count()).select_from(assignment_groups)).scalar()
        if not count:
            now = now_iso()
            conn.execute(
                insert(assignment_groups),
                [
                    {"GroupName": name, "Description": desc, "CreatedDate": now, "CreatedBy": "system"}
                    for name, desc in _DEFAULT_GROUPS
                ],
            )
            logger.info("Seeded %d default assignment groups", len(_DEFAULT_GROUPS))


def is_missing_object(exc: Exception) -> bool:
    """Return True if a driver error says a table or column does not exist."""
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _MISSING_OBJECT_MARKERS)


@contextmanager
def missing_objects_reported() -> Iterator[None]:
    """Re-raise missing-table/column driver errors as StoreObjectMissing.

    Every other database error propagates unchanged.
    """
    try:
        yield
    except (OperationalError, ProgrammingError) as exc:
        if is_missing_object(exc):
            raise StoreObjectMissing(str(getattr(exc, "orig", exc))) from exc
        raise
