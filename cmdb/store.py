"""
cmdb/store.py -- SQLAlchemy-backed persistence layer for the ServiceDesk CMDB.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in cmdb/models.py
remain the authoritative domain representation. Table and column names match
the existing ITSM database schema (PascalCase), so the same store runs against
SQLite locally and the production server without a mapping layer.

Pattern: Repository + Data Mapper. CMDBStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Referential integrity: a configuration item referenced by a ServiceCiMapping
row or by either end of a CiRelationships row must not be deleted. The check is
done here in count_references() before the DELETE is issued -- it is a
read-then-act sequence without transactional isolation, so a reference added
between the two statements is not detected.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CMDBStore()                               # SQLite default
    store = CMDBStore("postgresql://user:pw@host/db") # PostgreSQL
    ci_id = store.create_item(item, created_by="alice@example.com")
    items = store.list_items(CiFilter(status="Active"))
    store.close()
"""

import json
import logging
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
    union_all,
)
from sqlalchemy.engine import Engine

from cmdb.models import CiFilter, CiType, ConfigurationItem
from core.config import get_settings
from core.db import assignment_groups, create_schema, make_engine, metadata, now_iso

logger = logging.getLogger("servicedesk.cmdb")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_items = Table(
    "ConfigurationItems",
    metadata,
    Column("CiId", Integer, primary_key=True, autoincrement=True),
    Column("CiName", String(255), nullable=False, index=True),
    Column("CiType", String(100), nullable=False, index=True),
    Column("SubType", String(100)),
    Column("Status", String(50), nullable=False, server_default="Active", index=True),
    Column("Environment", String(50), nullable=False, server_default="Production", index=True),
    Column("Location", String(255)),
    Column("IpAddress", String(50)),
    Column("Hostname", String(255)),
    Column("Version", String(100)),
    Column("Vendor", String(255)),
    Column("SupportGroupId", Integer, ForeignKey("AssignmentGroups.AssignmentGroupID")),
    Column("Owner", String(255)),
    Column("Description", Text),
    Column("Attributes", Text),  # JSON object serialized as text
    Column("SerialNumber", String(255)),
    Column("AssetTag", String(255)),
    Column("PurchaseDate", String(10)),  # YYYY-MM-DD
    Column("ExpiryDate", String(10)),  # YYYY-MM-DD
    Column("Cost", Numeric(18, 2, asdecimal=False)),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255), nullable=False),
    Column("ModifiedDate", String(32)),
    Column("ModifiedBy", String(255)),
)

_ci_types = Table(
    "CiTypes",
    metadata,
    Column("TypeId", Integer, primary_key=True, autoincrement=True),
    Column("TypeName", String(100), nullable=False, unique=True),
    Column("Category", String(100)),
    Column("Icon", String(50)),
    Column("IsActive", Integer, nullable=False, server_default="1"),
)

_services = Table(
    "Services",
    metadata,
    Column("ServiceId", Integer, primary_key=True, autoincrement=True),
    Column("ServiceName", String(255), nullable=False),
    Column("Status", String(50), nullable=False, server_default="Active"),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255), nullable=False),
)

_service_ci_mapping = Table(
    "ServiceCiMapping",
    metadata,
    Column("MappingId", Integer, primary_key=True, autoincrement=True),
    Column("ServiceId", Integer, ForeignKey("Services.ServiceId"), nullable=False),
    Column("CiId", Integer, ForeignKey("ConfigurationItems.CiId"), nullable=False, index=True),
    Column("RelationshipType", String(50), nullable=False, server_default="Contains"),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255), nullable=False),
    UniqueConstraint("ServiceId", "CiId", "RelationshipType", name="UQ_ServiceCiMapping"),
)

_ci_relationships = Table(
    "CiRelationships",
    metadata,
    Column("RelationshipId", Integer, primary_key=True, autoincrement=True),
    Column("SourceCiId", Integer, ForeignKey("ConfigurationItems.CiId"), nullable=False, index=True),
    Column("TargetCiId", Integer, ForeignKey("ConfigurationItems.CiId"), nullable=False, index=True),
    Column("RelationshipType", String(50), nullable=False),
    Column("IsActive", Integer, nullable=False, server_default="1"),
    Column("CreatedDate", String(32), nullable=False),
    Column("CreatedBy", String(255), nullable=False),
    UniqueConstraint("SourceCiId", "TargetCiId", "RelationshipType", name="UQ_CiRelationships"),
    CheckConstraint('"SourceCiId" <> "TargetCiId"', name="CHK_CiRelationships_NotSelf"),
)

_DEFAULT_CI_TYPES = [
    ("Server", "Hardware", "server"),
    ("Virtual Machine", "Hardware", "laptop"),
    ("Container", "Cloud", "package"),
    ("Database", "Software", "database"),
    ("Application", "Software", "app"),
    ("Web Server", "Software", "globe"),
    ("API", "Software", "plug"),
    ("Load Balancer", "Network", "scale"),
    ("Firewall", "Network", "shield"),
    ("Switch", "Network", "switch"),
    ("Router", "Network", "antenna"),
    ("Storage", "Hardware", "disk"),
    ("Backup System", "Hardware", "archive"),
    ("Cloud Service", "Cloud", "cloud"),
    ("SaaS Application", "Cloud", "cloud-app"),
    ("Kubernetes Cluster", "Cloud", "cog"),
    ("Message Queue", "Software", "inbox"),
    ("Cache", "Software", "bolt"),
    ("CDN", "Network", "earth"),
    ("DNS", "Network", "list"),
]

# Domain attribute -> column. Every mutable column; a full replace writes all
# of them, using None for anything the caller left out.
_MUTABLE_COLUMNS: dict[str, str] = {
    "ci_name": "CiName",
    "ci_type": "CiType",
    "sub_type": "SubType",
    "status": "Status",
    "environment": "Environment",
    "location": "Location",
    "ip_address": "IpAddress",
    "hostname": "Hostname",
    "version": "Version",
    "vendor": "Vendor",
    "support_group_id": "SupportGroupId",
    "owner": "Owner",
    "description": "Description",
    "attributes": "Attributes",
    "serial_number": "SerialNumber",
    "asset_tag": "AssetTag",
    "purchase_date": "PurchaseDate",
    "expiry_date": "ExpiryDate",
    "cost": "Cost",
}


def _seed_ci_types(engine: Engine) -> None:
    with engine.begin() as conn:
        count = conn.execute(select(func.count()).select_from(_ci_types)).scalar()
        if not count:
            conn.execute(
                _ci_types.insert(),
                [{"TypeName": name, "Category": cat, "Icon": icon} for name, cat, icon in _DEFAULT_CI_TYPES],
            )
            logger.info("Seeded %d CI types", len(_DEFAULT_CI_TYPES))


def _column_values(item: ConfigurationItem) -> dict:
    values = {col: getattr(item, attr) for attr, col in _MUTABLE_COLUMNS.items()}
    values["Attributes"] = json.dumps(item.attributes) if item.attributes is not None else None
    return values


def _item_select():
    return select(_items, assignment_groups.c.GroupName.label("SupportGroup")).select_from(
        _items.outerjoin(assignment_groups, _items.c.SupportGroupId == assignment_groups.c.AssignmentGroupID)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CMDBStore:
    def __init__(self, db_url: Optional[str] = None, create: Optional[bool] = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(db_url or settings.database_url)
        create_tables = settings.auto_create_schema if create is None else create
        if create_tables:
            create_schema(self.engine)
            _seed_ci_types(self.engine)

    # ------------------------------------------------------------------
    # Configuration items
    # ------------------------------------------------------------------

    def list_items(self, filters: Optional[CiFilter] = None) -> list[ConfigurationItem]:
        """Return items matching every supplied filter, ordered by CiName."""
        filters = filters or CiFilter()
        stmt = _item_select()
        if filters.status:
            stmt = stmt.where(_items.c.Status == filters.status)
        if filters.ci_type:
            stmt = stmt.where(_items.c.CiType == filters.ci_type)
        if filters.environment:
            stmt = stmt.where(_items.c.Environment == filters.environment)
        stmt = stmt.order_by(_items.c.CiName, _items.c.CiId)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_item(self, ci_id: int) -> Optional[ConfigurationItem]:
        """Fetch a single item by ID, with its support group name. None if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(_item_select().where(_items.c.CiId == ci_id)).fetchone()
        return _row_to_item(row) if row is not None else None

    def item_exists(self, ci_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_items.c.CiId).where(_items.c.CiId == ci_id)).fetchone()
        return row is not None

    def create_item(self, item: ConfigurationItem, created_by: str) -> int:
        """Insert a new item and return its assigned CiId.

        Raises sqlalchemy.exc.IntegrityError when support_group_id does not
        reference an existing assignment group.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _items.insert().values(
                    **_column_values(item),
                    CreatedDate=now_iso(),
                    CreatedBy=created_by,
                )
            )
            return result.inserted_primary_key[0]

    def replace_item(self, ci_id: int, item: ConfigurationItem, modified_by: str) -> bool:
        """Overwrite every mutable column of an item.

        There is no merge with the stored row: fields left as None on item
        are written as NULL. Returns False if ci_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _items.update()
                .where(_items.c.CiId == ci_id)
                .values(
                    **_column_values(item),
                    ModifiedDate=now_iso(),
                    ModifiedBy=modified_by,
                )
            )
        return result.rowcount > 0

    def count_references(self, ci_id: int) -> int:
        """Return how many service mappings and CI relationships reference ci_id."""
        refs = union_all(
            select(_service_ci_mapping.c.MappingId).where(_service_ci_mapping.c.CiId == ci_id),
            select(_ci_relationships.c.RelationshipId).where(
                or_(_ci_relationships.c.SourceCiId == ci_id, _ci_relationships.c.TargetCiId == ci_id)
            ),
        ).subquery()
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(refs)).scalar() or 0

    def delete_item(self, ci_id: int) -> bool:
        """Delete an item. Returns False if not found.

        Callers must check count_references() first -- with SQLite foreign
        keys on, deleting a referenced row raises IntegrityError instead.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_items.delete().where(_items.c.CiId == ci_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Relationships and service mappings
    # ------------------------------------------------------------------

    def create_service(self, service_name: str, created_by: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _services.insert().values(ServiceName=service_name, CreatedDate=now_iso(), CreatedBy=created_by)
            )
            return result.inserted_primary_key[0]

    def map_to_service(self, service_id: int, ci_id: int, created_by: str, relationship_type: str = "Contains") -> int:
        """Link a CI to a business service and return the mapping ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _service_ci_mapping.insert().values(
                    ServiceId=service_id,
                    CiId=ci_id,
                    RelationshipType=relationship_type,
                    CreatedDate=now_iso(),
                    CreatedBy=created_by,
                )
            )
            return result.inserted_primary_key[0]

    def add_relationship(self, source_ci_id: int, target_ci_id: int, relationship_type: str, created_by: str) -> int:
        """Record a CI-to-CI dependency and return the relationship ID.

        Raises sqlalchemy.exc.IntegrityError for self-references and for a
        duplicate (source, target, type) triple.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _ci_relationships.insert().values(
                    SourceCiId=source_ci_id,
                    TargetCiId=target_ci_id,
                    RelationshipType=relationship_type,
                    CreatedDate=now_iso(),
                    CreatedBy=created_by,
                )
            )
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def list_ci_types(self) -> list[CiType]:
        """Return the active CI type catalog ordered by category, then name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _ci_types.select().where(_ci_types.c.IsActive == 1).order_by(_ci_types.c.Category, _ci_types.c.TypeName)
            ).fetchall()
        return [
            CiType(id=r.TypeId, type_name=r.TypeName, category=r.Category, icon=r.Icon, is_active=bool(r.IsActive))
            for r in rows
        ]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_item(row) -> ConfigurationItem:
    try:
        attributes = json.loads(row.Attributes) if row.Attributes else None
    except ValueError:
        # Rows written by other tools may hold free text here.
        logger.warning("CI %s has non-JSON Attributes; returning them as text", row.CiId)
        attributes = {"raw": row.Attributes}
    return ConfigurationItem(
        id=row.CiId,
        ci_name=row.CiName,
        ci_type=row.CiType,
        sub_type=row.SubType,
        status=row.Status,
        environment=row.Environment,
        location=row.Location,
        ip_address=row.IpAddress,
        hostname=row.Hostname,
        version=row.Version,
        vendor=row.Vendor,
        support_group_id=row.SupportGroupId,
        support_group=getattr(row, "SupportGroup", None),
        owner=row.Owner,
        description=row.Description,
        attributes=attributes,
        serial_number=row.SerialNumber,
        asset_tag=row.AssetTag,
        purchase_date=row.PurchaseDate,
        expiry_date=row.ExpiryDate,
        cost=row.Cost,
        created_date=row.CreatedDate,
        created_by=row.CreatedBy,
        modified_date=row.ModifiedDate,
        modified_by=row.ModifiedBy,
    )
