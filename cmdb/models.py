"""
cmdb/models.py -- Domain dataclasses for the ServiceDesk CMDB.

These are pure data containers with zero logic. Validation lives in
core/validators.py; persistence and the delete guard live in cmdb/store.py.

Separation of concerns: these dataclasses are the CMDB's domain truth, just as
auth/models.py is the user directory's. Neither layer imports the other.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ConfigurationItem:
    """A managed asset in the CMDB.

    attributes holds type-specific data (CPU, RAM, licence counts...). It is
    serialized to JSON text by the store and parsed back on read.

    support_group is the AssignmentGroups name resolved on read; it is never
    written. id is None before the record is written to the database.
    """

    ci_name: str
    ci_type: str
    status: str = "Active"  # "Active" | "Inactive" | "Decommissioned" | "Planned" | "Maintenance"
    environment: str = "Production"  # "Production" | "Staging" | "Development" | "Test" | "DR"
    id: Optional[int] = None
    sub_type: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    version: Optional[str] = None
    vendor: Optional[str] = None
    support_group_id: Optional[int] = None
    support_group: Optional[str] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    attributes: Optional[dict] = None
    serial_number: Optional[str] = None
    asset_tag: Optional[str] = None
    purchase_date: Optional[str] = None  # YYYY-MM-DD
    expiry_date: Optional[str] = None  # YYYY-MM-DD
    cost: Optional[float] = None
    created_date: str = ""  # ISO 8601, set by store on insert
    created_by: str = ""
    modified_date: Optional[str] = None
    modified_by: Optional[str] = None


@dataclass
class CiType:
    """An entry of the CI type catalog used for pickers in the UI."""

    type_name: str
    category: Optional[str] = None
    icon: Optional[str] = None
    id: Optional[int] = None
    is_active: bool = True


@dataclass
class CiFilter:
    """Equality filters for listing configuration items. None means "any"."""

    status: Optional[str] = None
    ci_type: Optional[str] = None
    environment: Optional[str] = None
