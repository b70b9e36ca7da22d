"""
api/routes/v1/configuration_items.py -- CMDB routes for the ServiceDesk REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /configuration-items            -- list, filter by status/type/environment, or ?id=
  GET    /configuration-items/{ci_id}    -- single item detail
  POST   /configuration-items            -- create
  PUT    /configuration-items            -- full replace, id taken from body ciId
  PUT    /configuration-items/{ci_id}    -- full replace
  DELETE /configuration-items            -- 400, id required
  DELETE /configuration-items/{ci_id}    -- delete when no relationship references it
  GET    /ci-types                       -- CI type catalog

Every route accepts anonymous callers. Mutations stamp the caller's email into
CreatedBy / ModifiedBy, or "anonymous" when no principal header was sent. A
header that is present but cannot be decoded is still a 401.

PUT is a full overwrite: any mutable field missing from the body is written
as NULL (status/environment fall back to their defaults), never merged with
the stored row.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from pydantic.alias_generators import to_snake
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, read_limit, write_limit
from api.models import CiBody, CiKeyFields, CiRecord, CiSummary, CiTypeRecord, Envelope
from auth.dependencies import require
from auth.models import AccessLevel, Principal
from cmdb.models import CiFilter, ConfigurationItem
from cmdb.store import CMDBStore
from core.errors import ConflictError, NotFound, ValidationError
from core.validators import validate_ci_fields

logger = logging.getLogger("servicedesk.cmdb")

router = APIRouter()

_optional = require(AccessLevel.NONE)

ANONYMOUS = "anonymous"


def _build_item(body: CiBody) -> ConfigurationItem:
    """Validate a request body and map it onto the domain dataclass."""
    cleaned = validate_ci_fields(body.item_fields())
    return ConfigurationItem(**{to_snake(name): value for name, value in cleaned.items()})


def _actor(principal: Optional[Principal]) -> str:
    """Name stamped into CreatedBy / ModifiedBy."""
    if principal is None:
        return ANONYMOUS
    return principal.email or principal.identity.external_id or ANONYMOUS


def _get_or_404(cmdb: CMDBStore, ci_id: int) -> ConfigurationItem:
    item = cmdb.get_item(ci_id)
    if item is None:
        raise NotFound("Configuration Item not found", details={"ciId": ci_id})
    return item


# ---------------------------------------------------------------------------
# GET /configuration-items -- list with optional filters
# ---------------------------------------------------------------------------


@router.get("/configuration-items")
@limiter.limit(read_limit)
def list_configuration_items(
    request: Request,
    status: Optional[str] = None,
    ci_type: Optional[str] = Query(default=None, alias="type"),
    environment: Optional[str] = None,
    ci_id: Optional[int] = Query(default=None, alias="id"),
) -> Envelope[Union[CiRecord, list[CiSummary]]]:
    """List configuration items ordered by name.

    Filters are equality matches combined with AND; omitted filters match
    everything. ?id= bypasses filtering and returns that single item.
    """
    cmdb: CMDBStore = request.app.state.cmdb
    if ci_id is not None:
        return Envelope(data=CiRecord.from_item(_get_or_404(cmdb, ci_id)))

    filters = CiFilter(status=status or None, ci_type=ci_type or None, environment=environment or None)
    items = cmdb.list_items(filters)
    return Envelope(data=[CiSummary.from_item(item) for item in items])


@router.get("/configuration-items/{ci_id}")
@limiter.limit(read_limit)
def get_configuration_item(request: Request, ci_id: int) -> Envelope[CiRecord]:
    """Return one configuration item including attributes and asset detail."""
    cmdb: CMDBStore = request.app.state.cmdb
    return Envelope(data=CiRecord.from_item(_get_or_404(cmdb, ci_id)))


# ---------------------------------------------------------------------------
# POST /configuration-items -- create
# ---------------------------------------------------------------------------


@router.post("/configuration-items", status_code=201)
@limiter.limit(write_limit)
def create_configuration_item(
    request: Request,
    body: CiBody,
    principal: Optional[Principal] = Depends(_optional),
) -> Envelope[CiKeyFields]:
    """Create a configuration item. Status defaults to Active, environment to Production."""
    cmdb: CMDBStore = request.app.state.cmdb
    item = _build_item(body)
    try:
        ci_id = cmdb.create_item(item, created_by=_actor(principal))
    except IntegrityError as exc:
        raise ValidationError(
            "Support group does not exist",
            details={"field": "supportGroupId", "supportGroupId": item.support_group_id},
        ) from exc

    created = cmdb.get_item(ci_id)
    logger.info("CI %d (%s) created by %s", ci_id, created.ci_name, _actor(principal))
    return Envelope(data=CiKeyFields.from_item(created), message="Configuration Item created successfully")


# ---------------------------------------------------------------------------
# PUT /configuration-items -- full replace
# ---------------------------------------------------------------------------


def _replace(request: Request, ci_id: Optional[int], body: CiBody, principal: Optional[Principal]) -> Envelope[CiKeyFields]:
    if ci_id is None:
        raise ValidationError("CI ID is required", details={"field": "ciId"})
    cmdb: CMDBStore = request.app.state.cmdb
    item = _build_item(body)
    if not cmdb.item_exists(ci_id):
        raise NotFound("Configuration Item not found", details={"ciId": ci_id})
    try:
        cmdb.replace_item(ci_id, item, modified_by=_actor(principal))
    except IntegrityError as exc:
        raise ValidationError(
            "Support group does not exist",
            details={"field": "supportGroupId", "supportGroupId": item.support_group_id},
        ) from exc

    logger.info("CI %d replaced by %s", ci_id, _actor(principal))
    return Envelope(data=CiKeyFields.from_item(cmdb.get_item(ci_id)), message="Configuration Item updated successfully")


@router.put("/configuration-items")
@limiter.limit(write_limit)
def replace_configuration_item_from_body(
    request: Request,
    body: CiBody,
    principal: Optional[Principal] = Depends(_optional),
) -> Envelope[CiKeyFields]:
    """Replace the item named by ciId in the body."""
    return _replace(request, body.ci_id, body, principal)


@router.put("/configuration-items/{ci_id}")
@limiter.limit(write_limit)
def replace_configuration_item(
    request: Request,
    ci_id: int,
    body: CiBody,
    principal: Optional[Principal] = Depends(_optional),
) -> Envelope[CiKeyFields]:
    """Replace every mutable field of an item. The path id wins over a body ciId."""
    return _replace(request, ci_id, body, principal)


# ---------------------------------------------------------------------------
# DELETE /configuration-items/{ci_id}
# ---------------------------------------------------------------------------


@router.delete("/configuration-items")
@limiter.limit(write_limit)
def delete_configuration_item_without_id(
    request: Request,
    principal: Optional[Principal] = Depends(_optional),
) -> Envelope[None]:
    raise ValidationError("CI ID is required", details={"field": "ciId"})


@router.delete("/configuration-items/{ci_id}")
@limiter.limit(write_limit)
def delete_configuration_item(
    request: Request,
    ci_id: int,
    principal: Optional[Principal] = Depends(_optional),
) -> Envelope[None]:
    """Delete an item that no service mapping or CI relationship references."""
    cmdb: CMDBStore = request.app.state.cmdb
    references = cmdb.count_references(ci_id)
    if references:
        raise ConflictError(
            "Cannot delete CI with existing relationships. Remove the relationships first.",
            details={"ciId": ci_id, "references": references},
        )
    if not cmdb.delete_item(ci_id):
        raise NotFound("Configuration Item not found", details={"ciId": ci_id})

    logger.info("CI %d deleted by %s", ci_id, _actor(principal))
    return Envelope(message="Configuration Item deleted successfully")


# ---------------------------------------------------------------------------
# GET /ci-types
# ---------------------------------------------------------------------------


@router.get("/ci-types")
@limiter.limit(read_limit)
def list_ci_types(request: Request) -> Envelope[list[CiTypeRecord]]:
    """Return active CI types ordered by category, then name."""
    cmdb: CMDBStore = request.app.state.cmdb
    return Envelope(data=[CiTypeRecord.from_type(t) for t in cmdb.list_ci_types()])
