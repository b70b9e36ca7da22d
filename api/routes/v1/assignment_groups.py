"""
api/routes/v1/assignment_groups.py -- Assignment group lookup for pickers.

  GET /assignment-groups -- active groups ordered by name (authenticated)
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter, read_limit
from api.models import AssignmentGroupRecord, Envelope
from auth.dependencies import require
from auth.models import AccessLevel
from auth.store import UserStore

router = APIRouter(dependencies=[Depends(require(AccessLevel.AUTHENTICATED))])


@router.get("/assignment-groups")
@limiter.limit(read_limit)
def list_assignment_groups(request: Request) -> Envelope[list[AssignmentGroupRecord]]:
    store: UserStore = request.app.state.user_store
    return Envelope(data=[AssignmentGroupRecord.from_group(g) for g in store.list_groups()])
