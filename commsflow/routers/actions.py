from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.schemas.action import ActionListResponse, ActionRecordResponse, ReviewRequest
from commsflow.services.action_service import (
    ActionNotFoundError,
    approve_action,
    get_action,
    list_actions,
    reject_action,
)
from commsflow.services.action_state import InvalidTransitionError

router = APIRouter()


@router.get("/actions", response_model=ActionListResponse)
def get_actions(
    status: Optional[str] = None,
    project_id: Optional[UUID] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    actions = list_actions(db, status=status, project_id=project_id, limit=limit)
    return ActionListResponse(count=len(actions), actions=actions)


@router.post("/actions/{action_id}/approve", response_model=ActionRecordResponse)
def approve(
    action_id: UUID,
    request: Optional[ReviewRequest] = None,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Approve a pending action and, unless told otherwise, execute it right away."""
    request = request or ReviewRequest()
    try:
        record = approve_action(db, action_id, request.reviewed_by)
        if request.execute:
            services.executor().execute(db, record)
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return record


@router.post("/actions/{action_id}/reject", response_model=ActionRecordResponse)
def reject(action_id: UUID, request: Optional[ReviewRequest] = None, db: Session = Depends(get_db)):
    request = request or ReviewRequest()
    try:
        return reject_action(db, action_id, request.reviewed_by)
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/actions/{action_id}/execute", response_model=ActionRecordResponse)
def execute(action_id: UUID, db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """Execute an approved action, or a pending one that needs no approval."""
    try:
        record = get_action(db, action_id)
        services.executor().execute(db, record)
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return record
