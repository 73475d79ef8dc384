"""Approval inbox routes"""
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_correlation_id_dep, get_actor_id_dep
from ...domain.errors import DomainError
from ...engine import WorkflowEngine

router = APIRouter()


class PendingApprovalsResponse(BaseModel):
    employee_id: str
    items: List[Dict[str, Any]]
    total: int


@router.get("/pending", response_model=PendingApprovalsResponse)
async def get_pending_approvals(
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Steps the calling employee can decide now

    Includes steps of principals the caller stands in for; those items carry
    acting_as_delegate_for.
    """
    try:
        pending = WorkflowEngine().get_pending_for(actor_id)
        return PendingApprovalsResponse(
            employee_id=actor_id,
            items=[p.model_dump(mode="json") for p in pending],
            total=len(pending)
        )

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
