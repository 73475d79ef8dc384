"""Delegation API Routes"""
from typing import Any, Dict, List, Optional
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field

from ..deps import get_correlation_id_dep, get_actor_id_dep
from ...domain.errors import DomainError
from ...services.delegation_service import DelegationService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateDelegationRequest(BaseModel):
    """Request to delegate approval authority"""
    delegate_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    principal_id: Optional[str] = Field(None, description="Defaults to the calling employee")
    request_type_scope: List[str] = Field(default_factory=list)
    company_scope: List[str] = Field(default_factory=list)
    reason: Optional[str] = Field(None, max_length=500)


class UpdateDelegationRequest(BaseModel):
    delegate_id: Optional[str] = Field(None, min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    request_type_scope: Optional[List[str]] = None
    company_scope: Optional[List[str]] = None
    reason: Optional[str] = Field(None, max_length=500)


class DelegationListResponse(BaseModel):
    items: List[Dict[str, Any]]
    total: int


# ============================================================================
# Routes
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_delegation(
    request: CreateDelegationRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Delegate approval authority for a date window

    A principal may have only one active delegation per window.
    """
    try:
        delegation = DelegationService().create_delegation(
            principal_id=request.principal_id or actor_id,
            delegate_id=request.delegate_id,
            start_date=request.start_date,
            end_date=request.end_date,
            request_type_scope=request.request_type_scope,
            company_scope=request.company_scope,
            reason=request.reason
        )

        logger.info(
            f"Created delegation {delegation.delegation_id}",
            extra={"delegation_id": delegation.delegation_id, "actor_id": actor_id}
        )
        return delegation.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("", response_model=DelegationListResponse)
async def list_delegations(
    principal_id: Optional[str] = Query(None),
    delegate_id: Optional[str] = Query(None),
    include_inactive: bool = Query(True),
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Delegations granted or held; the caller's own grants by default"""
    try:
        if not principal_id and not delegate_id:
            principal_id = actor_id
        delegations = DelegationService().list_delegations(
            principal_id=principal_id,
            delegate_id=delegate_id,
            include_inactive=include_inactive
        )
        return DelegationListResponse(
            items=[d.model_dump(mode="json") for d in delegations],
            total=len(delegations)
        )

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{delegation_id}")
async def get_delegation(
    delegation_id: str,
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return DelegationService().get_delegation(delegation_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{delegation_id}")
async def update_delegation(
    delegation_id: str,
    request: UpdateDelegationRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Change a delegation; only its principal may do so"""
    try:
        updated = DelegationService().update_delegation(
            delegation_id,
            request.model_dump(exclude_unset=True),
            actor_id=actor_id
        )
        return updated.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{delegation_id}/revoke")
async def revoke_delegation(
    delegation_id: str,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return DelegationService().revoke_delegation(delegation_id, actor_id=actor_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{delegation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delegation(
    delegation_id: str,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        DelegationService().delete_delegation(delegation_id, actor_id=actor_id)

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
