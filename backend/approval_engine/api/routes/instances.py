"""Instance API Routes - Start, decide and cancel approval workflows"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field

from ..deps import get_correlation_id_dep, get_actor_id_dep
from ...domain.enums import DecisionAction, InstanceStatus, AuditEventType
from ...domain.errors import DomainError
from ...engine import WorkflowEngine
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class StartInstanceRequest(BaseModel):
    """Request to start the approval workflow of a business request"""
    request_type: str = Field(..., min_length=1, max_length=100)
    request_id: str = Field(..., min_length=1, max_length=200)
    company_id: str = Field(..., min_length=1)
    applicant_id: Optional[str] = Field(None, description="Defaults to the calling employee")
    definition_id: Optional[str] = Field(None, description="Skip applicability lookup")
    context_data: Dict[str, Any] = Field(default_factory=dict)


class DecisionRequest(BaseModel):
    """An approver's decision on an open step"""
    record_id: str
    action: DecisionAction
    comment: Optional[str] = Field(None, max_length=2000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class InstanceListResponse(BaseModel):
    """Response for instance list"""
    items: List[Dict[str, Any]]
    page: int
    page_size: int


# ============================================================================
# Routes
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def start_instance(
    request: StartInstanceRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Start a workflow instance

    The applicable definition is picked from employee, request-type and
    company defaults unless definition_id is given.
    """
    try:
        engine = WorkflowEngine()
        instance = engine.start(
            request_type=request.request_type,
            request_id=request.request_id,
            applicant_id=request.applicant_id or actor_id,
            company_id=request.company_id,
            context_data=request.context_data,
            definition_id=request.definition_id,
            correlation_id=correlation_id
        )

        logger.info(
            f"Started instance {instance.instance_id} for {instance.request_type}/{instance.request_id}",
            extra={"instance_id": instance.instance_id, "actor_id": actor_id}
        )
        return instance.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("", response_model=InstanceListResponse)
async def list_instances(
    applicant_id: Optional[str] = Query(None),
    status: Optional[InstanceStatus] = Query(None),
    request_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        engine = WorkflowEngine()
        instances = engine.list_instances(
            applicant_id=applicant_id,
            status=status,
            request_type=request_type,
            skip=(page - 1) * page_size,
            limit=page_size
        )
        return InstanceListResponse(
            items=[i.model_dump(mode="json") for i in instances],
            page=page,
            page_size=page_size
        )

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/by-request/{request_type}/{request_id}")
async def get_instance_by_request(
    request_type: str,
    request_id: str,
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Active instance of a business request, else its latest one"""
    try:
        instance = WorkflowEngine().get_instance_by_request(request_type, request_id)
        return instance.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{instance_id}")
async def get_instance(
    instance_id: str,
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowEngine().get_instance(instance_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{instance_id}/decisions")
async def submit_decision(
    instance_id: str,
    request: DecisionRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Approve, reject or return an open step

    Delegates act for their principal automatically; the decision records
    who it was made for.
    """
    try:
        engine = WorkflowEngine()
        instance = engine.decide(
            instance_id=instance_id,
            record_id=request.record_id,
            actor_id=actor_id,
            action=request.action,
            comment=request.comment,
            correlation_id=correlation_id
        )
        return instance.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{instance_id}/cancel")
async def cancel_instance(
    instance_id: str,
    request: Optional[CancelRequest] = None,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Applicant withdraws the request"""
    try:
        engine = WorkflowEngine()
        instance = engine.cancel(
            instance_id=instance_id,
            actor_id=actor_id,
            reason=request.reason if request else None,
            correlation_id=correlation_id
        )
        return instance.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{instance_id}/audit")
async def get_audit_trail(
    instance_id: str,
    event_type: Optional[List[AuditEventType]] = Query(None),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Audit events of an instance in the order they happened"""
    try:
        events = WorkflowEngine().get_audit_trail(instance_id, event_type)
        return {
            "instance_id": instance_id,
            "items": [e.model_dump(mode="json") for e in events]
        }

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
