"""Definition API Routes - Workflow designer endpoints"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field

from ..deps import get_correlation_id_dep, get_actor_id_dep
from ...domain.models import WorkflowDefinition, NodeTemplate, EdgeTemplate
from ...domain.enums import DefinitionScope
from ...domain.errors import DomainError
from ...services.workflow_service import WorkflowService
from ...utils.time import utc_now
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateDefinitionRequest(BaseModel):
    """Request to create a workflow definition"""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    scope: DefinitionScope = DefinitionScope.DEFAULT
    company_id: Optional[str] = None
    request_type: Optional[str] = None
    employee_id: Optional[str] = None
    is_active: bool = True
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    nodes: List[NodeTemplate] = Field(..., min_length=1)
    edges: List[EdgeTemplate] = Field(default_factory=list)


class UpdateDefinitionRequest(BaseModel):
    """
    Request to update a definition

    Sending nodes and edges replaces the graph and bumps the version; the
    other fields change metadata only.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    scope: Optional[DefinitionScope] = None
    company_id: Optional[str] = None
    request_type: Optional[str] = None
    employee_id: Optional[str] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    nodes: Optional[List[NodeTemplate]] = None
    edges: Optional[List[EdgeTemplate]] = None
    expected_version: Optional[int] = Field(None, ge=1)


class DuplicateDefinitionRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)


class ValidateDefinitionRequest(BaseModel):
    """Graph to validate without saving"""
    name: str = "Draft"
    scope: DefinitionScope = DefinitionScope.DEFAULT
    request_type: Optional[str] = None
    employee_id: Optional[str] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    nodes: List[NodeTemplate] = Field(default_factory=list)
    edges: List[EdgeTemplate] = Field(default_factory=list)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class DefinitionListResponse(BaseModel):
    """Response for definition list"""
    items: List[Dict[str, Any]]
    page: int
    page_size: int
    total: int


# ============================================================================
# Routes
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_definition(
    request: CreateDefinitionRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Create a workflow definition

    The graph is validated before it is saved; invalid graphs are rejected
    with the full problem list.
    """
    try:
        service = WorkflowService()
        definition = service.create_definition(
            name=request.name,
            nodes=request.nodes,
            edges=request.edges,
            scope=request.scope,
            description=request.description,
            company_id=request.company_id,
            request_type=request.request_type,
            employee_id=request.employee_id,
            is_active=request.is_active,
            effective_from=request.effective_from,
            effective_to=request.effective_to,
            actor_id=actor_id
        )

        logger.info(
            f"Created definition: {definition.definition_id}",
            extra={"definition_id": definition.definition_id, "actor_id": actor_id}
        )
        return definition.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("", response_model=DefinitionListResponse)
async def list_definitions(
    company_id: Optional[str] = Query(None),
    scope: Optional[DefinitionScope] = Query(None),
    request_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """List definitions"""
    try:
        service = WorkflowService()
        skip = (page - 1) * page_size

        definitions = service.list_definitions(
            company_id=company_id,
            scope=scope,
            request_type=request_type,
            is_active=is_active,
            skip=skip,
            limit=page_size
        )
        total = service.count_definitions(
            company_id=company_id, scope=scope, request_type=request_type, is_active=is_active
        )

        return DefinitionListResponse(
            items=[d.model_dump(mode="json") for d in definitions],
            page=page,
            page_size=page_size,
            total=total
        )

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/validate", response_model=ValidationResult)
async def validate_definition(
    request: ValidateDefinitionRequest,
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Validate a graph without saving it"""
    now = utc_now()
    draft = WorkflowDefinition(
        definition_id="draft",
        created_at=now,
        updated_at=now,
        **request.model_dump()
    )
    result = WorkflowService().validate(draft)
    return ValidationResult(**result)


@router.get("/applicable")
async def get_applicable_definition(
    company_id: str = Query(...),
    request_type: str = Query(...),
    employee_id: Optional[str] = Query(None),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """The definition that would govern a new request"""
    try:
        definition = WorkflowService().find_applicable(company_id, request_type, employee_id)
        return definition.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{definition_id}")
async def get_definition(
    definition_id: str,
    version: Optional[int] = Query(None, ge=1),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Get a definition, optionally as it was at an earlier version"""
    try:
        service = WorkflowService()
        if version is not None:
            definition = service.get_definition_version(definition_id, version)
        else:
            definition = service.get_definition(definition_id)
        return definition.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{definition_id}/versions")
async def list_definition_versions(
    definition_id: str,
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        versions = WorkflowService().list_versions(definition_id)
        return {
            "definition_id": definition_id,
            "items": [
                {"version": v.version, "created_at": v.created_at.isoformat()}
                for v in versions
            ]
        }

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{definition_id}")
async def update_definition(
    definition_id: str,
    request: UpdateDefinitionRequest,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Update a definition

    Running instances keep the graph version they started with.
    """
    try:
        service = WorkflowService()
        metadata = request.model_dump(
            exclude_unset=True, exclude={"nodes", "edges", "expected_version"}
        )
        if metadata:
            service.update_metadata(definition_id, metadata)

        if request.nodes is not None or request.edges is not None:
            current = service.get_definition(definition_id)
            service.update_graph(
                definition_id,
                nodes=request.nodes if request.nodes is not None else current.nodes,
                edges=request.edges if request.edges is not None else current.edges,
                expected_version=request.expected_version
            )

        logger.info(
            f"Updated definition: {definition_id}",
            extra={"definition_id": definition_id, "actor_id": actor_id}
        )
        return service.get_definition(definition_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{definition_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_definition(
    definition_id: str,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Delete a definition no running instance uses"""
    try:
        WorkflowService().delete_definition(definition_id)

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{definition_id}/activate")
async def activate_definition(
    definition_id: str,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().activate(definition_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{definition_id}/deactivate")
async def deactivate_definition(
    definition_id: str,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().deactivate(definition_id).model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{definition_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_definition(
    definition_id: str,
    request: Optional[DuplicateDefinitionRequest] = None,
    actor_id: str = Depends(get_actor_id_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Copy a definition; the copy starts inactive at version 1"""
    try:
        name = request.name if request else None
        copy = WorkflowService().duplicate(definition_id, name=name, actor_id=actor_id)
        return copy.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
