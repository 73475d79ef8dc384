"""Workflow Service - Definition management business logic"""
from typing import Any, Dict, List, Optional
from datetime import datetime

from ..domain.models import WorkflowDefinition, NodeTemplate, EdgeTemplate, DefinitionVersion
from ..domain.enums import DefinitionScope
from ..domain.errors import (
    DefinitionNotFoundError, WorkflowValidationError, ValidationError, InvalidStateError
)
from ..engine.graph_router import GraphRouter
from ..repositories.workflow_repo import WorkflowRepository
from ..repositories.instance_repo import InstanceRepository
from ..utils.idgen import generate_definition_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Scope tiers, most specific first
APPLICABILITY_ORDER = (DefinitionScope.EMPLOYEE, DefinitionScope.REQUEST_TYPE, DefinitionScope.DEFAULT)

METADATA_FIELDS = frozenset({
    "name", "description", "scope", "company_id", "request_type",
    "employee_id", "effective_from", "effective_to"
})


class WorkflowService:
    """Service for workflow definition operations"""

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        instance_repo: Optional[InstanceRepository] = None,
        router: Optional[GraphRouter] = None
    ):
        self.repo = repo or WorkflowRepository()
        self.instance_repo = instance_repo or InstanceRepository()
        self.router = router or GraphRouter()

    # =========================================================================
    # Create / Read
    # =========================================================================

    def create_definition(
        self,
        name: str,
        nodes: List[NodeTemplate],
        edges: List[EdgeTemplate],
        scope: DefinitionScope = DefinitionScope.DEFAULT,
        description: Optional[str] = None,
        company_id: Optional[str] = None,
        request_type: Optional[str] = None,
        employee_id: Optional[str] = None,
        is_active: bool = True,
        effective_from: Optional[datetime] = None,
        effective_to: Optional[datetime] = None,
        actor_id: Optional[str] = None
    ) -> WorkflowDefinition:
        """Create a validated definition at version 1"""
        now = utc_now()
        definition = WorkflowDefinition(
            definition_id=generate_definition_id(),
            name=name,
            description=description,
            scope=scope,
            company_id=company_id,
            request_type=request_type,
            employee_id=employee_id,
            is_active=is_active,
            effective_from=effective_from,
            effective_to=effective_to,
            version=1,
            nodes=nodes,
            edges=edges,
            created_by=actor_id,
            created_at=now,
            updated_at=now
        )
        self.ensure_valid(definition)
        return self.repo.create_definition(definition)

    def get_definition(self, definition_id: str) -> WorkflowDefinition:
        """Get definition by ID"""
        return self.repo.get_definition_or_raise(definition_id)

    def get_definition_version(self, definition_id: str, version: int) -> WorkflowDefinition:
        """Definition as it was at a version"""
        return self.repo.get_version_or_raise(definition_id, version)

    def list_versions(self, definition_id: str) -> List[DefinitionVersion]:
        self.repo.get_definition_or_raise(definition_id)
        return self.repo.list_versions(definition_id)

    def list_definitions(
        self,
        company_id: Optional[str] = None,
        scope: Optional[DefinitionScope] = None,
        request_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowDefinition]:
        """List definitions"""
        return self.repo.list_definitions(
            company_id=company_id, scope=scope, request_type=request_type,
            is_active=is_active, skip=skip, limit=limit
        )

    def count_definitions(
        self,
        company_id: Optional[str] = None,
        scope: Optional[DefinitionScope] = None,
        request_type: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> int:
        """Count definitions"""
        return self.repo.count_definitions(
            company_id=company_id, scope=scope, request_type=request_type, is_active=is_active
        )

    # =========================================================================
    # Update
    # =========================================================================

    def update_graph(
        self,
        definition_id: str,
        nodes: List[NodeTemplate],
        edges: List[EdgeTemplate],
        expected_version: Optional[int] = None
    ) -> WorkflowDefinition:
        """
        Replace the graph, bump the version and snapshot it

        Running instances keep the version they started with.
        """
        current = self.repo.get_definition_or_raise(definition_id)
        if expected_version is None:
            expected_version = current.version

        candidate = current.model_copy(update={
            "nodes": nodes,
            "edges": edges,
            "version": expected_version + 1
        })
        self.ensure_valid(candidate)

        updated = self.repo.update_definition(
            definition_id,
            {
                "nodes": [n.model_dump(mode="json") for n in nodes],
                "edges": [e.model_dump(mode="json") for e in edges],
                "version": candidate.version
            },
            expected_version=expected_version
        )
        self.repo.save_snapshot(updated)

        logger.info(
            f"Definition {definition_id} redesigned: v{expected_version} -> v{updated.version}",
            extra={"definition_id": definition_id}
        )
        return updated

    def update_metadata(self, definition_id: str, updates: Dict[str, Any]) -> WorkflowDefinition:
        """Change name, scope, targeting or effective window (version unchanged)"""
        unknown = set(updates) - METADATA_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated here: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        current = self.repo.get_definition_or_raise(definition_id)
        candidate = WorkflowDefinition.model_validate({**current.model_dump(), **updates})
        problems = self._scope_problems(candidate)
        if problems:
            raise WorkflowValidationError("Invalid definition settings", details={"errors": problems})

        json_ready = candidate.model_dump(mode="json", include=set(updates))
        return self.repo.update_definition(definition_id, json_ready)

    def activate(self, definition_id: str) -> WorkflowDefinition:
        """Make a definition eligible for new instances"""
        definition = self.repo.get_definition_or_raise(definition_id)
        self.ensure_valid(definition)
        return self.repo.update_definition(definition_id, {"is_active": True})

    def deactivate(self, definition_id: str) -> WorkflowDefinition:
        """Stop new instances from using a definition; running ones continue"""
        self.repo.get_definition_or_raise(definition_id)
        return self.repo.update_definition(definition_id, {"is_active": False})

    def duplicate(
        self,
        definition_id: str,
        name: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> WorkflowDefinition:
        """Inactive copy of a definition at version 1"""
        source = self.repo.get_definition_or_raise(definition_id)
        now = utc_now()
        copy = source.model_copy(deep=True, update={
            "definition_id": generate_definition_id(),
            "name": name or f"{source.name} (copy)",
            "is_active": False,
            "version": 1,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now
        })
        created = self.repo.create_definition(copy)
        logger.info(
            f"Duplicated definition {definition_id} as {created.definition_id}",
            extra={"definition_id": created.definition_id}
        )
        return created

    def delete_definition(self, definition_id: str) -> None:
        """Delete a definition no running instance uses"""
        self.repo.get_definition_or_raise(definition_id)
        active = self.instance_repo.count_active_for_definition(definition_id)
        if active:
            raise InvalidStateError(
                f"Definition {definition_id} is used by {active} active instance(s)",
                details={"definition_id": definition_id, "active_instances": active}
            )
        self.repo.delete_definition(definition_id)
        logger.info(f"Deleted definition {definition_id}", extra={"definition_id": definition_id})

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, definition: WorkflowDefinition) -> Dict[str, Any]:
        """Graph and scope problems, without raising"""
        errors = self.router.validate(definition) + self._scope_problems(definition)
        return {"is_valid": not errors, "errors": errors}

    def ensure_valid(self, definition: WorkflowDefinition) -> None:
        """Raise WorkflowValidationError listing every problem"""
        result = self.validate(definition)
        if not result["is_valid"]:
            raise WorkflowValidationError(
                f"Definition '{definition.name}' is invalid ({len(result['errors'])} problem(s))",
                details={"errors": result["errors"]}
            )

    @staticmethod
    def _scope_problems(definition: WorkflowDefinition) -> List[Dict[str, Any]]:
        problems: List[Dict[str, Any]] = []
        if definition.scope == DefinitionScope.REQUEST_TYPE and not definition.request_type:
            problems.append({
                "code": "MISSING_REQUEST_TYPE",
                "message": "REQUEST_TYPE definitions need a request_type"
            })
        if definition.scope == DefinitionScope.EMPLOYEE and not definition.employee_id:
            problems.append({
                "code": "MISSING_EMPLOYEE",
                "message": "EMPLOYEE definitions need an employee_id"
            })
        if (
            definition.effective_from and definition.effective_to
            and definition.effective_to < definition.effective_from
        ):
            problems.append({
                "code": "EFFECTIVE_RANGE",
                "message": "effective_to is before effective_from"
            })
        return problems

    # =========================================================================
    # Applicability
    # =========================================================================

    def find_applicable(
        self,
        company_id: str,
        request_type: str,
        employee_id: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> WorkflowDefinition:
        """
        The definition that governs a request

        Priority: employee override > request-type definition > company default.
        Only active definitions inside their effective window qualify.

        Raises:
            DefinitionNotFoundError: Nothing applies
        """
        at = at or utc_now()
        for scope in APPLICABILITY_ORDER:
            if scope == DefinitionScope.EMPLOYEE and not employee_id:
                continue
            for candidate in self.repo.find_candidates(scope, company_id, request_type, employee_id):
                if candidate.is_effective(at):
                    logger.info(
                        f"Applicable definition for {request_type}: {candidate.definition_id} ({scope.value})",
                        extra={"definition_id": candidate.definition_id, "request_type": request_type}
                    )
                    return candidate

        raise DefinitionNotFoundError(
            f"No active workflow applies to {request_type} in company {company_id}",
            details={"company_id": company_id, "request_type": request_type, "employee_id": employee_id}
        )
