"""Workflow Repository - Data access for definitions and version snapshots"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection
from ..domain.models import WorkflowDefinition, DefinitionVersion
from ..domain.enums import DefinitionScope
from ..domain.errors import DefinitionNotFoundError, ConcurrencyError, AlreadyExistsError
from ..utils.idgen import generate_definition_version_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WorkflowRepository:
    """Repository for workflow definition operations"""

    def __init__(self):
        self._definitions: Collection = get_collection("workflow_definitions")
        self._versions: Collection = get_collection("definition_versions")

    # =========================================================================
    # Definition CRUD
    # =========================================================================

    def create_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Create a new definition together with its first snapshot"""
        doc = definition.model_dump(mode="json")
        doc["_id"] = definition.definition_id

        try:
            self._definitions.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Definition {definition.definition_id} already exists")

        self.save_snapshot(definition)
        logger.info(
            f"Created definition: {definition.definition_id}",
            extra={"definition_id": definition.definition_id}
        )
        return definition

    def get_definition(self, definition_id: str) -> Optional[WorkflowDefinition]:
        """Get definition by ID"""
        doc = self._definitions.find_one({"definition_id": definition_id})
        if doc:
            doc.pop("_id", None)
            return WorkflowDefinition.model_validate(doc)
        return None

    def get_definition_or_raise(self, definition_id: str) -> WorkflowDefinition:
        """Get definition by ID or raise error"""
        definition = self.get_definition(definition_id)
        if not definition:
            raise DefinitionNotFoundError(
                f"Definition {definition_id} not found",
                details={"definition_id": definition_id}
            )
        return definition

    def update_definition(
        self,
        definition_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> WorkflowDefinition:
        """
        Update definition fields

        Args:
            definition_id: Definition ID
            updates: Fields to set (JSON-ready values)
            expected_version: When given, only update if the graph version still matches
        """
        updates["updated_at"] = utc_now().isoformat()

        filter_query: Dict[str, Any] = {"definition_id": definition_id}
        if expected_version is not None:
            filter_query["version"] = expected_version

        result = self._definitions.find_one_and_update(
            filter_query,
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            if expected_version is not None and self._definitions.find_one({"definition_id": definition_id}):
                raise ConcurrencyError(
                    f"Definition {definition_id} was modified. Please refresh and try again.",
                    details={"expected_version": expected_version}
                )
            raise DefinitionNotFoundError(f"Definition {definition_id} not found")

        result.pop("_id", None)
        logger.info(f"Updated definition: {definition_id}", extra={"definition_id": definition_id})
        return WorkflowDefinition.model_validate(result)

    def delete_definition(self, definition_id: str) -> bool:
        """Delete a definition and its snapshots"""
        result = self._definitions.delete_one({"definition_id": definition_id})
        self._versions.delete_many({"definition_id": definition_id})
        return result.deleted_count > 0

    def list_definitions(
        self,
        company_id: Optional[str] = None,
        scope: Optional[DefinitionScope] = None,
        request_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowDefinition]:
        """List definitions with optional filters"""
        query = self._build_query(company_id, scope, request_type, is_active)
        cursor = self._definitions.find(query).sort("updated_at", DESCENDING).skip(skip).limit(limit)

        definitions = []
        for doc in cursor:
            doc.pop("_id", None)
            definitions.append(WorkflowDefinition.model_validate(doc))
        return definitions

    def count_definitions(
        self,
        company_id: Optional[str] = None,
        scope: Optional[DefinitionScope] = None,
        request_type: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> int:
        """Count definitions with optional filters"""
        return self._definitions.count_documents(self._build_query(company_id, scope, request_type, is_active))

    def _build_query(
        self,
        company_id: Optional[str],
        scope: Optional[DefinitionScope],
        request_type: Optional[str],
        is_active: Optional[bool]
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if company_id:
            query["company_id"] = company_id
        if scope:
            query["scope"] = scope.value
        if request_type:
            query["request_type"] = request_type.upper()
        if is_active is not None:
            query["is_active"] = is_active
        return query

    # =========================================================================
    # Applicability
    # =========================================================================

    def find_candidates(
        self,
        scope: DefinitionScope,
        company_id: str,
        request_type: Optional[str] = None,
        employee_id: Optional[str] = None
    ) -> List[WorkflowDefinition]:
        """
        Active definitions of one scope tier for a company, newest first

        Company-less definitions apply to every company and rank after the
        company's own. Effective-window filtering is left to the caller.
        """
        query: Dict[str, Any] = {
            "scope": scope.value,
            "is_active": True,
            "company_id": {"$in": [company_id, None]},
        }
        if scope == DefinitionScope.REQUEST_TYPE:
            query["request_type"] = (request_type or "").upper()
        elif scope == DefinitionScope.EMPLOYEE:
            query["employee_id"] = employee_id
            if request_type:
                query["request_type"] = {"$in": [request_type.upper(), None]}

        cursor = self._definitions.find(query).sort("updated_at", DESCENDING)
        definitions = []
        for doc in cursor:
            doc.pop("_id", None)
            definitions.append(WorkflowDefinition.model_validate(doc))

        # Exact company and exact request type first, stable otherwise
        definitions.sort(key=lambda d: (d.company_id is None, d.request_type is None))
        return definitions

    # =========================================================================
    # Version snapshots
    # =========================================================================

    def save_snapshot(self, definition: WorkflowDefinition) -> DefinitionVersion:
        """Store an immutable copy of the definition at its current version"""
        snapshot = DefinitionVersion(
            definition_version_id=generate_definition_version_id(),
            definition_id=definition.definition_id,
            version=definition.version,
            definition=definition,
            created_at=utc_now()
        )
        doc = snapshot.model_dump(mode="json")
        doc["_id"] = snapshot.definition_version_id
        try:
            self._versions.insert_one(doc)
        except DuplicateKeyError:
            raise ConcurrencyError(
                f"Definition {definition.definition_id} version {definition.version} already exists",
                details={"definition_id": definition.definition_id, "version": definition.version}
            )
        return snapshot

    def get_version(self, definition_id: str, version: int) -> Optional[WorkflowDefinition]:
        """Definition exactly as it was at a version"""
        doc = self._versions.find_one({"definition_id": definition_id, "version": version})
        if doc:
            doc.pop("_id", None)
            return DefinitionVersion.model_validate(doc).definition
        return None

    def get_version_or_raise(self, definition_id: str, version: int) -> WorkflowDefinition:
        """Snapshot at a version, falling back to the live document if it matches"""
        definition = self.get_version(definition_id, version)
        if definition is None:
            live = self.get_definition(definition_id)
            if live is not None and live.version == version:
                return live
            raise DefinitionNotFoundError(
                f"Definition {definition_id} version {version} not found",
                details={"definition_id": definition_id, "version": version}
            )
        return definition

    def list_versions(self, definition_id: str) -> List[DefinitionVersion]:
        """All snapshots of a definition, newest first"""
        cursor = self._versions.find({"definition_id": definition_id}).sort("version", DESCENDING)
        versions = []
        for doc in cursor:
            doc.pop("_id", None)
            versions.append(DefinitionVersion.model_validate(doc))
        return versions
