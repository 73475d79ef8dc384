"""Org Directory Repository - Read model of the organization snapshot"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ASCENDING

from .mongo_client import get_collection
from ..domain.models import OrgAssignment
from ..domain.enums import AssignmentStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OrgDirectoryRepository:
    """
    Employee assignments inside companies

    The snapshot is written by an external sync (or the seed script); the
    engine only reads it through the DirectoryResolver.
    """

    def __init__(self):
        self._collection: Collection = get_collection("org_assignments")

    def get_active_assignment(self, employee_id: str, company_id: str) -> Optional[OrgAssignment]:
        """Active assignment of an employee in a company, primary one preferred"""
        cursor = self._collection.find({
            "employee_id": employee_id,
            "company_id": company_id,
            "status": AssignmentStatus.ACTIVE.value
        }).sort("is_primary", DESCENDING).limit(1)
        for doc in cursor:
            doc.pop("_id", None)
            return OrgAssignment.model_validate(doc)
        return None

    def list_assignments(
        self,
        company_id: str,
        department_id: Optional[str] = None,
        position_id: Optional[str] = None,
        role_id: Optional[str] = None,
        min_level: Optional[int] = None
    ) -> List[OrgAssignment]:
        """Active assignments in a company matching every given filter"""
        query: Dict[str, Any] = {
            "company_id": company_id,
            "status": AssignmentStatus.ACTIVE.value
        }
        if department_id is not None:
            query["department_id"] = department_id
        if position_id is not None:
            query["position_id"] = position_id
        if role_id is not None:
            query["role_id"] = role_id
        if min_level is not None:
            query["position_level"] = {"$gte": min_level}

        cursor = self._collection.find(query).sort("employee_id", ASCENDING)
        assignments = []
        for doc in cursor:
            doc.pop("_id", None)
            assignments.append(OrgAssignment.model_validate(doc))
        return assignments

    def has_active_assignment(self, employee_id: str, company_id: Optional[str] = None) -> bool:
        """Whether an employee is active somewhere (or in one company)"""
        query: Dict[str, Any] = {"employee_id": employee_id, "status": AssignmentStatus.ACTIVE.value}
        if company_id:
            query["company_id"] = company_id
        return self._collection.count_documents(query, limit=1) > 0

    def upsert_assignment(self, assignment: OrgAssignment) -> OrgAssignment:
        """Insert or replace an employee's assignment in a company"""
        doc = assignment.model_dump(mode="json")
        self._collection.replace_one(
            {"employee_id": assignment.employee_id, "company_id": assignment.company_id},
            doc,
            upsert=True
        )
        logger.debug(f"Upserted assignment: {assignment.employee_id}@{assignment.company_id}")
        return assignment
