"""Instance Repository - Data access for workflow instances and their approval records"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ASCENDING
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection
from ..domain.models import WorkflowInstance
from ..domain.enums import InstanceStatus, RecordStatus
from ..domain.errors import InstanceNotFoundError, ConcurrencyError, ActiveInstanceExistsError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class InstanceRepository:
    """
    Repository for workflow instances

    Approval records, decisions and lane state are embedded in the instance
    document, so one conditional update commits a whole decision atomically.
    """

    def __init__(self):
        self._instances: Collection = get_collection("workflow_instances")

    # =========================================================================
    # Instance CRUD
    # =========================================================================

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Insert a new instance"""
        # Don't use mode="json" - it converts datetime to strings, breaking MongoDB sorting
        doc = instance.model_dump()
        doc["_id"] = instance.instance_id

        try:
            self._instances.insert_one(doc)
        except DuplicateKeyError:
            raise ActiveInstanceExistsError(
                f"Request {instance.request_type}/{instance.request_id} already has an active workflow",
                details={"request_type": instance.request_type, "request_id": instance.request_id}
            )
        logger.info(
            f"Created instance: {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "request_type": instance.request_type}
        )
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Get instance by ID"""
        doc = self._instances.find_one({"instance_id": instance_id})
        if doc:
            doc.pop("_id", None)
            return WorkflowInstance.model_validate(doc)
        return None

    def get_instance_or_raise(self, instance_id: str) -> WorkflowInstance:
        """Get instance by ID or raise error"""
        instance = self.get_instance(instance_id)
        if not instance:
            raise InstanceNotFoundError(
                f"Instance {instance_id} not found",
                details={"instance_id": instance_id}
            )
        return instance

    def save_instance(self, instance: WorkflowInstance, expected_version: int) -> WorkflowInstance:
        """
        Replace the instance if nobody else saved it since it was read

        Args:
            instance: Updated instance (its version is bumped here)
            expected_version: Version the caller read

        Raises:
            ConcurrencyError: Another writer got there first
            InstanceNotFoundError: Instance does not exist
        """
        instance.version = expected_version + 1
        doc = instance.model_dump()
        doc.pop("instance_id", None)

        result = self._instances.update_one(
            {"instance_id": instance.instance_id, "version": expected_version},
            {"$set": doc}
        )

        if result.matched_count == 0:
            if self._instances.count_documents({"instance_id": instance.instance_id}, limit=1):
                raise ConcurrencyError(
                    f"Instance {instance.instance_id} was modified concurrently",
                    details={"instance_id": instance.instance_id, "expected_version": expected_version}
                )
            raise InstanceNotFoundError(f"Instance {instance.instance_id} not found")

        logger.info(
            f"Saved instance: {instance.instance_id} v{instance.version}",
            extra={"instance_id": instance.instance_id, "status": instance.status.value}
        )
        return instance

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active_by_request(self, request_type: str, request_id: str) -> Optional[WorkflowInstance]:
        """The non-terminal instance of a request reference, if any"""
        doc = self._instances.find_one({
            "request_type": request_type.upper(),
            "request_id": request_id,
            "is_active": True
        })
        if doc:
            doc.pop("_id", None)
            return WorkflowInstance.model_validate(doc)
        return None

    def get_latest_by_request(self, request_type: str, request_id: str) -> Optional[WorkflowInstance]:
        """Most recent instance (active or not) of a request reference"""
        cursor = self._instances.find({
            "request_type": request_type.upper(),
            "request_id": request_id
        }).sort("submitted_at", DESCENDING).limit(1)
        for doc in cursor:
            doc.pop("_id", None)
            return WorkflowInstance.model_validate(doc)
        return None

    def list_instances(
        self,
        applicant_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        request_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowInstance]:
        """List instances with filters"""
        query: Dict[str, Any] = {}
        if applicant_id:
            query["applicant_id"] = applicant_id
        if status:
            query["status"] = status.value
        if request_type:
            query["request_type"] = request_type.upper()

        cursor = self._instances.find(query).sort("submitted_at", DESCENDING).skip(skip).limit(limit)
        instances = []
        for doc in cursor:
            doc.pop("_id", None)
            instances.append(WorkflowInstance.model_validate(doc))
        return instances

    def find_with_open_records_for(self, approver_ids: List[str]) -> List[WorkflowInstance]:
        """Active instances with an open record assigned to any of the given employees"""
        if not approver_ids:
            return []
        cursor = self._instances.find({
            "is_active": True,
            "approval_records": {
                "$elemMatch": {
                    "status": RecordStatus.PENDING.value,
                    "assigned_approver_ids": {"$in": approver_ids}
                }
            }
        }).sort("submitted_at", ASCENDING)

        instances = []
        for doc in cursor:
            doc.pop("_id", None)
            instances.append(WorkflowInstance.model_validate(doc))
        return instances

    def count_active_for_definition(self, definition_id: str) -> int:
        """Active instances referencing a definition"""
        return self._instances.count_documents({"definition_id": definition_id, "is_active": True})
