"""Delegation Repository - Data access for approval delegations"""
from typing import Any, Dict, List, Optional
from datetime import timedelta
from pymongo.collection import Collection
from pymongo import DESCENDING, ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection
from ..domain.models import Delegation
from ..domain.errors import DelegationNotFoundError
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DelegationRepository:
    """Repository for delegation operations"""

    def __init__(self):
        self._collection: Collection = get_collection("delegations")
        self._locks: Collection = get_collection("delegation_locks")

    def create_delegation(self, delegation: Delegation) -> Delegation:
        """Create a new delegation"""
        # Dates are stored as ISO strings; comparisons happen on the model
        doc = delegation.model_dump(mode="json")
        doc["_id"] = delegation.delegation_id
        self._collection.insert_one(doc)
        logger.info(
            f"Created delegation: {delegation.delegation_id}",
            extra={"delegation_id": delegation.delegation_id, "actor_id": delegation.principal_id}
        )
        return delegation

    def get_delegation(self, delegation_id: str) -> Optional[Delegation]:
        """Get delegation by ID"""
        doc = self._collection.find_one({"delegation_id": delegation_id})
        if doc:
            doc.pop("_id", None)
            return Delegation.model_validate(doc)
        return None

    def get_delegation_or_raise(self, delegation_id: str) -> Delegation:
        """Get delegation by ID or raise error"""
        delegation = self.get_delegation(delegation_id)
        if not delegation:
            raise DelegationNotFoundError(
                f"Delegation {delegation_id} not found",
                details={"delegation_id": delegation_id}
            )
        return delegation

    def update_delegation(self, delegation_id: str, updates: Dict[str, Any]) -> Delegation:
        """Update delegation fields (values must be JSON-ready)"""
        updates["updated_at"] = utc_now().isoformat()
        result = self._collection.find_one_and_update(
            {"delegation_id": delegation_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise DelegationNotFoundError(f"Delegation {delegation_id} not found")
        result.pop("_id", None)
        logger.info(f"Updated delegation: {delegation_id}", extra={"delegation_id": delegation_id})
        return Delegation.model_validate(result)

    def delete_delegation(self, delegation_id: str) -> bool:
        """Delete a delegation"""
        return self._collection.delete_one({"delegation_id": delegation_id}).deleted_count > 0

    # =========================================================================
    # Queries used by the delegation registry
    # =========================================================================

    def list_active_for_principal(self, principal_id: str) -> List[Delegation]:
        """Active (not revoked) delegations granted by a principal, oldest start first"""
        return self._find({"principal_id": principal_id, "is_active": True})

    def list_active_for_delegate(self, delegate_id: str) -> List[Delegation]:
        """Active (not revoked) delegations held by a delegate, oldest start first"""
        return self._find({"delegate_id": delegate_id, "is_active": True})

    # =========================================================================
    # Listing
    # =========================================================================

    def list_by_principal(self, principal_id: str, include_inactive: bool = True) -> List[Delegation]:
        """Delegations granted by an employee"""
        query: Dict[str, Any] = {"principal_id": principal_id}
        if not include_inactive:
            query["is_active"] = True
        return self._find(query, newest_first=True)

    def list_by_delegate(self, delegate_id: str, include_inactive: bool = True) -> List[Delegation]:
        """Delegations an employee holds"""
        query: Dict[str, Any] = {"delegate_id": delegate_id}
        if not include_inactive:
            query["is_active"] = True
        return self._find(query, newest_first=True)

    def _find(self, query: Dict[str, Any], newest_first: bool = False) -> List[Delegation]:
        order = DESCENDING if newest_first else ASCENDING
        cursor = self._collection.find(query).sort([("start_date", order), ("created_at", order)])
        delegations = []
        for doc in cursor:
            doc.pop("_id", None)
            delegations.append(Delegation.model_validate(doc))
        return delegations

    # =========================================================================
    # Per-principal write lock
    # =========================================================================

    def acquire_principal_lock(self, principal_id: str, lock_by: str, lock_duration_seconds: int = 30) -> bool:
        """
        Claim the right to write delegations for one principal.

        The overlap check and the insert that follows it run under this claim,
        so two concurrent grants for the same principal cannot both pass the
        check. An expired claim is taken over. False if someone else holds it.
        """
        now = utc_now()
        try:
            self._locks.find_one_and_update(
                {
                    "_id": principal_id,
                    "$or": [{"locked_until": None}, {"locked_until": {"$lte": now}}],
                },
                {"$set": {
                    "locked_until": now + timedelta(seconds=lock_duration_seconds),
                    "locked_by": lock_by,
                }},
                upsert=True
            )
        except DuplicateKeyError:
            # the row exists and its claim is still live
            return False
        return True

    def release_principal_lock(self, principal_id: str, lock_by: str) -> bool:
        """Drop the claim if lock_by still owns it"""
        return self._locks.update_one(
            {"_id": principal_id, "locked_by": lock_by},
            {"$set": {"locked_until": None, "locked_by": None}}
        ).modified_count > 0
