"""Append-only store of audit events per workflow instance"""
from typing import Any, Dict, List, Optional
from pymongo import ASCENDING
from pymongo.collection import Collection

from .mongo_client import get_collection
from ..domain.models import AuditEvent
from ..domain.enums import AuditEventType
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Events written in one batch share a timestamp; sequence keeps their order
_TRAIL_ORDER = [("timestamp", ASCENDING), ("sequence", ASCENDING)]


def _to_document(event: AuditEvent) -> Dict[str, Any]:
    doc = event.model_dump(mode="json")
    doc["_id"] = event.audit_event_id
    return doc


class AuditRepository:
    """Audit events are only ever inserted, never updated or removed"""

    def __init__(self):
        self._events: Collection = get_collection("audit_events")

    def create_event(self, event: AuditEvent) -> AuditEvent:
        self._events.insert_one(_to_document(event))
        logger.debug(
            f"Audit {event.event_type.value}",
            extra={"instance_id": event.instance_id, "actor_id": event.actor_id}
        )
        return event

    def create_events_bulk(self, events: List[AuditEvent]) -> List[AuditEvent]:
        if events:
            self._events.insert_many([_to_document(e) for e in events], ordered=True)
            logger.debug(
                f"Audit batch of {len(events)}",
                extra={"instance_id": events[0].instance_id}
            )
        return events

    def get_events_for_instance(
        self,
        instance_id: str,
        event_types: Optional[List[AuditEventType]] = None,
        skip: int = 0,
        limit: int = 200
    ) -> List[AuditEvent]:
        """Trail of one instance, oldest first, optionally filtered by event type"""
        query: Dict[str, Any] = {"instance_id": instance_id}
        if event_types:
            query["event_type"] = {"$in": [t.value for t in event_types]}

        cursor = self._events.find(query, {"_id": 0}).sort(_TRAIL_ORDER).skip(skip).limit(limit)
        return [AuditEvent.model_validate(doc) for doc in cursor]
