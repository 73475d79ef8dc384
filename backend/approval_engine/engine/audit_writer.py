"""Audit Writer - Append-only audit events"""
from typing import List, Optional

from ..domain.models import AuditEvent, EngineEvent
from ..repositories.audit_repo import AuditRepository
from ..utils.idgen import generate_audit_event_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AuditWriter:
    """
    Write audit events (append-only)

    Every state change of an instance produces an engine event; this class
    turns them into persisted audit events sharing the request's correlation ID.
    """

    def __init__(self, repo: Optional[AuditRepository] = None):
        self.repo = repo or AuditRepository()

    def write_engine_events(
        self,
        events: List[EngineEvent],
        correlation_id: Optional[str] = None
    ) -> List[AuditEvent]:
        """Persist the events of one engine run, keeping their order"""
        if not events:
            return []

        timestamp = utc_now()
        audit_events = [
            AuditEvent(
                audit_event_id=generate_audit_event_id(),
                instance_id=event.instance_id,
                record_id=event.record_id,
                node_id=event.node_id,
                event_type=event.event_type,
                actor_id=event.actor_id,
                details=event.details,
                timestamp=timestamp,
                sequence=index,
                correlation_id=correlation_id
            )
            for index, event in enumerate(events)
        ]
        return self.repo.create_events_bulk(audit_events)
