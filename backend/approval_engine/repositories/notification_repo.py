"""
Notification outbox storage.

Rows are written inside the engine's request path and drained later by the
dispatcher. A row is claimed by setting locked_until/locked_by in a single
find_one_and_update, so two dispatcher processes never send the same row.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from .mongo_client import get_collection
from ..domain.models import NotificationOutbox
from ..domain.enums import NotificationStatus
from ..domain.errors import NotFoundError
from ..utils.logger import get_logger
from ..utils.time import utc_now
from ..config.settings import settings

logger = get_logger(__name__)

_UNLOCK = {"locked_until": None, "locked_by": None, "lock_acquired_at": None}


def _lock_free(now: datetime) -> Dict[str, Any]:
    return {"$or": [{"locked_until": None}, {"locked_until": {"$lte": now}}]}


def _due(now: datetime) -> Dict[str, Any]:
    return {"$or": [{"next_retry_at": None}, {"next_retry_at": {"$lte": now}}]}


def _backoff(attempts_so_far: int) -> timedelta:
    """1, 2, 4, 8... minutes"""
    return timedelta(minutes=2 ** attempts_so_far)


class NotificationRepository:

    def __init__(self):
        self._outbox: Collection = get_collection("notification_outbox")

    def _find(self, query: Dict[str, Any], sort_key: str = "created_at", direction: int = ASCENDING,
              skip: int = 0, limit: int = 0) -> List[NotificationOutbox]:
        cursor = self._outbox.find(query, {"_id": 0}).sort(sort_key, direction).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [NotificationOutbox.model_validate(doc) for doc in cursor]

    def _update(self, notification_id: str, fields: Dict[str, Any]) -> NotificationOutbox:
        doc = self._outbox.find_one_and_update(
            {"notification_id": notification_id},
            {"$set": fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return NotificationOutbox.model_validate(doc)

    # =========================================================================
    # Writes from the engine
    # =========================================================================

    def create_notification(self, notification: NotificationOutbox) -> NotificationOutbox:
        # model_dump() without json mode keeps datetimes queryable
        doc = notification.model_dump()
        doc["_id"] = notification.notification_id
        self._outbox.insert_one(doc)

        logger.info(
            f"Outbox <- {notification.kind.value} for {notification.recipient_id}",
            extra={"notification_id": notification.notification_id, "actor_id": notification.recipient_id}
        )
        return notification

    def get_notification(self, notification_id: str) -> Optional[NotificationOutbox]:
        doc = self._outbox.find_one({"notification_id": notification_id}, {"_id": 0})
        return NotificationOutbox.model_validate(doc) if doc else None

    def list_for_recipient(
        self,
        recipient_id: str,
        ref_id: Optional[str] = None,
        limit: int = 100
    ) -> List[NotificationOutbox]:
        """An employee's notifications, newest first"""
        query: Dict[str, Any] = {"recipient_id": recipient_id}
        if ref_id:
            query["ref_id"] = ref_id
        return self._find(query, direction=DESCENDING, limit=limit)

    def list_for_ref(self, ref_id: str) -> List[NotificationOutbox]:
        """Everything queued about one instance or delegation, in queue order"""
        return self._find({"ref_id": ref_id})

    # =========================================================================
    # Dispatcher side
    # =========================================================================

    def get_pending_notifications(self, limit: int = 100) -> List[NotificationOutbox]:
        """PENDING rows that are unclaimed and due; empty on storage errors"""
        now = utc_now()
        query = {"status": NotificationStatus.PENDING.value, "$and": [_due(now), _lock_free(now)]}
        try:
            return self._find(query, limit=limit)
        except PyMongoError as e:
            logger.error(f"Outbox scan failed: {e}")
            return []

    def get_failed_notifications_for_retry(self, limit: int = 50) -> List[NotificationOutbox]:
        """Rows that failed at least once and whose backoff has elapsed"""
        now = utc_now()
        query = {
            "status": NotificationStatus.PENDING.value,
            "retry_count": {"$gt": 0},
            "next_retry_at": {"$lte": now},
            **_lock_free(now),
        }
        return self._find(query, sort_key="next_retry_at", limit=limit)

    def get_failed_notifications(self, skip: int = 0, limit: int = 50) -> List[NotificationOutbox]:
        """Dead letters: rows that used up notification_max_retries"""
        return self._find({"status": NotificationStatus.FAILED.value}, skip=skip, limit=limit)

    def acquire_lock(self, notification_id: str, lock_by: str, lock_duration_seconds: int = 60) -> bool:
        """Claim a PENDING row for lock_by; False if someone else holds it"""
        now = utc_now()
        claim = {
            "locked_until": now + timedelta(seconds=lock_duration_seconds),
            "locked_by": lock_by,
            "lock_acquired_at": now,
        }
        try:
            claimed = self._outbox.find_one_and_update(
                {"notification_id": notification_id, "status": NotificationStatus.PENDING.value, **_lock_free(now)},
                {"$set": claim}
            )
        except PyMongoError as e:
            logger.error(f"Claiming {notification_id} failed: {e}", extra={"notification_id": notification_id})
            return False

        return claimed is not None

    def release_lock(self, notification_id: str, lock_by: Optional[str] = None) -> bool:
        """Drop the claim; with lock_by, only when that holder still owns it"""
        query: Dict[str, Any] = {"notification_id": notification_id}
        if lock_by:
            query["locked_by"] = lock_by
        try:
            return self._outbox.update_one(query, {"$set": _UNLOCK}).modified_count > 0
        except PyMongoError as e:
            logger.error(f"Releasing {notification_id} failed: {e}", extra={"notification_id": notification_id})
            return False

    def cleanup_stale_locks(self, max_lock_age_minutes: int = 10) -> int:
        """Free claims whose holder died; returns how many were freed"""
        cutoff = utc_now() - timedelta(minutes=max_lock_age_minutes)
        try:
            freed = self._outbox.update_many(
                {"locked_by": {"$ne": None}, "locked_until": {"$lte": cutoff}},
                {"$set": _UNLOCK}
            ).modified_count
        except PyMongoError as e:
            logger.error(f"Stale lock sweep failed: {e}")
            return 0

        if freed:
            logger.warning(f"Freed {freed} stale outbox claims")
        return freed

    def mark_sent(self, notification_id: str) -> NotificationOutbox:
        sent = self._update(notification_id, {
            "status": NotificationStatus.SENT.value,
            "sent_at": utc_now(),
            **_UNLOCK,
        })
        logger.info(f"Outbox -> sent {notification_id}", extra={"notification_id": notification_id})
        return sent

    def mark_failed(self, notification_id: str, error: str) -> NotificationOutbox:
        """
        Record a failed delivery attempt.

        The row goes back to PENDING with an exponential backoff, or to FAILED
        once retry_count reaches notification_max_retries.
        """
        current = self.get_notification(notification_id)
        if current is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        attempts = current.retry_count + 1
        exhausted = attempts >= settings.notification_max_retries
        status = NotificationStatus.FAILED if exhausted else NotificationStatus.PENDING

        updated = self._update(notification_id, {
            "status": status.value,
            "retry_count": attempts,
            "last_error": error,
            "next_retry_at": None if exhausted else utc_now() + _backoff(current.retry_count),
            **_UNLOCK,
        })
        logger.warning(
            f"Delivery attempt {attempts} failed for {notification_id}: {error}",
            extra={"notification_id": notification_id, "status": status.value}
        )
        return updated
