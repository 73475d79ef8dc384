"""
In-process outbox dispatcher.

Three APScheduler interval jobs drain the notification outbox: a delivery
cycle for due rows, a retry cycle for rows in backoff, and a sweep that
frees claims abandoned by dead processes. Every row is claimed through the
repository lock before it is sent, so several API processes can run their
own dispatcher against one database.
"""
import os
import socket
from typing import Dict, List, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..domain.models import NotificationOutbox
from ..repositories.notification_repo import NotificationRepository
from ..services.notification_service import NotificationService
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id, generate_id
from ..utils.time import utc_now

logger = get_logger(__name__)

RETRY_INTERVAL_MINUTES = 2
LOCK_SWEEP_INTERVAL_MINUTES = 5


class DevScheduler:

    def __init__(
        self,
        notification_repo: Optional[NotificationRepository] = None,
        notification_service: Optional[NotificationService] = None
    ):
        self.notification_repo = notification_repo or NotificationRepository()
        self.notification_service = notification_service or NotificationService(self.notification_repo)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{generate_id()[:8]}"
        self.delivered_total = 0

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        if self.is_running:
            logger.warning("Outbox dispatcher already running")
            return

        scheduler = AsyncIOScheduler()
        jobs = (
            (self._delivery_cycle, IntervalTrigger(seconds=settings.scheduler_interval_seconds)),
            (self._retry_cycle, IntervalTrigger(minutes=RETRY_INTERVAL_MINUTES)),
            (self._lock_sweep, IntervalTrigger(minutes=LOCK_SWEEP_INTERVAL_MINUTES)),
        )
        for job, trigger in jobs:
            scheduler.add_job(job, trigger=trigger, id=job.__name__.lstrip("_"), replace_existing=True)
        scheduler.start()
        self.scheduler = scheduler

        logger.info(
            f"Outbox dispatcher {self.worker_id} polling every {settings.scheduler_interval_seconds}s"
        )

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info(f"Outbox dispatcher {self.worker_id} stopped")

    # =========================================================================
    # Delivery
    # =========================================================================

    async def process_pending(self, limit: int = 50) -> Dict[str, int]:
        """Send one batch of due rows; counts processed, failed and skipped"""
        return await self._deliver(self.notification_repo.get_pending_notifications(limit=limit))

    async def _deliver(self, batch: List[NotificationOutbox]) -> Dict[str, int]:
        counts = {"processed": 0, "failed": 0, "skipped": 0}

        for notification in batch:
            claim = f"{self.worker_id}-{generate_id()[:8]}"
            if not self.notification_repo.acquire_lock(
                notification.notification_id,
                claim,
                lock_duration_seconds=settings.notification_lock_duration_seconds
            ):
                # Another worker got there first
                counts["skipped"] += 1
                continue

            try:
                delivered = await self.notification_service.send_notification(notification)
            except Exception as e:
                logger.error(
                    f"Dispatch of {notification.notification_id} crashed: {e}",
                    extra={"notification_id": notification.notification_id}
                )
                delivered = False
            finally:
                self.notification_repo.release_lock(notification.notification_id, claim)

            counts["processed" if delivered else "failed"] += 1

        self.delivered_total += counts["processed"]
        return counts

    # =========================================================================
    # Jobs
    # =========================================================================

    async def _delivery_cycle(self) -> None:
        set_correlation_id(generate_correlation_id())
        started = utc_now()
        try:
            counts = await self.process_pending()
        except Exception as e:
            logger.error(f"Delivery cycle aborted: {e}")
            return

        if counts["processed"] or counts["failed"]:
            elapsed_ms = round((utc_now() - started).total_seconds() * 1000, 1)
            logger.info(
                f"Delivery cycle: {counts['processed']} sent, {counts['failed']} failed, "
                f"{counts['skipped']} skipped in {elapsed_ms}ms (total sent {self.delivered_total})"
            )

    async def _retry_cycle(self) -> None:
        set_correlation_id(generate_correlation_id())
        try:
            due = self.notification_repo.get_failed_notifications_for_retry(limit=20)
            if due:
                counts = await self._deliver(due)
                logger.info(f"Retry cycle: {counts['processed']} sent, {counts['failed']} failed")
        except Exception as e:
            logger.error(f"Retry cycle aborted: {e}")

    async def _lock_sweep(self) -> None:
        try:
            self.notification_repo.cleanup_stale_locks(max_lock_age_minutes=settings.stale_lock_cleanup_minutes)
        except Exception as e:
            logger.error(f"Stale lock sweep aborted: {e}")


_scheduler: Optional[DevScheduler] = None


def get_scheduler() -> DevScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DevScheduler()
    return _scheduler


def start_scheduler() -> None:
    get_scheduler().start()


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
        _scheduler = None
