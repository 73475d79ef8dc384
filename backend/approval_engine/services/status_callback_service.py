"""Status Callback Service - Tell originating modules how their request ended

Each originating module (leave, expense, seal, ...) either registers an
in-process handler or configures a callback URL in
settings.status_callback_urls. Callbacks run after the instance is committed;
their failures are logged and swallowed.
"""
from typing import Callable, Dict, Optional
import httpx

from ..domain.enums import InstanceStatus
from ..domain.errors import StatusCallbackError
from ..domain.models import WorkflowInstance
from ..config.settings import settings
from ..utils.time import format_iso, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

# handler(request_type, request_id, outcome, decider_id, comment)
StatusHandler = Callable[[str, str, InstanceStatus, Optional[str], Optional[str]], None]


class StatusCallbackService:
    """Registry of per-request-type status handlers"""

    def __init__(self, url_map: Optional[Dict[str, str]] = None):
        self._handlers: Dict[str, StatusHandler] = {}
        self._url_map = url_map if url_map is not None else settings.status_callback_url_map

    def register(self, request_type: str, handler: StatusHandler) -> None:
        """Register (or replace) the handler of a request type"""
        self._handlers[request_type.upper()] = handler
        logger.info(f"Registered status handler for {request_type.upper()}")

    def unregister(self, request_type: str) -> None:
        self._handlers.pop(request_type.upper(), None)

    def has_target(self, request_type: str) -> bool:
        key = request_type.upper()
        return key in self._handlers or key in self._url_map

    def on_instance_finalized(
        self,
        request_type: str,
        request_id: str,
        outcome: InstanceStatus,
        decider_id: Optional[str] = None,
        comment: Optional[str] = None
    ) -> bool:
        """
        Notify the originating module of a final outcome.

        Returns True when a handler or URL accepted the callback.
        """
        key = request_type.upper()
        log_extra = {"request_type": key, "status": outcome.value}

        try:
            handler = self._handlers.get(key)
            if handler is not None:
                handler(key, request_id, outcome, decider_id, comment)
                logger.info(f"Status handler called for {key}/{request_id}", extra=log_extra)
                return True

            url = self._url_map.get(key)
            if url:
                self._post(url, key, request_id, outcome, decider_id, comment)
                logger.info(f"Status callback posted for {key}/{request_id}", extra=log_extra)
                return True

            logger.warning(f"No status callback registered for {key}; {request_id} not updated", extra=log_extra)
            return False

        except Exception as e:
            logger.error(
                f"Status callback failed for {key}/{request_id}: {e}",
                extra={**log_extra, "error_type": type(e).__name__}
            )
            return False

    def notify_instance(self, instance: WorkflowInstance) -> bool:
        """Callback for a finalized instance; never for cancellations"""
        if instance.status not in (InstanceStatus.APPROVED, InstanceStatus.REJECTED):
            return False
        return self.on_instance_finalized(
            instance.request_type,
            instance.request_id,
            instance.status,
            instance.final_decider_id,
            instance.final_comment
        )

    def _post(
        self,
        url: str,
        request_type: str,
        request_id: str,
        outcome: InstanceStatus,
        decider_id: Optional[str],
        comment: Optional[str]
    ) -> None:
        payload = {
            "request_type": request_type,
            "request_id": request_id,
            "outcome": outcome.value,
            "decider_id": decider_id,
            "comment": comment,
            "decided_at": format_iso(utc_now()),
        }
        with httpx.Client(timeout=settings.callback_timeout_seconds) as client:
            response = client.post(url, json=payload)
        if response.status_code >= 300:
            raise StatusCallbackError(
                f"Callback {url} returned {response.status_code}",
                details={"request_id": request_id, "response": response.text[:200]}
            )


# Process-wide registry; in-process handlers are registered once at startup
_callback_service: Optional[StatusCallbackService] = None


def get_status_callback_service() -> StatusCallbackService:
    """Get or create the shared callback registry"""
    global _callback_service
    if _callback_service is None:
        _callback_service = StatusCallbackService()
    return _callback_service
