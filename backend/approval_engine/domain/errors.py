"""
Engine exceptions.

Every failure the engine reports to a caller is a DomainError subclass
carrying a stable error_code and the HTTP status the API maps it to.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """{"error": {"code", "message", "details"}} as returned by the API"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# 400 - bad input
# =============================================================================

class ValidationError(DomainError):
    error_code = "VALIDATION_ERROR"


class WorkflowValidationError(ValidationError):
    """Graph problems; details["errors"] lists each {code, message, node_id}"""
    error_code = "WORKFLOW_VALIDATION_ERROR"


# =============================================================================
# 403 - actor may not do this
# =============================================================================

class AuthorizationError(DomainError):
    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class UnauthorizedActorError(AuthorizationError):
    """Actor is not an assigned approver of the step nor standing in for one"""
    error_code = "UNAUTHORIZED"


# =============================================================================
# 404
# =============================================================================

class NotFoundError(DomainError):
    error_code = "NOT_FOUND"
    http_status = 404


class DefinitionNotFoundError(NotFoundError):
    """Unknown definition id, or no active definition applies to the request"""
    error_code = "DEFINITION_NOT_FOUND"


class InstanceNotFoundError(NotFoundError):
    error_code = "INSTANCE_NOT_FOUND"


class DelegationNotFoundError(NotFoundError):
    error_code = "DELEGATION_NOT_FOUND"


# =============================================================================
# 409 - state conflicts
# =============================================================================

class ConflictError(DomainError):
    error_code = "CONFLICT"
    http_status = 409


class ConcurrencyError(ConflictError):
    """Stored version moved on since the caller read it"""
    error_code = "CONCURRENCY_CONFLICT"


class InvalidStateError(ConflictError):
    error_code = "INVALID_STATE"


class InstanceTerminalError(InvalidStateError):
    """Instance is APPROVED, REJECTED or CANCELLED"""
    error_code = "INSTANCE_TERMINAL"


class StepMismatchError(ConflictError):
    """Record is unknown, already closed, or not the step being decided"""
    error_code = "STEP_MISMATCH"


class AlreadyExistsError(ConflictError):
    error_code = "ALREADY_EXISTS"


class ActiveInstanceExistsError(AlreadyExistsError):
    error_code = "ACTIVE_INSTANCE_EXISTS"


class DelegationOverlapError(ConflictError):
    """Principal already delegates for part of the requested window"""
    error_code = "DELEGATION_OVERLAP"


# =============================================================================
# Routing failures
# =============================================================================

class EngineError(DomainError):
    error_code = "ENGINE_ERROR"
    http_status = 500


class StalledRouteError(EngineError):
    """Traversal reached a node with no edge it can follow"""
    error_code = "STALLED_ROUTE"


class ApproverResolutionError(EngineError):
    error_code = "APPROVER_RESOLUTION_ERROR"
    http_status = 400


class NoApproverResolvedError(ApproverResolutionError):
    """A required approval step resolved to nobody; nothing is persisted"""
    error_code = "NO_APPROVER_RESOLVED"

    def __init__(self, node_id: str, node_name: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        label = f"'{node_name}' ({node_id})" if node_name else node_id
        super().__init__(
            f"No approver could be resolved for step {label}",
            details={"node_id": node_id, "node_name": node_name, **(details or {})}
        )
        self.node_id = node_id


# =============================================================================
# Outbound calls
# =============================================================================

class ExternalServiceError(DomainError):
    error_code = "EXTERNAL_SERVICE_ERROR"
    http_status = 502


class NotificationDeliveryError(ExternalServiceError):
    error_code = "NOTIFICATION_DELIVERY_ERROR"


class StatusCallbackError(ExternalServiceError):
    error_code = "STATUS_CALLBACK_ERROR"
