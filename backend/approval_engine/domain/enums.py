"""Domain Enumerations - All status and type definitions"""
from enum import Enum
from typing import Dict, FrozenSet


class NodeType(str, Enum):
    """Vertex kinds in a workflow graph"""
    START = "START"
    APPROVAL = "APPROVAL"
    CONDITION = "CONDITION"  # Routes immediately on entry
    PARALLEL_FORK = "PARALLEL_FORK"  # Activates one lane per outgoing edge
    PARALLEL_JOIN = "PARALLEL_JOIN"  # Waits for every lane of its fork
    END = "END"


class QuorumMode(str, Enum):
    """When a multi-approver step counts as decided"""
    ANY = "ANY"
    ALL = "ALL"
    MAJORITY = "MAJORITY"


class ApproverStrategy(str, Enum):
    """How to resolve the approvers of an approval node"""
    SPECIFIC_EMPLOYEE = "SPECIFIC_EMPLOYEE"
    DIRECT_SUPERVISOR = "DIRECT_SUPERVISOR"
    POSITION = "POSITION"
    SPECIFIC_POSITION = "SPECIFIC_POSITION"  # Alias of POSITION kept for legacy definitions
    ROLE = "ROLE"
    POSITION_LEVEL = "POSITION_LEVEL"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    ORG_RELATION = "ORG_RELATION"


class OrgRelation(str, Enum):
    """Supervisor-chain walks for ORG_RELATION strategy"""
    DIRECT_SUPERVISOR = "DIRECT_SUPERVISOR"
    N_LEVEL_UP = "N_LEVEL_UP"
    DEPARTMENT_MANAGER = "DEPARTMENT_MANAGER"
    COMPANY_HEAD = "COMPANY_HEAD"


class ConditionOperator(str, Enum):
    """Operators for edge conditions"""
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GT = "GT"
    LT = "LT"
    GTE = "GTE"
    LTE = "LTE"
    CONTAINS = "CONTAINS"
    IN = "IN"
    NOT_IN = "NOT_IN"


class DefinitionScope(str, Enum):
    """Applicability tier of a workflow definition (highest priority last)"""
    DEFAULT = "DEFAULT"
    REQUEST_TYPE = "REQUEST_TYPE"
    EMPLOYEE = "EMPLOYEE"


class InstanceStatus(str, Enum):
    """Lifecycle status of a workflow instance"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})

# PENDING may finalize directly when the very first step decides the instance
ALLOWED_TRANSITIONS: Dict[InstanceStatus, FrozenSet[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.IN_PROGRESS: frozenset({
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}


class RecordStatus(str, Enum):
    """Status of one approval record"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"  # Closed because the instance ended elsewhere


class DecisionAction(str, Enum):
    """What an approver can do on a record"""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    RETURN = "RETURN"


class QuorumOutcome(str, Enum):
    """Result of quorum evaluation"""
    STILL_PENDING = "STILL_PENDING"
    SATISFIED = "SATISFIED"
    FAILED = "FAILED"
    RETURNED = "RETURNED"


class BranchStatus(str, Enum):
    """Runtime state of an execution lane"""
    ACTIVE = "ACTIVE"
    WAITING_FOR_BRANCHES = "WAITING_FOR_BRANCHES"  # Parent lane parked at a fork
    AT_JOIN = "AT_JOIN"  # Child lane arrived at its join
    MERGED = "MERGED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AssignmentStatus(str, Enum):
    """Org assignment status"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class NotificationKind(str, Enum):
    """Notification kinds sent by the engine"""
    APPROVAL_REQUEST = "APPROVAL_REQUEST"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    APPROVAL_CC = "APPROVAL_CC"
    DELEGATION_ASSIGNED = "DELEGATION_ASSIGNED"


class NotificationStatus(str, Enum):
    """Notification outbox status"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class AuditEventType(str, Enum):
    """Engine events recorded in the audit trail"""
    INSTANCE_STARTED = "INSTANCE_STARTED"
    STEP_ASSIGNED = "STEP_ASSIGNED"
    DECISION_RECORDED = "DECISION_RECORDED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_RETURNED = "STEP_RETURNED"
    STEP_SKIPPED = "STEP_SKIPPED"
    FORK_ACTIVATED = "FORK_ACTIVATED"
    JOIN_COMPLETED = "JOIN_COMPLETED"
    INSTANCE_APPROVED = "INSTANCE_APPROVED"
    INSTANCE_REJECTED = "INSTANCE_REJECTED"
    INSTANCE_CANCELLED = "INSTANCE_CANCELLED"
