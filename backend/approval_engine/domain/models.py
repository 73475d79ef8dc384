"""Domain Models - Pydantic schemas for all entities"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .enums import (
    NodeType, QuorumMode, ApproverStrategy, OrgRelation, ConditionOperator,
    DefinitionScope, InstanceStatus, RecordStatus, DecisionAction, BranchStatus,
    AssignmentStatus, NotificationKind, NotificationStatus, AuditEventType
)
from ..utils.time import ensure_utc


MAIN_BRANCH_ID = "main"


# ============================================================================
# Condition & Graph Templates
# ============================================================================

class Condition(BaseModel):
    """Guard on an edge: context[field] <operator> value"""
    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., description="Context field, dot notation allowed")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(None, description="Literal to compare against")


class NodeTemplate(BaseModel):
    """Vertex of a workflow graph"""
    model_config = ConfigDict(extra="ignore")

    node_id: str = Field(..., description="Unique node ID within the definition")
    node_type: NodeType
    name: str = Field(default="", description="Display name")
    # Approval nodes only
    approver_strategy: Optional[ApproverStrategy] = None
    strategy_param: Optional[str] = Field(
        None,
        description="Employee ID, position ID, role ID or minimum level depending on strategy"
    )
    org_relation: Optional[OrgRelation] = Field(None, description="Chain walk for ORG_RELATION")
    org_level_up: int = Field(default=1, ge=1, description="Hops for N_LEVEL_UP")
    quorum_mode: QuorumMode = Field(default=QuorumMode.ANY)
    is_optional: bool = Field(default=False, description="Skip instead of failing when nobody resolves")

    @property
    def display_name(self) -> str:
        return self.name or self.node_id


class EdgeTemplate(BaseModel):
    """Directed edge between two nodes"""
    model_config = ConfigDict(extra="ignore")

    edge_id: Optional[str] = None
    from_node_id: str
    to_node_id: str
    condition: Optional[Condition] = None
    is_default: bool = False
    sort_order: int = 0


# ============================================================================
# Workflow Definition & Version
# ============================================================================

class WorkflowDefinition(BaseModel):
    """Approval graph plus the scope it applies to"""
    model_config = ConfigDict(extra="ignore")

    definition_id: str = Field(..., description="Unique definition ID")
    name: str
    description: Optional[str] = None
    scope: DefinitionScope = Field(default=DefinitionScope.DEFAULT)
    company_id: Optional[str] = Field(None, description="None applies to every company")
    request_type: Optional[str] = Field(None, description="Required for REQUEST_TYPE scope")
    employee_id: Optional[str] = Field(None, description="Required for EMPLOYEE scope")
    is_active: bool = True
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    version: int = Field(default=1, description="Graph version, bumped on redesign")
    nodes: List[NodeTemplate] = Field(default_factory=list)
    edges: List[EdgeTemplate] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("request_type")
    @classmethod
    def _upper_request_type(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    def get_node(self, node_id: str) -> Optional[NodeTemplate]:
        """Find node by ID"""
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def get_start_node(self) -> Optional[NodeTemplate]:
        """The single START node, if present"""
        for node in self.nodes:
            if node.node_type == NodeType.START:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[EdgeTemplate]:
        """Outgoing edges ordered by sort_order (declaration order breaks ties)"""
        edges = [e for e in self.edges if e.from_node_id == node_id]
        return sorted(edges, key=lambda e: e.sort_order)

    def is_effective(self, at: datetime) -> bool:
        """Active and inside the effective window"""
        if not self.is_active:
            return False
        at = ensure_utc(at)
        if self.effective_from and ensure_utc(self.effective_from) > at:
            return False
        if self.effective_to and ensure_utc(self.effective_to) < at:
            return False
        return True


class DefinitionVersion(BaseModel):
    """Immutable snapshot of a definition at one version"""
    model_config = ConfigDict(extra="ignore")

    definition_version_id: str
    definition_id: str
    version: int
    definition: WorkflowDefinition
    created_at: datetime


# ============================================================================
# Organization Snapshot
# ============================================================================

class OrgAssignment(BaseModel):
    """An employee's position in one company"""
    model_config = ConfigDict(extra="ignore")

    employee_id: str
    company_id: str
    display_name: Optional[str] = None
    department_id: Optional[str] = None
    position_id: Optional[str] = None
    position_level: int = 0
    role_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    is_primary: bool = True
    status: AssignmentStatus = Field(default=AssignmentStatus.ACTIVE)


# ============================================================================
# Instance Runtime Models
# ============================================================================

class Decision(BaseModel):
    """One actor's decision on an approval record"""
    model_config = ConfigDict(extra="ignore")

    actor_id: str
    action: DecisionAction
    comment: Optional[str] = None
    decided_at: datetime
    acting_as_delegate_for: Optional[str] = Field(None, description="Principal when decided by a delegate")

    @property
    def principal_id(self) -> str:
        """Whose approval this decision counts as"""
        return self.acting_as_delegate_for or self.actor_id


class ApprovalRecord(BaseModel):
    """Per-step ledger of assignees and decisions"""
    model_config = ConfigDict(extra="ignore")

    record_id: str
    node_id: str
    node_name: str = ""
    branch_id: str = MAIN_BRANCH_ID
    assigned_approver_ids: List[str] = Field(default_factory=list)
    quorum_mode: QuorumMode = Field(default=QuorumMode.ANY)
    status: RecordStatus = Field(default=RecordStatus.PENDING)
    decisions: List[Decision] = Field(default_factory=list)
    assigned_at: datetime
    completed_at: Optional[datetime] = None
    previous_record_id: Optional[str] = Field(None, description="Approval record RETURN goes back to")

    @field_validator("assigned_approver_ids")
    @classmethod
    def _as_set(cls, v: List[str]) -> List[str]:
        return sorted(set(v))

    @property
    def is_open(self) -> bool:
        return self.status == RecordStatus.PENDING

    def has_decided(self, employee_id: str) -> bool:
        """True when the employee already decided, directly or through a delegate"""
        return any(
            d.actor_id == employee_id or d.principal_id == employee_id
            for d in self.decisions
        )


class BranchState(BaseModel):
    """Runtime state of one execution lane"""
    model_config = ConfigDict(extra="ignore")

    branch_id: str
    parent_branch_id: Optional[str] = Field(None, description="Lane that forked this one")
    fork_node_id: Optional[str] = Field(None, description="Fork that created this lane")
    join_node_id: Optional[str] = Field(None, description="Join this lane arrived at")
    current_node_id: Optional[str] = None
    current_record_id: Optional[str] = None
    last_record_id: Optional[str] = Field(None, description="Most recent closed approval record in this lane")
    status: BranchStatus = Field(default=BranchStatus.ACTIVE)
    started_at: datetime
    completed_at: Optional[datetime] = None


class WorkflowInstance(BaseModel):
    """One execution of a definition bound to one business request"""
    model_config = ConfigDict(extra="ignore")

    instance_id: str
    definition_id: str
    definition_version: int
    request_type: str
    request_id: str
    applicant_id: str
    company_id: str
    context_data: Dict[str, Any] = Field(default_factory=dict)
    status: InstanceStatus = Field(default=InstanceStatus.PENDING)
    is_active: bool = Field(default=True, description="False once terminal; backs the unique request index")
    current_node_id: Optional[str] = None
    current_node_ids: List[str] = Field(default_factory=list, description="Current node of every active lane")
    branches: List[BranchState] = Field(default_factory=list)
    approval_records: List[ApprovalRecord] = Field(default_factory=list)
    submitted_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    final_decider_id: Optional[str] = None
    final_comment: Optional[str] = None
    version: int = Field(default=1, description="Optimistic concurrency version")

    @field_validator("request_type")
    @classmethod
    def _upper_request_type(cls, v: str) -> str:
        return v.upper()

    def get_record(self, record_id: str) -> Optional[ApprovalRecord]:
        for record in self.approval_records:
            if record.record_id == record_id:
                return record
        return None

    def get_branch(self, branch_id: str) -> Optional[BranchState]:
        for branch in self.branches:
            if branch.branch_id == branch_id:
                return branch
        return None

    def open_records(self) -> List[ApprovalRecord]:
        return [r for r in self.approval_records if r.is_open]


# ============================================================================
# Delegation
# ============================================================================

class Delegation(BaseModel):
    """Time-bounded grant letting a delegate decide for a principal"""
    model_config = ConfigDict(extra="ignore")

    delegation_id: str
    principal_id: str
    delegate_id: str
    start_date: date
    end_date: date
    request_type_scope: List[str] = Field(default_factory=list, description="Empty = all request types")
    company_scope: List[str] = Field(default_factory=list, description="Empty = all companies")
    reason: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @field_validator("request_type_scope")
    @classmethod
    def _upper_scope(cls, v: List[str]) -> List[str]:
        return [t.upper() for t in v]

    @model_validator(mode="after")
    def _check_window(self) -> "Delegation":
        if self.principal_id == self.delegate_id:
            raise ValueError("principal_id and delegate_id must differ")
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and start <= self.end_date


# ============================================================================
# Engine Events & Results
# ============================================================================

class EngineEvent(BaseModel):
    """Something the runner did; feeds audit and notifications"""
    model_config = ConfigDict(extra="forbid")

    event_type: AuditEventType
    instance_id: str
    record_id: Optional[str] = None
    node_id: Optional[str] = None
    actor_id: Optional[str] = None
    recipients: List[str] = Field(default_factory=list, description="Employees to notify, if any")
    details: Dict[str, Any] = Field(default_factory=dict)


class RunResult(BaseModel):
    """Updated instance plus the events produced while updating it"""
    model_config = ConfigDict(extra="forbid")

    instance: WorkflowInstance
    events: List[EngineEvent] = Field(default_factory=list)

    @property
    def finalized(self) -> bool:
        return self.instance.status in (InstanceStatus.APPROVED, InstanceStatus.REJECTED)


class PendingApproval(BaseModel):
    """An open record an employee can act on"""
    model_config = ConfigDict(extra="forbid")

    instance_id: str
    record_id: str
    node_id: str
    node_name: str
    request_type: str
    request_id: str
    applicant_id: str
    company_id: str
    assigned_approver_ids: List[str]
    quorum_mode: QuorumMode
    assigned_at: datetime
    acting_as_delegate_for: Optional[str] = None


# ============================================================================
# Notification Outbox
# ============================================================================

class NotificationOutbox(BaseModel):
    """Notification in outbox"""
    model_config = ConfigDict(extra="ignore")  # Allow extra fields from DB

    notification_id: str
    recipient_id: str
    kind: NotificationKind
    title: str
    message: str
    link: Optional[str] = None
    ref_type: Optional[str] = None
    ref_id: Optional[str] = None
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    retry_count: int = Field(default=0)
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    locked_by: Optional[str] = None
    lock_acquired_at: Optional[datetime] = None
    created_at: datetime
    sent_at: Optional[datetime] = None


# ============================================================================
# Audit Event
# ============================================================================

class AuditEvent(BaseModel):
    """Audit event (append-only)"""
    model_config = ConfigDict(extra="ignore")

    audit_event_id: str
    instance_id: str
    record_id: Optional[str] = None
    node_id: Optional[str] = None
    event_type: AuditEventType
    actor_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    sequence: int = Field(default=0, description="Order of events sharing a timestamp")
    correlation_id: Optional[str] = None
