"""Directory Resolver - Who must approve an approval node

Answers role queries against the organization snapshot. Resolution never
raises for "nobody found"; it returns an empty set and the caller decides
whether that is fatal for the node.
"""
from typing import List, Optional, Protocol, Set

from ..config.settings import settings
from ..domain.models import NodeTemplate, OrgAssignment
from ..domain.enums import ApproverStrategy, OrgRelation
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OrgDirectory(Protocol):
    """Read access to the org snapshot (see OrgDirectoryRepository)"""

    def get_active_assignment(self, employee_id: str, company_id: str) -> Optional[OrgAssignment]:
        ...

    def list_assignments(
        self,
        company_id: str,
        department_id: Optional[str] = None,
        position_id: Optional[str] = None,
        role_id: Optional[str] = None,
        min_level: Optional[int] = None,
    ) -> List[OrgAssignment]:
        ...


class DirectoryResolver:
    """Resolve approver strategies to employee IDs"""

    def __init__(
        self,
        directory: OrgDirectory,
        department_head_min_level: Optional[int] = None,
        max_supervisor_hops: Optional[int] = None
    ):
        self.directory = directory
        self.department_head_min_level = (
            department_head_min_level
            if department_head_min_level is not None
            else settings.department_head_min_level
        )
        self.max_supervisor_hops = max_supervisor_hops or settings.max_supervisor_hops

    def resolve_node(self, node: NodeTemplate, applicant_id: str, company_id: str) -> Set[str]:
        """Resolve the approvers of an approval node"""
        if node.approver_strategy is None:
            return set()
        if node.approver_strategy == ApproverStrategy.ORG_RELATION:
            approvers = self.resolve_relation(
                node.org_relation or OrgRelation.DIRECT_SUPERVISOR,
                node.org_level_up,
                applicant_id,
                company_id
            )
        else:
            approvers = self.resolve(node.approver_strategy, node.strategy_param, applicant_id, company_id)

        logger.info(
            f"Resolved {len(approvers)} approver(s) for node {node.node_id} via {node.approver_strategy.value}",
            extra={"node_id": node.node_id, "actor_id": applicant_id}
        )
        return approvers

    def resolve(
        self,
        strategy: ApproverStrategy,
        strategy_param: Optional[str],
        applicant_id: str,
        company_id: str
    ) -> Set[str]:
        """
        Resolve a strategy to a set of employee IDs

        Args:
            strategy: Approver strategy
            strategy_param: Employee/position/role ID or minimum level
            applicant_id: Employee who submitted the request
            company_id: Company the request belongs to

        Returns:
            Employee IDs, possibly empty
        """
        if strategy == ApproverStrategy.SPECIFIC_EMPLOYEE:
            return {strategy_param} if strategy_param else set()

        if strategy == ApproverStrategy.DIRECT_SUPERVISOR:
            return self._direct_supervisor(applicant_id, company_id)

        if strategy in (ApproverStrategy.POSITION, ApproverStrategy.SPECIFIC_POSITION):
            if not strategy_param:
                return set()
            return self._ids(self.directory.list_assignments(company_id, position_id=strategy_param))

        if strategy == ApproverStrategy.ROLE:
            if not strategy_param:
                return set()
            return self._ids(self.directory.list_assignments(company_id, role_id=strategy_param))

        if strategy == ApproverStrategy.POSITION_LEVEL:
            min_level = self._parse_level(strategy_param)
            if min_level is None:
                return set()
            return self._ids(self.directory.list_assignments(company_id, min_level=min_level))

        if strategy == ApproverStrategy.DEPARTMENT_HEAD:
            return self._department_head(applicant_id, company_id)

        if strategy == ApproverStrategy.ORG_RELATION:
            # Bare strategy call without node settings: nearest supervisor
            return self.resolve_relation(OrgRelation.DIRECT_SUPERVISOR, 1, applicant_id, company_id)

        return set()

    def resolve_relation(
        self,
        relation: OrgRelation,
        levels_up: int,
        applicant_id: str,
        company_id: str
    ) -> Set[str]:
        """Walk the supervisor chain for an ORG_RELATION node"""
        if relation == OrgRelation.DIRECT_SUPERVISOR:
            return self._direct_supervisor(applicant_id, company_id)

        chain = self._supervisor_chain(applicant_id, company_id)

        if relation == OrgRelation.N_LEVEL_UP:
            if levels_up < 1 or len(chain) < levels_up:
                return set()
            return {chain[levels_up - 1].employee_id}

        if relation == OrgRelation.DEPARTMENT_MANAGER:
            applicant = self.directory.get_active_assignment(applicant_id, company_id)
            if applicant is None or applicant.department_id is None:
                return set()
            manager: Optional[OrgAssignment] = None
            for link in chain:
                if link.department_id != applicant.department_id:
                    break
                manager = link
            return {manager.employee_id} if manager else set()

        if relation == OrgRelation.COMPANY_HEAD:
            return {chain[-1].employee_id} if chain else set()

        return set()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _direct_supervisor(self, applicant_id: str, company_id: str) -> Set[str]:
        assignment = self.directory.get_active_assignment(applicant_id, company_id)
        if assignment is None or not assignment.supervisor_id:
            return set()
        return {assignment.supervisor_id}

    def _department_head(self, applicant_id: str, company_id: str) -> Set[str]:
        """Highest-level holders in the applicant's department, at or above the threshold"""
        applicant = self.directory.get_active_assignment(applicant_id, company_id)
        if applicant is None or applicant.department_id is None:
            return set()
        candidates = self.directory.list_assignments(
            company_id,
            department_id=applicant.department_id,
            min_level=self.department_head_min_level
        )
        if not candidates:
            return set()
        top_level = max(c.position_level for c in candidates)
        return {c.employee_id for c in candidates if c.position_level == top_level}

    def _supervisor_chain(self, employee_id: str, company_id: str) -> List[OrgAssignment]:
        """Assignments above the employee, nearest first; stops on cycles and the hop limit"""
        chain: List[OrgAssignment] = []
        visited = {employee_id}
        current = self.directory.get_active_assignment(employee_id, company_id)

        while current is not None and current.supervisor_id and len(chain) < self.max_supervisor_hops:
            supervisor_id = current.supervisor_id
            if supervisor_id in visited:
                logger.warning(
                    f"Supervisor cycle detected at {supervisor_id} while walking from {employee_id}",
                    extra={"actor_id": employee_id}
                )
                break
            visited.add(supervisor_id)
            supervisor = self.directory.get_active_assignment(supervisor_id, company_id)
            if supervisor is None:
                break
            chain.append(supervisor)
            current = supervisor

        return chain

    @staticmethod
    def _parse_level(value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            logger.warning(f"Invalid POSITION_LEVEL parameter: {value!r}")
            return None

    @staticmethod
    def _ids(assignments: List[OrgAssignment]) -> Set[str]:
        return {a.employee_id for a in assignments}
