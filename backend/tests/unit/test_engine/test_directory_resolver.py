"""Tests for approver resolution against the org snapshot"""
import pytest

from approval_engine.domain.enums import ApproverStrategy as S, OrgRelation, NodeType, AssignmentStatus
from approval_engine.domain.models import NodeTemplate
from approval_engine.engine.directory_resolver import DirectoryResolver


@pytest.fixture
def resolver(directory):
    return DirectoryResolver(directory, department_head_min_level=3, max_supervisor_hops=10)


class TestStrategies:

    def test_specific_employee(self, resolver):
        assert resolver.resolve(S.SPECIFIC_EMPLOYEE, "E777", "E400", "C1") == {"E777"}
        assert resolver.resolve(S.SPECIFIC_EMPLOYEE, None, "E400", "C1") == set()

    def test_direct_supervisor(self, resolver):
        assert resolver.resolve(S.DIRECT_SUPERVISOR, None, "E400", "C1") == {"E300"}
        assert resolver.resolve(S.DIRECT_SUPERVISOR, None, "E100", "C1") == set()

    def test_unknown_applicant(self, resolver):
        assert resolver.resolve(S.DIRECT_SUPERVISOR, None, "NOBODY", "C1") == set()
        assert resolver.resolve(S.DIRECT_SUPERVISOR, None, "E400", "OTHER") == set()

    def test_position_and_legacy_alias(self, resolver):
        assert resolver.resolve(S.POSITION, "P-MGR", "E400", "C1") == {"E200", "E201"}
        assert resolver.resolve(S.SPECIFIC_POSITION, "P-MGR", "E400", "C1") == {"E200", "E201"}

    def test_role(self, resolver):
        assert resolver.resolve(S.ROLE, "FIN", "E400", "C1") == {"E100", "E300"}

    def test_position_level(self, resolver):
        assert resolver.resolve(S.POSITION_LEVEL, "3", "E400", "C1") == {"E100", "E200", "E201"}
        assert resolver.resolve(S.POSITION_LEVEL, "high", "E400", "C1") == set()

    def test_department_head_takes_top_level(self, resolver):
        assert resolver.resolve(S.DEPARTMENT_HEAD, None, "E400", "C1") == {"E100"}

    def test_department_head_returns_ties(self, directory):
        resolver = DirectoryResolver(directory, department_head_min_level=3)
        directory.assignments = [a for a in directory.assignments if a.employee_id != "E100"]
        assert resolver.resolve(S.DEPARTMENT_HEAD, None, "E400", "C1") == {"E200", "E201"}

    def test_department_head_below_threshold(self, directory):
        resolver = DirectoryResolver(directory, department_head_min_level=9)
        assert resolver.resolve(S.DEPARTMENT_HEAD, None, "E400", "C1") == set()

    def test_inactive_assignments_are_ignored(self, resolver, directory):
        for a in directory.assignments:
            if a.employee_id == "E201":
                a.status = AssignmentStatus.INACTIVE
        assert resolver.resolve(S.POSITION, "P-MGR", "E400", "C1") == {"E200"}


class TestOrgRelation:

    def test_n_level_up(self, resolver):
        assert resolver.resolve_relation(OrgRelation.N_LEVEL_UP, 1, "E400", "C1") == {"E300"}
        assert resolver.resolve_relation(OrgRelation.N_LEVEL_UP, 3, "E400", "C1") == {"E100"}
        assert resolver.resolve_relation(OrgRelation.N_LEVEL_UP, 4, "E400", "C1") == set()

    def test_company_head(self, resolver):
        assert resolver.resolve_relation(OrgRelation.COMPANY_HEAD, 1, "E400", "C1") == {"E100"}

    def test_department_manager_stops_at_department_boundary(self, resolver, directory):
        for a in directory.assignments:
            if a.employee_id == "E100":
                a.department_id = "BOARD"
        assert resolver.resolve_relation(OrgRelation.DEPARTMENT_MANAGER, 1, "E400", "C1") == {"E200"}

    def test_supervisor_cycle_terminates(self, directory):
        for a in directory.assignments:
            if a.employee_id == "E100":
                a.supervisor_id = "E400"
        resolver = DirectoryResolver(directory, max_supervisor_hops=50)
        assert resolver.resolve_relation(OrgRelation.COMPANY_HEAD, 1, "E400", "C1") == {"E100"}

    def test_resolve_node_uses_relation_settings(self, resolver):
        node = NodeTemplate(
            node_id="n", node_type=NodeType.APPROVAL,
            approver_strategy=S.ORG_RELATION, org_relation=OrgRelation.N_LEVEL_UP, org_level_up=2
        )
        assert resolver.resolve_node(node, "E400", "C1") == {"E200"}
