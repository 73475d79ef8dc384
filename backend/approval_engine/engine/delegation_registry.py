"""Delegation Registry - Who may act in place of whom"""
from datetime import date, datetime
from typing import Iterable, List, Optional, Protocol

from ..domain.models import Delegation
from ..utils.time import business_date
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DelegationSource(Protocol):
    """Read access to stored delegations (see DelegationRepository)"""

    def list_active_for_principal(self, principal_id: str) -> List[Delegation]:
        ...

    def list_active_for_delegate(self, delegate_id: str) -> List[Delegation]:
        ...


class DelegationRegistry:
    """
    Answer delegation queries at a point in time

    A delegation is in force when it is active, the business date of `now`
    falls inside [start_date, end_date] (inclusive), and each non-empty scope
    contains the given request type / company. A scope is not checked when
    the caller does not supply the value it filters on.
    """

    def __init__(self, source: DelegationSource, tz_name: Optional[str] = None):
        self.source = source
        self.tz_name = tz_name

    @staticmethod
    def is_delegation_active(
        delegation: Delegation,
        today: date,
        request_type: Optional[str] = None,
        company_id: Optional[str] = None
    ) -> bool:
        """Check one delegation against a business date and optional scope"""
        if not delegation.is_active:
            return False
        if not (delegation.start_date <= today <= delegation.end_date):
            return False
        if request_type and delegation.request_type_scope:
            if request_type.upper() not in delegation.request_type_scope:
                return False
        if company_id and delegation.company_scope:
            if company_id not in delegation.company_scope:
                return False
        return True

    def find_active_delegate(
        self,
        principal_id: str,
        now: datetime,
        request_type: Optional[str] = None,
        company_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Delegate currently acting for a principal

        Returns:
            Delegate employee ID, or None
        """
        delegation = self._first_active(
            self.source.list_active_for_principal(principal_id),
            now,
            request_type,
            company_id
        )
        return delegation.delegate_id if delegation else None

    def is_authorized(
        self,
        assigned_approver_id: str,
        acting_actor_id: str,
        request_type: Optional[str],
        company_id: Optional[str],
        now: datetime
    ) -> bool:
        """True if the actor is the approver or the approver's active delegate"""
        if acting_actor_id == assigned_approver_id:
            return True
        delegate_id = self.find_active_delegate(assigned_approver_id, now, request_type, company_id)
        return delegate_id is not None and delegate_id == acting_actor_id

    def principals_for(
        self,
        delegate_id: str,
        now: datetime,
        request_type: Optional[str] = None,
        company_id: Optional[str] = None
    ) -> List[str]:
        """Principals the delegate can currently act for"""
        today = business_date(now, self.tz_name)
        principals = []
        for delegation in self.source.list_active_for_delegate(delegate_id):
            if not self.is_delegation_active(delegation, today, request_type, company_id):
                continue
            # Only the principal's first active delegation is in force
            current = self.find_active_delegate(delegation.principal_id, now, request_type, company_id)
            if current == delegate_id and delegation.principal_id not in principals:
                principals.append(delegation.principal_id)
        return principals

    def _first_active(
        self,
        delegations: Iterable[Delegation],
        now: datetime,
        request_type: Optional[str],
        company_id: Optional[str]
    ) -> Optional[Delegation]:
        today = business_date(now, self.tz_name)
        candidates = [
            d for d in delegations
            if self.is_delegation_active(d, today, request_type, company_id)
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.warning(
                f"Principal {candidates[0].principal_id} has {len(candidates)} delegations in force; using earliest",
                extra={"delegation_id": candidates[0].delegation_id}
            )
        candidates.sort(key=lambda d: (d.start_date, d.created_at))
        return candidates[0]
