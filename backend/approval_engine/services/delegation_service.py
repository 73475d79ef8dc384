"""Delegation Service - Grant, change and revoke approval delegations"""
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from ..domain.models import Delegation
from ..domain.errors import ValidationError, DelegationOverlapError, AuthorizationError, ConcurrencyError
from ..repositories.delegation_repo import DelegationRepository
from ..repositories.org_directory_repo import OrgDirectoryRepository
from .notification_service import NotificationService
from ..utils.idgen import generate_delegation_id, generate_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({
    "delegate_id", "start_date", "end_date", "request_type_scope", "company_scope", "reason"
})


class DelegationService:
    """Service for delegation operations"""

    def __init__(
        self,
        repo: Optional[DelegationRepository] = None,
        directory: Optional[OrgDirectoryRepository] = None,
        notification_service: Optional[NotificationService] = None
    ):
        self.repo = repo or DelegationRepository()
        self.directory = directory or OrgDirectoryRepository()
        self.notification_service = notification_service or NotificationService()

    def create_delegation(
        self,
        principal_id: str,
        delegate_id: str,
        start_date: date,
        end_date: date,
        request_type_scope: Optional[List[str]] = None,
        company_scope: Optional[List[str]] = None,
        reason: Optional[str] = None
    ) -> Delegation:
        """
        Grant a delegation and tell the delegate

        Raises:
            ValidationError: Self-delegation, inverted window or inactive delegate
            DelegationOverlapError: Principal already delegates in that window
            ConcurrencyError: Another request is changing this principal's delegations
        """
        self._check_fields(principal_id, delegate_id, start_date, end_date)

        now = utc_now()
        delegation = Delegation(
            delegation_id=generate_delegation_id(),
            principal_id=principal_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            request_type_scope=request_type_scope or [],
            company_scope=company_scope or [],
            reason=reason,
            is_active=True,
            created_at=now,
            updated_at=now
        )
        with self._principal_lock(principal_id):
            self._check_overlap(principal_id, start_date, end_date)
            created = self.repo.create_delegation(delegation)
        self.notification_service.notify_delegation_assigned(created)
        return created

    def update_delegation(
        self,
        delegation_id: str,
        updates: Dict[str, Any],
        actor_id: Optional[str] = None
    ) -> Delegation:
        """Change a delegation, re-running the creation checks"""
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        current = self.repo.get_delegation_or_raise(delegation_id)
        self._check_owner(current, actor_id)

        merged = {**current.model_dump(), **updates}
        self._check_fields(merged["principal_id"], merged["delegate_id"], merged["start_date"], merged["end_date"])
        candidate = Delegation.model_validate(merged)
        with self._principal_lock(current.principal_id):
            if current.is_active:
                self._check_overlap(
                    current.principal_id, merged["start_date"], merged["end_date"], exclude_id=delegation_id
                )
            updated = self.repo.update_delegation(delegation_id, candidate.model_dump(mode="json", include=set(updates)))
        if updated.delegate_id != current.delegate_id:
            self.notification_service.notify_delegation_assigned(updated)
        return updated

    def revoke_delegation(self, delegation_id: str, actor_id: Optional[str] = None) -> Delegation:
        """Deactivate a delegation; the delegate loses authority immediately"""
        current = self.repo.get_delegation_or_raise(delegation_id)
        self._check_owner(current, actor_id)
        revoked = self.repo.update_delegation(delegation_id, {"is_active": False})
        logger.info(f"Revoked delegation {delegation_id}", extra={"delegation_id": delegation_id})
        return revoked

    def delete_delegation(self, delegation_id: str, actor_id: Optional[str] = None) -> None:
        current = self.repo.get_delegation_or_raise(delegation_id)
        self._check_owner(current, actor_id)
        self.repo.delete_delegation(delegation_id)
        logger.info(f"Deleted delegation {delegation_id}", extra={"delegation_id": delegation_id})

    def get_delegation(self, delegation_id: str) -> Delegation:
        return self.repo.get_delegation_or_raise(delegation_id)

    def list_delegations(
        self,
        principal_id: Optional[str] = None,
        delegate_id: Optional[str] = None,
        include_inactive: bool = True
    ) -> List[Delegation]:
        """Delegations granted by a principal and/or held by a delegate"""
        if principal_id and delegate_id:
            return [
                d for d in self.repo.list_by_principal(principal_id, include_inactive)
                if d.delegate_id == delegate_id
            ]
        if principal_id:
            return self.repo.list_by_principal(principal_id, include_inactive)
        if delegate_id:
            return self.repo.list_by_delegate(delegate_id, include_inactive)
        raise ValidationError("Give principal_id or delegate_id")

    @contextmanager
    def _principal_lock(self, principal_id: str):
        """Hold the principal's write lock around an overlap check and its write"""
        holder = generate_id("LCK")
        if not self.repo.acquire_principal_lock(principal_id, holder):
            raise ConcurrencyError(
                f"Delegations for {principal_id} are being changed by another request",
                details={"principal_id": principal_id}
            )
        try:
            yield
        finally:
            self.repo.release_principal_lock(principal_id, holder)

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_fields(self, principal_id: str, delegate_id: str, start_date: date, end_date: date) -> None:
        if principal_id == delegate_id:
            raise ValidationError(
                "An employee cannot delegate to themselves",
                details={"principal_id": principal_id}
            )
        if end_date < start_date:
            raise ValidationError(
                "end_date must not be before start_date",
                details={"start_date": str(start_date), "end_date": str(end_date)}
            )
        if not self.directory.has_active_assignment(delegate_id):
            raise ValidationError(
                f"Delegate {delegate_id} has no active assignment",
                details={"delegate_id": delegate_id}
            )

    def _check_overlap(
        self,
        principal_id: str,
        start_date: date,
        end_date: date,
        exclude_id: Optional[str] = None
    ) -> None:
        for existing in self.repo.list_active_for_principal(principal_id):
            if existing.delegation_id == exclude_id:
                continue
            if existing.overlaps(start_date, end_date):
                raise DelegationOverlapError(
                    f"{principal_id} already delegates to {existing.delegate_id} "
                    f"from {existing.start_date} to {existing.end_date}",
                    details={"delegation_id": existing.delegation_id}
                )

    @staticmethod
    def _check_owner(delegation: Delegation, actor_id: Optional[str]) -> None:
        if actor_id is not None and actor_id != delegation.principal_id:
            raise AuthorizationError(
                "Only the principal can change a delegation",
                details={"delegation_id": delegation.delegation_id}
            )
