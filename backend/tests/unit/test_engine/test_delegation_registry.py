"""Tests for delegation lookups"""
from datetime import date, datetime, timezone

import pytest

from approval_engine.engine.delegation_registry import DelegationRegistry


def at(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def registry(delegations):
    return DelegationRegistry(delegations, tz_name="UTC")


class TestWindow:

    def test_inclusive_bounds(self, registry, delegations):
        delegations.add("E200", "E201", start=date(2026, 3, 5), end=date(2026, 3, 7))
        assert registry.find_active_delegate("E200", at(2026, 3, 4)) is None
        assert registry.find_active_delegate("E200", at(2026, 3, 5, 0)) == "E201"
        assert registry.find_active_delegate("E200", at(2026, 3, 7, 23)) == "E201"
        assert registry.find_active_delegate("E200", at(2026, 3, 8, 0)) is None

    def test_window_follows_business_timezone(self, delegations):
        delegations.add("E200", "E201", start=date(2026, 3, 5), end=date(2026, 3, 5))
        registry = DelegationRegistry(delegations, tz_name="Asia/Tokyo")
        # 20:00 UTC on the 4th is already the 5th in Tokyo
        assert registry.find_active_delegate("E200", at(2026, 3, 4, 20)) == "E201"
        assert registry.find_active_delegate("E200", at(2026, 3, 5, 20)) is None

    def test_revoked_delegation_is_ignored(self, registry, delegations):
        d = delegations.add("E200", "E201")
        d.is_active = False
        assert registry.find_active_delegate("E200", at(2026, 3, 10)) is None


class TestScope:

    def test_request_type_scope(self, registry, delegations):
        delegations.add("E200", "E201", request_type_scope=["LEAVE"])
        assert registry.find_active_delegate("E200", at(2026, 3, 10), "leave") == "E201"
        assert registry.find_active_delegate("E200", at(2026, 3, 10), "EXPENSE") is None

    def test_company_scope(self, registry, delegations):
        delegations.add("E200", "E201", company_scope=["C1"])
        assert registry.find_active_delegate("E200", at(2026, 3, 10), company_id="C1") == "E201"
        assert registry.find_active_delegate("E200", at(2026, 3, 10), company_id="C2") is None

    def test_scope_not_checked_when_value_not_given(self, registry, delegations):
        delegations.add("E200", "E201", request_type_scope=["LEAVE"], company_scope=["C1"])
        assert registry.find_active_delegate("E200", at(2026, 3, 10)) == "E201"


class TestAuthorization:

    def test_approver_is_always_authorized(self, registry):
        assert registry.is_authorized("E200", "E200", "LEAVE", "C1", at(2026, 3, 10))

    def test_active_delegate_is_authorized(self, registry, delegations):
        delegations.add("E200", "E201")
        assert registry.is_authorized("E200", "E201", "LEAVE", "C1", at(2026, 3, 10))
        assert not registry.is_authorized("E200", "E300", "LEAVE", "C1", at(2026, 3, 10))
        assert not registry.is_authorized("E200", "E201", "LEAVE", "C1", at(2026, 4, 10))

    def test_earliest_delegation_wins(self, registry, delegations):
        delegations.add("E200", "E300", start=date(2026, 3, 8), end=date(2026, 3, 20))
        delegations.add("E200", "E201", start=date(2026, 3, 1), end=date(2026, 3, 31))
        assert registry.find_active_delegate("E200", at(2026, 3, 10)) == "E201"
        assert not registry.is_authorized("E200", "E300", None, None, at(2026, 3, 10))


class TestPrincipalsFor:

    def test_lists_principals_in_force(self, registry, delegations):
        delegations.add("E200", "E300")
        delegations.add("E201", "E300", request_type_scope=["EXPENSE"])
        delegations.add("E100", "E300", start=date(2026, 5, 1), end=date(2026, 5, 2))
        assert registry.principals_for("E300", at(2026, 3, 10)) == ["E200", "E201"]
        assert registry.principals_for("E300", at(2026, 3, 10), "LEAVE") == ["E200"]

    def test_shadowed_delegation_is_not_listed(self, registry, delegations):
        delegations.add("E200", "E201", start=date(2026, 3, 1))
        delegations.add("E200", "E300", start=date(2026, 3, 9))
        assert registry.principals_for("E300", at(2026, 3, 10)) == []
