"""
Unit tests for object-level rules and their data-tier conditions.
"""

import pytest

from service_authorization.app.policy.conditions import DataTierSession, RenderContext
from service_authorization.app.policy.errors import ImpersonationNotAllowed
from service_authorization.app.policy.models import Actor, Role, TargetSnapshot
from service_authorization.app.policy.rules import (
    AWAITING_VALIDATION,
    DRAFT_OR_REJECTED,
    EXPENSE_VALIDATION_ROUTE,
    NOT_SELF,
    OWNER,
    OWNER_OR_ON_BEHALF,
    READY_FOR_REVIEW,
    all_of,
    any_of,
    source_statuses,
    without_status_gate,
)


def _actor(role, actor_id="user-1", tenant_id="tenant-1", **kwargs):
    return Actor(id=actor_id, tenant_id=tenant_id, role=role, **kwargs)


class TestOwnership:
    """Test cases for ownership rules."""

    def test_owner_matches(self):
        """Test ownership of own record."""
        assert OWNER.evaluate(_actor(Role.CONTRIBUTOR), TargetSnapshot(owner_actor_id="user-1")) is True

    def test_owner_other_actor(self):
        """Test ownership of someone else's record."""
        assert OWNER.evaluate(_actor(Role.CONTRIBUTOR), TargetSnapshot(owner_actor_id="user-2")) is False

    def test_owner_missing(self):
        """Test that an unknown owner never matches."""
        assert OWNER.evaluate(_actor(Role.CONTRIBUTOR), TargetSnapshot()) is False

    def test_not_self(self):
        """Test the self-exclusion rule."""
        admin = _actor(Role.ADMIN)

        assert NOT_SELF.evaluate(admin, TargetSnapshot(owner_actor_id="user-2")) is True
        assert NOT_SELF.evaluate(admin, TargetSnapshot(owner_actor_id="user-1")) is False

    def test_on_behalf_for_supplier_side(self):
        """Test that supplier-side roles act on others' records."""
        target = TargetSnapshot(owner_actor_id="user-2")

        assert OWNER_OR_ON_BEHALF.evaluate(_actor(Role.SUPPLIER_MANAGER), target) is True
        assert OWNER_OR_ON_BEHALF.evaluate(_actor(Role.CONTRIBUTOR), target) is False


class TestStatusRules:
    """Test cases for status gates."""

    @pytest.mark.parametrize("status,expected", [
        ("Draft", True),
        ("Rejected", True),
        ("Submitted", False),
        ("Validated", False),
        (None, False),
    ])
    def test_draft_or_rejected(self, status, expected):
        """Test editable statuses."""
        assert DRAFT_OR_REJECTED.evaluate(_actor(Role.CONTRIBUTOR), TargetSnapshot(status=status)) is expected

    def test_source_statuses_of_composite(self):
        """Test extracting the required statuses from a composite rule."""
        rule = all_of(DRAFT_OR_REJECTED, OWNER_OR_ON_BEHALF)

        assert source_statuses(rule) == frozenset({"Draft", "Rejected"})
        assert source_statuses(OWNER) is None
        assert source_statuses(READY_FOR_REVIEW) == frozenset({"In Progress", "Returned for More Work"})

    def test_without_status_gate(self):
        """Test dropping status gates while keeping the other predicates."""
        assert without_status_gate(all_of(DRAFT_OR_REJECTED, OWNER_OR_ON_BEHALF)) == OWNER_OR_ON_BEHALF
        assert without_status_gate(AWAITING_VALIDATION) is None
        assert without_status_gate(any_of(AWAITING_VALIDATION, OWNER)) is None
        assert without_status_gate(OWNER) is OWNER
        assert without_status_gate(None) is None


class TestExpenseRouting:
    """Test cases for side routing of expense validation."""

    @pytest.mark.parametrize("chargeable", [True, False, None])
    def test_finance_roles_never_share_an_expense(self, chargeable):
        """Test that exactly one finance role may validate a submitted expense."""
        target = TargetSnapshot(status="Submitted", is_chargeable=chargeable)
        rule = all_of(AWAITING_VALIDATION, EXPENSE_VALIDATION_ROUTE)

        customer = rule.evaluate(_actor(Role.FINANCE_CUSTOMER), target)
        supplier = rule.evaluate(_actor(Role.FINANCE_SUPPLIER), target)

        assert customer != supplier
        assert customer is (chargeable is True)

    def test_admin_validates_both_sides(self):
        """Test that admin sits on both sides."""
        for chargeable in (True, False):
            target = TargetSnapshot(status="Submitted", is_chargeable=chargeable)
            assert EXPENSE_VALIDATION_ROUTE.evaluate(_actor(Role.ADMIN), target) is True

    def test_condition_agrees_with_evaluate(self):
        """Test the data-tier condition routes the same way."""
        session = DataTierSession(actor_id="user-1", memberships={"tenant-1": Role.FINANCE_CUSTOMER})
        condition = EXPENSE_VALIDATION_ROUTE.condition()

        assert condition.matches({"is_chargeable": True}, session, Role.FINANCE_CUSTOMER) is True
        assert condition.matches({"is_chargeable": False}, session, Role.FINANCE_CUSTOMER) is False
        assert condition.matches({"is_chargeable": None}, session, Role.FINANCE_CUSTOMER) is False


class TestConditionRendering:
    """Test cases for SQL rendering of rule conditions."""

    def test_owner_renders_actor_comparison(self):
        """Test ownership SQL."""
        ctx = RenderContext(table="timesheets")

        assert OWNER.condition().render(ctx) == "timesheets.owner_actor_id::text = (auth.uid())::text"

    def test_membership_owner_column_is_mapped(self):
        """Test that logical owner maps to the physical membership column."""
        ctx = RenderContext(table="tenant_memberships", columns={"owner_actor_id": "actor_id"})

        assert NOT_SELF.condition().render(ctx) == (
            "tenant_memberships.actor_id::text IS DISTINCT FROM (auth.uid())::text"
        )

    def test_status_gate_quotes_literals(self):
        """Test status literals are quoted."""
        ctx = RenderContext(table="timesheets")

        assert DRAFT_OR_REJECTED.condition().render(ctx) == "timesheets.status IN ('Draft', 'Rejected')"

    def test_ownership_condition_null_semantics(self):
        """Test that a NULL owner is unknown, not false."""
        session = DataTierSession(actor_id="user-1", memberships={})

        assert OWNER.condition().matches({"owner_actor_id": None}, session, Role.CONTRIBUTOR) is None
        assert OWNER.condition().matches({"owner_actor_id": "user-1"}, session, Role.CONTRIBUTOR) is True


class TestActor:
    """Test cases for actor identity."""

    def test_admin_may_act_as_another_role(self):
        """Test view-as for admins."""
        actor = _actor(Role.ADMIN, acting_as="viewer")

        assert actor.effective_role is Role.VIEWER
        assert actor.role is Role.ADMIN

    def test_non_admin_cannot_act_as(self):
        """Test that view-as is reserved for admins."""
        with pytest.raises(ImpersonationNotAllowed):
            _actor(Role.CONTRIBUTOR, acting_as="admin")
