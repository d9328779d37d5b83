"""
Tests that the application tier never exceeds the data tier.
"""

import pytest

from service_authorization.app.policy.compiler import compile_storage_policies
from service_authorization.app.policy.consistency import (
    HOME_TENANT,
    check_consistency,
    object_states,
    written_row,
)
from service_authorization.app.policy.definitions import POLICY, TRANSITIONS
from service_authorization.app.policy.matrix import CapabilityMatrix
from service_authorization.app.policy.models import ALLOW, Action, Actor, ResourceType, Role, StorageCommand


class TestConsistency:
    """Test cases for check_consistency."""

    @pytest.fixture
    def matrix(self):
        return CapabilityMatrix()

    def test_default_policy_is_consistent(self, matrix):
        """Test that compiled policies admit everything the evaluator allows."""
        divergences = check_consistency(matrix, compile_storage_policies(matrix))

        assert divergences == [], "\n".join(d.describe() for d in divergences[:10])

    def test_object_states_cover_status_vocabulary(self):
        """Test that generated states include every timesheet status and NULL."""
        statuses = {state["status"] for state in object_states(ResourceType.TIMESHEET)}

        assert statuses == {"Draft", "Submitted", "Validated", "Rejected", None}

    def test_missing_policy_is_reported(self, matrix):
        """Test that dropping a compiled policy surfaces as a divergence."""
        policies = [
            p for p in compile_storage_policies(matrix)
            if not (p.resource is ResourceType.MILESTONE and p.command is StorageCommand.DELETE)
        ]

        divergences = check_consistency(matrix, policies)

        assert divergences
        assert {d.resource for d in divergences} == {ResourceType.MILESTONE}
        assert {d.action for d in divergences} == {Action.DELETE}

    def test_app_tier_widening_is_detected(self, matrix):
        """Test that a grant missing from the data tier is caught."""
        stale_policies = compile_storage_policies(matrix)

        table = {resource: dict(actions) for resource, actions in POLICY.items()}
        row = dict(table[ResourceType.PARTNER][Action.VIEW])
        row[Role.VIEWER] = ALLOW
        table[ResourceType.PARTNER][Action.VIEW] = row
        widened = CapabilityMatrix(table)

        divergences = check_consistency(widened, stale_policies)

        assert divergences
        assert all(d.role is Role.VIEWER for d in divergences)
        assert {d.detail for d in divergences} == {"partners_select_policy rejects the row"}

    def test_object_states_include_unstored_records(self):
        """Test that tenant-less states are generated."""
        tenants = {state["tenant_id"] for state in object_states(ResourceType.EXPENSE)}

        assert tenants == {"tenant-home", "tenant-foreign", None}

    def test_written_row(self):
        """Test the row the data tier checks after a write."""
        actor = Actor(id="actor-self", tenant_id=HOME_TENANT, role=Role.CONTRIBUTOR)
        draft = {"tenant_id": HOME_TENANT, "owner_actor_id": "actor-self", "status": "Draft"}
        unstored = dict(draft, tenant_id=None)

        assert written_row(draft, actor, ResourceType.TIMESHEET, Action.SUBMIT)["status"] == "Submitted"
        assert written_row(draft, actor, ResourceType.TIMESHEET, Action.EDIT) == draft
        assert written_row(unstored, actor, ResourceType.TIMESHEET, Action.CREATE)["tenant_id"] == HOME_TENANT
        assert written_row(unstored, actor, ResourceType.TIMESHEET, Action.VIEW) is None
        assert written_row(unstored, actor, ResourceType.TIMESHEET, Action.SUBMIT) is None

    def test_unstored_records_are_judged_on_insert(self, matrix):
        """Test that creating a not-yet-stored record needs the INSERT policy."""
        policies = [
            p for p in compile_storage_policies(matrix)
            if not (p.resource is ResourceType.TIMESHEET and p.command is StorageCommand.INSERT)
        ]

        divergences = check_consistency(matrix, policies)

        assert {d.action for d in divergences} == {Action.CREATE, Action.CREATE_FOR_OTHERS}
        unstored = [d for d in divergences if d.row["tenant_id"] is None]
        assert unstored
        assert all(d.written["tenant_id"] == HOME_TENANT for d in unstored)

    def test_unstored_records_never_reach_other_commands(self, matrix):
        """Test that tenant-less states are not judged for SELECT."""
        policies = [
            p for p in compile_storage_policies(matrix)
            if not (p.resource is ResourceType.MILESTONE and p.command is StorageCommand.SELECT)
        ]

        divergences = check_consistency(matrix, policies)

        assert divergences
        assert all(d.row["tenant_id"] is not None for d in divergences)

    def test_with_check_is_judged_on_written_row(self, matrix):
        """Test that a transition landing outside WITH CHECK is reported."""
        policies = compile_storage_policies(matrix)
        transitions = {resource: dict(actions) for resource, actions in TRANSITIONS.items()}
        transitions[ResourceType.TIMESHEET][Action.SUBMIT] = "Validated"

        divergences = check_consistency(matrix, policies, transitions)

        assert divergences
        assert {(d.resource, d.action) for d in divergences} == {(ResourceType.TIMESHEET, Action.SUBMIT)}
        assert all(d.written["status"] == "Validated" for d in divergences)
