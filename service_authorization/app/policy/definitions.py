"""
Declarative policy table.

This is the one place grants are written down. The in-process capability
matrix and the row-level-security policies are both compiled from
``POLICY``; nothing else in the service lists roles per action.

Every row names all seven roles explicitly. ``grants`` takes them as
required keyword-only arguments, so a row that forgets a role fails at
import time instead of silently defaulting to deny.
"""

from typing import Dict

from .models import (
    ALLOW,
    DENY,
    Action,
    DeliverableStatus,
    Grant,
    ResourceType,
    Role,
    TimesheetStatus,
    when,
)
from .rules import (
    ASSIGNEE_OR_DELIVERY_LEAD,
    AWAITING_VALIDATION,
    DRAFT_ONLY,
    DRAFT_OR_REJECTED,
    EXPENSE_VALIDATION_ROUTE,
    NOT_SELF,
    OWNER_OR_ON_BEHALF,
    READY_FOR_REVIEW,
    REVIEW_COMPLETE,
    UNDER_REVIEW,
    all_of,
)

PolicyRow = Dict[Role, Grant]
PolicyTable = Dict[ResourceType, Dict[Action, PolicyRow]]


def grants(
    *,
    viewer: Grant,
    contributor: Grant,
    customer_manager: Grant,
    supplier_manager: Grant,
    finance_customer: Grant,
    finance_supplier: Grant,
    admin: Grant,
) -> PolicyRow:
    """Build one (resource, action) row with an explicit cell per role."""
    return {
        Role.VIEWER: viewer,
        Role.CONTRIBUTOR: contributor,
        Role.CUSTOMER_MANAGER: customer_manager,
        Role.SUPPLIER_MANAGER: supplier_manager,
        Role.FINANCE_CUSTOMER: finance_customer,
        Role.FINANCE_SUPPLIER: finance_supplier,
        Role.ADMIN: admin,
    }


# Shared row shapes. Each call returns a fresh row so no two table rows
# alias the same dict.

def everyone() -> PolicyRow:
    return grants(
        viewer=ALLOW, contributor=ALLOW, customer_manager=ALLOW, supplier_manager=ALLOW,
        finance_customer=ALLOW, finance_supplier=ALLOW, admin=ALLOW,
    )


def supplier_side() -> PolicyRow:
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=DENY, supplier_manager=ALLOW,
        finance_customer=DENY, finance_supplier=ALLOW, admin=ALLOW,
    )


def managers() -> PolicyRow:
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=ALLOW, supplier_manager=ALLOW,
        finance_customer=DENY, finance_supplier=DENY, admin=ALLOW,
    )


def delivery_leads() -> PolicyRow:
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=DENY, supplier_manager=ALLOW,
        finance_customer=DENY, finance_supplier=DENY, admin=ALLOW,
    )


def other_members() -> PolicyRow:
    """Membership administration; nobody grants, changes or revokes their own."""
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=DENY, supplier_manager=DENY,
        finance_customer=DENY, finance_supplier=DENY, admin=when(NOT_SELF),
    )


def workers(rule) -> PolicyRow:
    """Roles that book time and expenses, narrowed by ``rule``."""
    return grants(
        viewer=DENY, contributor=when(rule), customer_manager=DENY, supplier_manager=when(rule),
        finance_customer=when(rule), finance_supplier=when(rule), admin=when(rule),
    )


def record_workflow(validation) -> Dict[Action, PolicyRow]:
    """Draft -> Submitted -> Validated|Rejected lifecycle shared by timesheets and expenses."""
    owned_draft = all_of(DRAFT_ONLY, OWNER_OR_ON_BEHALF, name="owned_draft")
    owned_editable = all_of(DRAFT_OR_REJECTED, OWNER_OR_ON_BEHALF, name="owned_editable")
    return {
        Action.VIEW: everyone(),
        Action.CREATE: workers(owned_draft),
        Action.CREATE_FOR_OTHERS: supplier_side(),
        Action.EDIT: workers(owned_editable),
        Action.DELETE: workers(owned_draft),
        Action.SUBMIT: workers(owned_editable),
        Action.VALIDATE: validation(),
        Action.REJECT: validation(),
    }


def timesheet_validation() -> PolicyRow:
    rule = AWAITING_VALIDATION
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=when(rule), supplier_manager=DENY,
        finance_customer=when(rule), finance_supplier=DENY, admin=when(rule),
    )


def expense_validation() -> PolicyRow:
    # Chargeable expenses are validated by the customer side, the rest by
    # the supplier side; each finance role sees exactly one class.
    rule = all_of(AWAITING_VALIDATION, EXPENSE_VALIDATION_ROUTE, name="expense_validation")
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=when(rule), supplier_manager=when(rule),
        finance_customer=when(rule), finance_supplier=when(rule), admin=when(rule),
    )


def deliverable_authors(rule=None) -> PolicyRow:
    cell = when(rule) if rule is not None else ALLOW
    return grants(
        viewer=DENY, contributor=cell, customer_manager=DENY, supplier_manager=cell,
        finance_customer=DENY, finance_supplier=DENY, admin=cell,
    )


def customer_acceptance(rule) -> PolicyRow:
    return grants(
        viewer=DENY, contributor=DENY, customer_manager=when(rule), supplier_manager=DENY,
        finance_customer=when(rule), finance_supplier=DENY, admin=when(rule),
    )


def catalogue() -> Dict[Action, PolicyRow]:
    """Supplier-maintained reference data readable by the whole tenant."""
    return {
        Action.VIEW: everyone(),
        Action.CREATE: supplier_side(),
        Action.EDIT: supplier_side(),
        Action.DELETE: supplier_side(),
    }


POLICY: PolicyTable = {
    ResourceType.TIMESHEET: record_workflow(timesheet_validation),
    ResourceType.EXPENSE: record_workflow(expense_validation),
    ResourceType.MILESTONE: {
        Action.VIEW: everyone(),
        Action.CREATE: supplier_side(),
        Action.EDIT: supplier_side(),
        Action.DELETE: delivery_leads(),
        Action.EDIT_BILLING: supplier_side(),
        Action.USE_GANTT: supplier_side(),
    },
    ResourceType.DELIVERABLE: {
        Action.VIEW: everyone(),
        Action.CREATE: deliverable_authors(),
        Action.EDIT: deliverable_authors(ASSIGNEE_OR_DELIVERY_LEAD),
        Action.DELETE: supplier_side(),
        Action.SUBMIT: deliverable_authors(
            all_of(READY_FOR_REVIEW, ASSIGNEE_OR_DELIVERY_LEAD, name="assigned_ready_for_review")
        ),
        Action.REVIEW: customer_acceptance(UNDER_REVIEW),
        Action.MARK_DELIVERED: customer_acceptance(REVIEW_COMPLETE),
    },
    ResourceType.KPI: catalogue(),
    ResourceType.QUALITY_STANDARD: catalogue(),
    ResourceType.RAID_ITEM: {
        Action.VIEW: everyone(),
        Action.CREATE: managers(),
        Action.EDIT: managers(),
        Action.DELETE: delivery_leads(),
        Action.UPDATE_STATUS: managers(),
        Action.ASSIGN_OWNER: managers(),
    },
    ResourceType.PARTNER: {
        Action.VIEW: supplier_side(),
        Action.CREATE: supplier_side(),
        Action.EDIT: supplier_side(),
        Action.DELETE: supplier_side(),
    },
    ResourceType.RESOURCE: {
        Action.VIEW: everyone(),
        Action.CREATE: supplier_side(),
        Action.EDIT: supplier_side(),
        Action.DELETE: delivery_leads(),
        Action.SEE_COST_PRICE: supplier_side(),
        Action.SEE_MARGINS: supplier_side(),
    },
    ResourceType.TENANT_MEMBERSHIP: {
        Action.VIEW: supplier_side(),
        Action.CREATE: other_members(),
        Action.EDIT: other_members(),
        Action.DELETE: other_members(),
    },
}


# Status-changing actions and the status they move a record to.
TRANSITIONS: Dict[ResourceType, Dict[Action, str]] = {
    ResourceType.TIMESHEET: {
        Action.SUBMIT: TimesheetStatus.SUBMITTED.value,
        Action.VALIDATE: TimesheetStatus.VALIDATED.value,
        Action.REJECT: TimesheetStatus.REJECTED.value,
    },
    ResourceType.EXPENSE: {
        Action.SUBMIT: TimesheetStatus.SUBMITTED.value,
        Action.VALIDATE: TimesheetStatus.VALIDATED.value,
        Action.REJECT: TimesheetStatus.REJECTED.value,
    },
    ResourceType.DELIVERABLE: {
        Action.SUBMIT: DeliverableStatus.SUBMITTED_FOR_REVIEW.value,
        Action.REVIEW: DeliverableStatus.REVIEW_COMPLETE.value,
        Action.MARK_DELIVERED: DeliverableStatus.DELIVERED.value,
    },
}
