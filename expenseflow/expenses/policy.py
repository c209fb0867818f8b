"""Who may run which workflow operation.

Roles are a closed enum; each operation's guard is a lookup in
``OPERATION_ROLES`` plus, for reviewers, the direct-manager relationship.
"""

from __future__ import annotations

import uuid

from expenseflow.auth.dependencies import Actor
from expenseflow.common.constants import UserRole
from expenseflow.common.exceptions import ForbiddenException
from expenseflow.employees.models import Employee
from expenseflow.expenses.state_machine import WorkflowOperation

OWNER_OPERATIONS = frozenset({
    WorkflowOperation.edit,
    WorkflowOperation.submit,
    WorkflowOperation.withdraw,
    WorkflowOperation.cancel,
})

REVIEW_OPERATIONS = frozenset({
    WorkflowOperation.approve,
    WorkflowOperation.reject,
    WorkflowOperation.return_,
})

FINANCE_OPERATIONS = frozenset({
    WorkflowOperation.finance_process,
    WorkflowOperation.finance_paid,
})

_REVIEWERS = frozenset({UserRole.approver, UserRole.system_admin})
_FINANCE = frozenset({UserRole.finance_admin, UserRole.system_admin})

OPERATION_ROLES: dict[WorkflowOperation, frozenset[UserRole]] = {
    **{op: _REVIEWERS for op in REVIEW_OPERATIONS},
    **{op: _FINANCE for op in FINANCE_OPERATIONS},
}

# Roles whose authority is limited to their own direct reports
TEAM_SCOPED_ROLES = frozenset({UserRole.approver})

# Roles that see every request
GLOBAL_VIEW_ROLES = frozenset({UserRole.finance_admin, UserRole.system_admin})


class TeamMembershipPolicy:
    """Role and reporting-line guards for workflow operations."""

    @staticmethod
    def is_direct_manager(approver_id: uuid.UUID, owner: Employee) -> bool:
        return owner.manager_id is not None and owner.manager_id == approver_id

    @staticmethod
    def ensure_role(operation: WorkflowOperation, actor: Actor) -> None:
        """Role-only guard; runs before the request is even loaded."""
        allowed = OPERATION_ROLES.get(operation)
        if allowed is not None and actor.role not in allowed:
            raise ForbiddenException(
                f"Role '{actor.role.value}' may not {operation.value} requests."
            )

    @staticmethod
    def ensure_can_act(
        operation: WorkflowOperation,
        actor: Actor,
        owner: Employee,
    ) -> None:
        if operation in OWNER_OPERATIONS:
            if actor.id != owner.id:
                raise ForbiddenException(
                    f"Only the request owner can {operation.value} this request."
                )
            return

        TeamMembershipPolicy.ensure_role(operation, actor)
        if (
            operation in REVIEW_OPERATIONS
            and actor.role in TEAM_SCOPED_ROLES
            and not TeamMembershipPolicy.is_direct_manager(actor.id, owner)
        ):
            raise ForbiddenException(
                "Only the employee's direct manager can review this request."
            )

    @staticmethod
    def can_view(actor: Actor, owner: Employee) -> bool:
        return (
            actor.id == owner.id
            or actor.role in GLOBAL_VIEW_ROLES
            or TeamMembershipPolicy.is_direct_manager(actor.id, owner)
        )
