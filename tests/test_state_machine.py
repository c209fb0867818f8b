"""Transition table and role policy tests."""

from __future__ import annotations

import uuid

import pytest

from expenseflow.auth.dependencies import Actor
from expenseflow.common.constants import RequestStatus, UserRole
from expenseflow.common.exceptions import ForbiddenException, InvalidTransitionException
from expenseflow.employees.models import Employee
from expenseflow.expenses.policy import TeamMembershipPolicy
from expenseflow.expenses.state_machine import (
    WorkflowOperation,
    available_operations,
    is_legal_edge,
    next_status,
)

S = RequestStatus
Op = WorkflowOperation


@pytest.mark.parametrize(
    "operation, current, expected",
    [
        (Op.submit, S.draft, S.submitted),
        (Op.submit, S.returned, S.submitted),
        (Op.auto_review, S.submitted, S.under_review),
        (Op.withdraw, S.submitted, S.draft),
        (Op.withdraw, S.under_review, S.draft),
        (Op.approve, S.under_review, S.approved),
        (Op.reject, S.submitted, S.rejected),
        (Op.return_, S.under_review, S.returned),
        (Op.finance_process, S.approved, S.payment_processing),
        (Op.finance_paid, S.approved, S.paid),
        (Op.finance_paid, S.payment_processing, S.paid),
        (Op.edit, S.returned, S.returned),
    ],
)
def test_legal_transitions(operation, current, expected):
    assert next_status(operation, current) == expected


@pytest.mark.parametrize(
    "operation, current",
    [
        (Op.submit, S.under_review),
        (Op.approve, S.draft),
        (Op.approve, S.approved),
        (Op.finance_process, S.payment_processing),
        (Op.finance_paid, S.paid),
        (Op.withdraw, S.approved),
        (Op.cancel, S.returned),
        (Op.edit, S.submitted),
    ],
)
def test_illegal_transitions(operation, current):
    with pytest.raises(InvalidTransitionException):
        next_status(operation, current)


def test_terminal_statuses_have_no_exits():
    for status in (S.rejected, S.paid):
        assert available_operations(status) == []
        assert not any(is_legal_edge(status, target) for target in S)


def test_draft_operations():
    assert set(available_operations(S.draft)) == {Op.edit, Op.submit, Op.cancel}


def _employee(manager_id=None) -> Employee:
    return Employee(
        id=uuid.uuid4(), email="e@example.com", full_name="E",
        role=UserRole.employee, manager_id=manager_id, is_active=True,
    )


def test_direct_manager_check():
    manager_id = uuid.uuid4()
    assert TeamMembershipPolicy.is_direct_manager(manager_id, _employee(manager_id))
    assert not TeamMembershipPolicy.is_direct_manager(manager_id, _employee())
    assert not TeamMembershipPolicy.is_direct_manager(uuid.uuid4(), _employee(manager_id))


def test_review_guard():
    manager = Actor(id=uuid.uuid4(), role=UserRole.approver)
    owner = _employee(manager.id)
    TeamMembershipPolicy.ensure_can_act(Op.approve, manager, owner)

    with pytest.raises(ForbiddenException):
        TeamMembershipPolicy.ensure_can_act(Op.approve, manager, _employee())
    with pytest.raises(ForbiddenException):
        TeamMembershipPolicy.ensure_can_act(
            Op.approve, Actor(id=manager.id, role=UserRole.finance_admin), owner,
        )
    admin = Actor(id=uuid.uuid4(), role=UserRole.system_admin)
    TeamMembershipPolicy.ensure_can_act(Op.reject, admin, _employee())


def test_owner_guard():
    owner = _employee()
    TeamMembershipPolicy.ensure_can_act(Op.submit, Actor(id=owner.id, role=UserRole.employee), owner)
    with pytest.raises(ForbiddenException):
        TeamMembershipPolicy.ensure_can_act(
            Op.withdraw, Actor(id=uuid.uuid4(), role=UserRole.system_admin), owner,
        )


def test_finance_guard():
    finance = Actor(id=uuid.uuid4(), role=UserRole.finance_admin)
    TeamMembershipPolicy.ensure_role(Op.finance_paid, finance)
    with pytest.raises(ForbiddenException):
        TeamMembershipPolicy.ensure_role(
            Op.finance_process, Actor(id=uuid.uuid4(), role=UserRole.approver),
        )
