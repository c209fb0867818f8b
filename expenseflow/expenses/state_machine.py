"""Request lifecycle: the fixed transition table and its lookups."""

from __future__ import annotations

import enum
from typing import Optional

from expenseflow.common.constants import EDITABLE_STATUSES, RequestStatus
from expenseflow.common.exceptions import InvalidTransitionException


class WorkflowOperation(str, enum.Enum):
    edit = "edit"
    submit = "submit"
    auto_review = "auto_review"
    withdraw = "withdraw"
    cancel = "cancel"
    approve = "approve"
    reject = "reject"
    return_ = "return"
    finance_process = "finance_process"
    finance_paid = "finance_paid"


_IN_REVIEW = frozenset({RequestStatus.submitted, RequestStatus.under_review})

# operation → (legal source statuses, target status); ``None`` keeps the status
TRANSITIONS: dict[WorkflowOperation, tuple[frozenset[RequestStatus], Optional[RequestStatus]]] = {
    WorkflowOperation.edit: (EDITABLE_STATUSES, None),
    WorkflowOperation.submit: (EDITABLE_STATUSES, RequestStatus.submitted),
    WorkflowOperation.auto_review: (
        frozenset({RequestStatus.submitted}), RequestStatus.under_review,
    ),
    WorkflowOperation.withdraw: (_IN_REVIEW, RequestStatus.draft),
    WorkflowOperation.cancel: (frozenset({RequestStatus.draft}), None),
    WorkflowOperation.approve: (_IN_REVIEW, RequestStatus.approved),
    WorkflowOperation.reject: (_IN_REVIEW, RequestStatus.rejected),
    WorkflowOperation.return_: (_IN_REVIEW, RequestStatus.returned),
    WorkflowOperation.finance_process: (
        frozenset({RequestStatus.approved}), RequestStatus.payment_processing,
    ),
    WorkflowOperation.finance_paid: (
        frozenset({RequestStatus.approved, RequestStatus.payment_processing}),
        RequestStatus.paid,
    ),
}

LEGAL_EDGES: frozenset[tuple[RequestStatus, RequestStatus]] = frozenset(
    (source, target)
    for sources, target in TRANSITIONS.values()
    if target is not None
    for source in sources
)


def ensure_allowed(operation: WorkflowOperation, current: RequestStatus) -> None:
    """Raise ``InvalidTransitionException`` unless *operation* may run from *current*."""
    sources, _ = TRANSITIONS[operation]
    if current not in sources:
        raise InvalidTransitionException(operation.value, current)


def next_status(operation: WorkflowOperation, current: RequestStatus) -> RequestStatus:
    """Status after *operation*; unchanged for operations that keep it."""
    ensure_allowed(operation, current)
    _, target = TRANSITIONS[operation]
    return target if target is not None else current


def is_legal_edge(source: RequestStatus, target: RequestStatus) -> bool:
    return (source, target) in LEGAL_EDGES


def available_operations(current: RequestStatus) -> list[WorkflowOperation]:
    """Operations a caller could attempt from *current* (internal steps excluded)."""
    return [
        op for op, (sources, _) in TRANSITIONS.items()
        if current in sources and op is not WorkflowOperation.auto_review
    ]
