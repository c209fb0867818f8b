"""Enums and constants for ExpenseFlow — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    approver = "approver"
    finance_admin = "finance_admin"
    system_admin = "system_admin"


# ── Expense requests ────────────────────────────────────────────────

class ExpenseType(str, enum.Enum):
    benefit = "benefit"
    travel = "travel"
    protocol = "protocol"


class RequestStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"
    returned = "returned"
    payment_processing = "payment_processing"
    paid = "paid"


class ApprovalActionType(str, enum.Enum):
    submit = "submit"
    auto_review = "auto_review"
    withdraw = "withdraw"
    approve = "approve"
    reject = "reject"
    return_ = "return"
    finance_process = "finance_process"
    paid = "paid"


# ── Audit chain ─────────────────────────────────────────────────────

class AuditEventType(str, enum.Enum):
    create = "CREATE"
    update = "UPDATE"
    delete = "DELETE"
    cancel = "CANCEL"
    submit = "SUBMIT"
    auto_review = "AUTO_REVIEW"
    withdraw = "WITHDRAW"
    approve = "APPROVE"
    reject = "REJECT"
    return_ = "RETURN"
    finance_process = "FINANCE_PROCESS"
    paid = "PAID"
    category_create = "CATEGORY_CREATE"
    category_retire = "CATEGORY_RETIRE"
    admin_create_user = "ADMIN_CREATE_USER"
    admin_update_user = "ADMIN_UPDATE_USER"
    admin_deactivate_user = "ADMIN_DEACTIVATE_USER"


class EntityType(str, enum.Enum):
    expense_request = "ExpenseRequest"
    expense_line_item = "ExpenseLineItem"
    expense_category = "ExpenseCategory"
    employee = "Employee"


# Statuses in which the owner may still edit the request
EDITABLE_STATUSES = frozenset({RequestStatus.draft, RequestStatus.returned})

# No transition leaves these
TERMINAL_STATUSES = frozenset({RequestStatus.rejected, RequestStatus.paid})

# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
