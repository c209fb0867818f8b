"""Common module — shared utilities for ExpenseFlow."""

from expenseflow.common.constants import (
    DEFAULT_PAGE_SIZE,
    EDITABLE_STATUSES,
    MAX_PAGE_SIZE,
    TERMINAL_STATUSES,
    ApprovalActionType,
    AuditEventType,
    EntityType,
    ExpenseType,
    RequestStatus,
    UserRole,
)
from expenseflow.common.currency import (
    CANONICAL_CURRENCY,
    SUPPORTED_CURRENCIES,
    is_supported_currency,
    to_canonical,
)
from expenseflow.common.exceptions import (
    AppException,
    AuditIntegrityViolationException,
    BudgetExceededException,
    ConflictError,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    UnsupportedCurrencyException,
    ValidationException,
    register_exception_handlers,
)
from expenseflow.common.pagination import (
    PaginationMeta,
    PaginationParams,
    build_meta,
    fetch_page,
)

__all__ = [
    # Constants / Enums
    "ApprovalActionType",
    "AuditEventType",
    "EntityType",
    "ExpenseType",
    "RequestStatus",
    "UserRole",
    "EDITABLE_STATUSES",
    "TERMINAL_STATUSES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Currency
    "CANONICAL_CURRENCY",
    "SUPPORTED_CURRENCIES",
    "is_supported_currency",
    "to_canonical",
    # Exceptions
    "AppException",
    "AuditIntegrityViolationException",
    "BudgetExceededException",
    "ConflictError",
    "ForbiddenException",
    "InvalidTransitionException",
    "NotFoundException",
    "UnsupportedCurrencyException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginationMeta",
    "PaginationParams",
    "build_meta",
    "fetch_page",
]
