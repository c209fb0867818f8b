"""Approval workflow — the request lifecycle and everything it touches.

Business logic:
  - Owner-only operations: create, edit, submit, withdraw, cancel
  - Reviewers (approver for direct reports, system_admin for anyone)
    approve / reject / return, always with a comment
  - Finance moves APPROVED requests to PAYMENT_PROCESSING and PAID; a PAID
    benefit request charges the ledger exactly once
  - Each state change writes an ApprovalAction plus a matching audit entry
    in the caller's transaction, and queues an email to the owner that is
    sent (best effort) once that transaction commits
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from expenseflow.audit.service import AuditChain
from expenseflow.auth.dependencies import Actor
from expenseflow.budget.service import BudgetLedger, budget_year
from expenseflow.categories.service import CategoryService
from expenseflow.common.constants import (
    ApprovalActionType,
    AuditEventType,
    EntityType,
    RequestStatus,
    UserRole,
)
from expenseflow.common.currency import SUPPORTED_CURRENCIES, ensure_supported_currency
from expenseflow.common.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from expenseflow.common.pagination import fetch_page
from expenseflow.config import settings
from expenseflow.database import advisory_xact_lock
from expenseflow.employees.models import Employee
from expenseflow.employees.service import EmployeeService
from expenseflow.expenses.models import ApprovalAction, ExpenseLineItem, ExpenseRequest
from expenseflow.expenses.policy import GLOBAL_VIEW_ROLES, TeamMembershipPolicy
from expenseflow.expenses.schemas import ApprovalActionOut, ExpenseRequestOut, LineItemOut
from expenseflow.expenses.state_machine import (
    WorkflowOperation,
    ensure_allowed,
    next_status,
)
from expenseflow.notifications.service import build_status_notice, queue_notice

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset({
    "category_id",
    "reason",
    "currency",
    "total_amount",
    "invoice_number",
    "invoice_date",
    "supplier",
})

# Fields that change what the request would charge against the ledger
_CAPACITY_FIELDS = frozenset({"category_id", "currency", "total_amount"})

_ACTION_EVENTS: dict[ApprovalActionType, AuditEventType] = {
    ApprovalActionType.submit: AuditEventType.submit,
    ApprovalActionType.auto_review: AuditEventType.auto_review,
    ApprovalActionType.withdraw: AuditEventType.withdraw,
    ApprovalActionType.approve: AuditEventType.approve,
    ApprovalActionType.reject: AuditEventType.reject,
    ApprovalActionType.return_: AuditEventType.return_,
    ApprovalActionType.finance_process: AuditEventType.finance_process,
    ApprovalActionType.paid: AuditEventType.paid,
}

_REVIEW_ACTIONS: dict[WorkflowOperation, ApprovalActionType] = {
    WorkflowOperation.approve: ApprovalActionType.approve,
    WorkflowOperation.reject: ApprovalActionType.reject,
    WorkflowOperation.return_: ApprovalActionType.return_,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ApprovalWorkflow:
    """State machine over ``ExpenseRequest``; never commits."""

    # ─────────────────────────────────────────────────────────────────
    # Loading / persistence helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> ExpenseRequest:
        """Fetch a live (not cancelled) request, optionally row-locked."""
        stmt = select(ExpenseRequest).where(
            ExpenseRequest.id == request_id,
            ExpenseRequest.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt.execution_options(populate_existing=True))
        expense_request = result.scalars().first()
        if expense_request is None:
            raise NotFoundException("ExpenseRequest", str(request_id))
        return expense_request

    @staticmethod
    async def _flush(
        db: AsyncSession,
        expense_request: ExpenseRequest,
        operation: WorkflowOperation,
        previous: RequestStatus,
    ) -> None:
        """Flush, turning a lost optimistic-version race into a 409."""
        try:
            await db.flush()
        except StaleDataError:
            logger.warning(
                "concurrent modification of request %s during %s",
                expense_request.id, operation.value,
            )
            raise InvalidTransitionException(operation.value, previous)

    @staticmethod
    async def _next_request_number(db: AsyncSession) -> str:
        """Next ``REQ-<year>-<nnnnn>``; held under a lock until commit."""
        await advisory_xact_lock(db, settings.REQUEST_NUMBER_LOCK_KEY)
        prefix = f"{settings.REQUEST_NUMBER_PREFIX}-{_now().year}-"
        count = (
            await db.execute(
                select(func.count())
                .select_from(ExpenseRequest)
                .where(ExpenseRequest.request_number.like(f"{prefix}%"))
            )
        ).scalar_one()
        return f"{prefix}{count + 1:05d}"

    @staticmethod
    async def _record_transition(
        db: AsyncSession,
        expense_request: ExpenseRequest,
        *,
        actor_id: Optional[uuid.UUID],
        action_type: ApprovalActionType,
        from_status: RequestStatus,
        to_status: RequestStatus,
        comment: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> ApprovalAction:
        """Write the ApprovalAction and its audit entry."""
        position = (
            await db.execute(
                select(func.count())
                .select_from(ApprovalAction)
                .where(ApprovalAction.request_id == expense_request.id)
            )
        ).scalar_one() + 1
        action_id = uuid.uuid4()

        entry = await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.expense_request.value,
            entity_id=expense_request.id,
            event_type=_ACTION_EVENTS[action_type].value,
            event_data={
                "actionId": action_id,
                "requestNumber": expense_request.request_number,
                "fromStatus": from_status,
                "toStatus": to_status,
                "comment": comment,
                **(extra or {}),
            },
        )

        action = ApprovalAction(
            id=action_id,
            request_id=expense_request.id,
            position=position,
            actor_id=actor_id,
            action_type=action_type,
            from_status=from_status,
            to_status=to_status,
            comment=comment,
            audit_entry_id=entry.id,
            created_at=entry.created_at,
        )
        db.add(action)
        await db.flush()

        logger.info(
            "request %s: %s → %s (%s)",
            expense_request.request_number, from_status.value, to_status.value,
            action_type.value,
        )
        return action

    @staticmethod
    async def _change_status(
        db: AsyncSession,
        expense_request: ExpenseRequest,
        operation: WorkflowOperation,
        *,
        actor_id: Optional[uuid.UUID],
        action_type: ApprovalActionType,
        comment: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> ApprovalAction:
        previous = expense_request.status
        target = next_status(operation, previous)
        expense_request.status = target
        await ApprovalWorkflow._flush(db, expense_request, operation, previous)
        return await ApprovalWorkflow._record_transition(
            db,
            expense_request,
            actor_id=actor_id,
            action_type=action_type,
            from_status=previous,
            to_status=target,
            comment=comment,
            extra=extra,
        )

    @staticmethod
    def _notify_owner(
        db: AsyncSession,
        expense_request: ExpenseRequest,
        owner: Employee,
        comment: Optional[str] = None,
    ) -> None:
        """Queue the owner's email; it is sent only after commit."""
        queue_notice(db, build_status_notice(expense_request, owner.email, comment))

    @staticmethod
    async def _load_owned(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        operation: WorkflowOperation,
    ) -> tuple[ExpenseRequest, Employee]:
        expense_request = await ApprovalWorkflow._load(db, request_id, for_update=True)
        owner = await EmployeeService.get_employee(db, expense_request.employee_id)
        TeamMembershipPolicy.ensure_can_act(operation, actor, owner)
        return expense_request, owner

    # ─────────────────────────────────────────────────────────────────
    # Draft lifecycle (owner)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        actor: Actor,
        *,
        category_id: uuid.UUID,
        currency: str = "EUR",
        total_amount: Decimal = Decimal("0"),
        reason: Optional[str] = None,
        invoice_number: Optional[str] = None,
        invoice_date=None,
        supplier: Optional[str] = None,
    ) -> ExpenseRequest:
        """Open a DRAFT request owned by *actor*."""
        category = await CategoryService.get_category(db, category_id)
        if not category.active:
            raise ValidationException({"category_id": ["Category is retired."]})
        currency = ensure_supported_currency(currency)
        total_amount = Decimal(total_amount)
        if total_amount < 0:
            raise ValidationException({"total_amount": ["Must not be negative."]})

        if category.is_benefit:
            # The ledger row for a new category may not exist yet
            await BudgetLedger.ensure_capacity(
                db, actor.id, category.id, total_amount, currency,
                year=budget_year(), allow_missing=True,
            )

        expense_request = ExpenseRequest(
            request_number=await ApprovalWorkflow._next_request_number(db),
            employee_id=actor.id,
            category_id=category.id,
            expense_type=category.expense_type,
            reason=reason,
            currency=currency,
            total_amount=total_amount,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            supplier=supplier,
            status=RequestStatus.draft,
            submitted_at=None,
            spend_recorded_at=None,
            deleted_at=None,
        )
        db.add(expense_request)
        await db.flush()

        await AuditChain.record_event(
            db,
            actor_id=actor.id,
            entity_type=EntityType.expense_request.value,
            entity_id=expense_request.id,
            event_type=AuditEventType.create.value,
            event_data={
                "requestNumber": expense_request.request_number,
                "categoryId": category.id,
                "expenseType": category.expense_type,
                "totalAmount": total_amount,
                "currency": currency,
            },
        )
        return expense_request

    @staticmethod
    async def edit_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        **changes: Any,
    ) -> ExpenseRequest:
        """Update fields of a DRAFT / RETURNED request.

        ``changes`` holds only the fields the caller supplied; unknown keys
        are rejected rather than ignored.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationException({k: ["Field cannot be edited."] for k in sorted(unknown)})

        operation = WorkflowOperation.edit
        expense_request, _ = await ApprovalWorkflow._load_owned(db, actor, request_id, operation)
        ensure_allowed(operation, expense_request.status)

        errors: dict[str, list[str]] = {
            field: ["This field cannot be cleared."]
            for field in ("category_id", "currency")
            if field in changes and changes[field] is None
        }
        if errors:
            raise ValidationException(errors)
        if "category_id" in changes and changes["category_id"] != expense_request.category_id:
            category = await CategoryService.get_category(db, changes["category_id"])
            if not category.active:
                errors["category_id"] = ["Category is retired."]
            elif category.expense_type != expense_request.expense_type:
                errors["category_id"] = ["Category must keep the request's expense type."]
        if "currency" in changes:
            changes["currency"] = ensure_supported_currency(changes["currency"])
        if "total_amount" in changes:
            if changes["total_amount"] is None or Decimal(changes["total_amount"]) < 0:
                errors["total_amount"] = ["Must not be negative."]
            else:
                changes["total_amount"] = Decimal(changes["total_amount"])
        if errors:
            raise ValidationException(errors)

        applied = {
            field: value for field, value in changes.items()
            if getattr(expense_request, field) != value
        }
        if not applied:
            return expense_request

        if expense_request.is_benefit and _CAPACITY_FIELDS & set(applied):
            await BudgetLedger.ensure_capacity(
                db,
                actor.id,
                applied.get("category_id", expense_request.category_id),
                applied.get("total_amount", expense_request.total_amount),
                applied.get("currency", expense_request.currency),
                year=budget_year(),
                allow_missing=True,
            )

        previous = expense_request.status
        for field, value in applied.items():
            setattr(expense_request, field, value)
        await ApprovalWorkflow._flush(db, expense_request, operation, previous)

        await AuditChain.record_event(
            db,
            actor_id=actor.id,
            entity_type=EntityType.expense_request.value,
            entity_id=expense_request.id,
            event_type=AuditEventType.update.value,
            event_data={
                "requestNumber": expense_request.request_number,
                "changes": applied,
            },
        )
        return expense_request

    @staticmethod
    def _missing_fields(expense_request: ExpenseRequest) -> dict[str, list[str]]:
        errors: dict[str, list[str]] = {}
        for field in ("category_id", "reason", "currency", "invoice_number",
                      "invoice_date", "supplier"):
            if _is_blank(getattr(expense_request, field)):
                errors[field] = ["This field is required."]
        if expense_request.currency and expense_request.currency not in SUPPORTED_CURRENCIES:
            errors["currency"] = [f"Supported currencies: {', '.join(SUPPORTED_CURRENCIES)}."]
        if expense_request.total_amount is None or expense_request.total_amount <= 0:
            errors["total_amount"] = ["Must be greater than zero."]
        return errors

    @staticmethod
    async def submit_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        """DRAFT / RETURNED → SUBMITTED → UNDER_REVIEW."""
        expense_request, owner = await ApprovalWorkflow._load_owned(
            db, actor, request_id, WorkflowOperation.submit,
        )
        ensure_allowed(WorkflowOperation.submit, expense_request.status)

        errors = ApprovalWorkflow._missing_fields(expense_request)
        if errors:
            raise ValidationException(errors)

        submitted_at = _now()
        if expense_request.is_benefit:
            await BudgetLedger.ensure_capacity(
                db,
                expense_request.employee_id,
                expense_request.category_id,
                expense_request.total_amount,
                expense_request.currency,
                year=budget_year(submitted_at),
            )

        expense_request.submitted_at = submitted_at
        await ApprovalWorkflow._change_status(
            db, expense_request, WorkflowOperation.submit,
            actor_id=actor.id,
            action_type=ApprovalActionType.submit,
        )
        await ApprovalWorkflow._change_status(
            db, expense_request, WorkflowOperation.auto_review,
            actor_id=None,
            action_type=ApprovalActionType.auto_review,
        )
        ApprovalWorkflow._notify_owner(db, expense_request, owner)
        return expense_request

    @staticmethod
    async def withdraw_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        """SUBMITTED / UNDER_REVIEW → DRAFT."""
        expense_request, owner = await ApprovalWorkflow._load_owned(
            db, actor, request_id, WorkflowOperation.withdraw,
        )
        ensure_allowed(WorkflowOperation.withdraw, expense_request.status)

        expense_request.submitted_at = None
        await ApprovalWorkflow._change_status(
            db, expense_request, WorkflowOperation.withdraw,
            actor_id=actor.id,
            action_type=ApprovalActionType.withdraw,
        )
        ApprovalWorkflow._notify_owner(db, expense_request, owner)
        return expense_request

    @staticmethod
    async def cancel_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        """Remove a DRAFT request from every read and transition."""
        operation = WorkflowOperation.cancel
        expense_request, _ = await ApprovalWorkflow._load_owned(db, actor, request_id, operation)
        ensure_allowed(operation, expense_request.status)

        previous = expense_request.status
        expense_request.deleted_at = _now()
        await ApprovalWorkflow._flush(db, expense_request, operation, previous)

        await AuditChain.record_event(
            db,
            actor_id=actor.id,
            entity_type=EntityType.expense_request.value,
            entity_id=expense_request.id,
            event_type=AuditEventType.cancel.value,
            event_data={"requestNumber": expense_request.request_number},
        )
        logger.info("request %s cancelled", expense_request.request_number)
        return expense_request

    # ─────────────────────────────────────────────────────────────────
    # Review
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _review(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        operation: WorkflowOperation,
        comment: Optional[str],
    ) -> ExpenseRequest:
        TeamMembershipPolicy.ensure_role(operation, actor)
        expense_request, owner = await ApprovalWorkflow._load_owned(
            db, actor, request_id, operation,
        )
        ensure_allowed(operation, expense_request.status)
        if _is_blank(comment):
            raise ValidationException({"comment": ["A comment is required."]})
        comment = comment.strip()

        if operation == WorkflowOperation.return_:
            expense_request.submitted_at = None
        await ApprovalWorkflow._change_status(
            db, expense_request, operation,
            actor_id=actor.id,
            action_type=_REVIEW_ACTIONS[operation],
            comment=comment,
        )
        ApprovalWorkflow._notify_owner(db, expense_request, owner, comment)
        return expense_request

    @staticmethod
    async def approve_request(
        db: AsyncSession, actor: Actor, request_id: uuid.UUID, comment: Optional[str],
    ) -> ExpenseRequest:
        return await ApprovalWorkflow._review(
            db, actor, request_id, WorkflowOperation.approve, comment,
        )

    @staticmethod
    async def reject_request(
        db: AsyncSession, actor: Actor, request_id: uuid.UUID, comment: Optional[str],
    ) -> ExpenseRequest:
        return await ApprovalWorkflow._review(
            db, actor, request_id, WorkflowOperation.reject, comment,
        )

    @staticmethod
    async def return_request(
        db: AsyncSession, actor: Actor, request_id: uuid.UUID, comment: Optional[str],
    ) -> ExpenseRequest:
        return await ApprovalWorkflow._review(
            db, actor, request_id, WorkflowOperation.return_, comment,
        )

    # ─────────────────────────────────────────────────────────────────
    # Finance
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def finance_process(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        """APPROVED → PAYMENT_PROCESSING."""
        operation = WorkflowOperation.finance_process
        TeamMembershipPolicy.ensure_role(operation, actor)
        expense_request, owner = await ApprovalWorkflow._load_owned(
            db, actor, request_id, operation,
        )
        await ApprovalWorkflow._change_status(
            db, expense_request, operation,
            actor_id=actor.id,
            action_type=ApprovalActionType.finance_process,
        )
        ApprovalWorkflow._notify_owner(db, expense_request, owner)
        return expense_request

    @staticmethod
    async def finance_paid(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        """APPROVED / PAYMENT_PROCESSING → PAID; charges the benefit ledger once."""
        operation = WorkflowOperation.finance_paid
        TeamMembershipPolicy.ensure_role(operation, actor)
        expense_request, owner = await ApprovalWorkflow._load_owned(
            db, actor, request_id, operation,
        )
        ensure_allowed(operation, expense_request.status)

        extra: dict[str, Any] = {}
        if expense_request.is_benefit and expense_request.spend_recorded_at is None:
            year = budget_year(expense_request.submitted_at)
            allocation = await BudgetLedger.record_spend(
                db,
                expense_request.employee_id,
                expense_request.category_id,
                year,
                expense_request.total_amount,
                expense_request.currency,
            )
            expense_request.spend_recorded_at = _now()
            extra = {"budgetYear": year, "budgetSpent": allocation.spent}

        await ApprovalWorkflow._change_status(
            db, expense_request, operation,
            actor_id=actor.id,
            action_type=ApprovalActionType.paid,
            extra=extra,
        )
        ApprovalWorkflow._notify_owner(db, expense_request, owner)
        return expense_request

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _describe_many(
        db: AsyncSession,
        requests: Sequence[ExpenseRequest],
    ) -> list[ExpenseRequestOut]:
        """Attach line items, action history and display names."""
        if not requests:
            return []
        request_ids = [r.id for r in requests]

        result = await db.execute(
            select(ExpenseLineItem)
            .where(ExpenseLineItem.request_id.in_(request_ids))
            .order_by(ExpenseLineItem.item_date, ExpenseLineItem.created_at)
            .execution_options(populate_existing=True)
        )
        items: dict[uuid.UUID, list[LineItemOut]] = {}
        for item in result.scalars().all():
            items.setdefault(item.request_id, []).append(LineItemOut.model_validate(item))

        result = await db.execute(
            select(ApprovalAction)
            .where(ApprovalAction.request_id.in_(request_ids))
            .order_by(ApprovalAction.request_id, ApprovalAction.position)
        )
        history: dict[uuid.UUID, list[ApprovalAction]] = {}
        for action in result.scalars().all():
            history.setdefault(action.request_id, []).append(action)

        names = await EmployeeService.get_display_names(
            db,
            [r.employee_id for r in requests]
            + [a.actor_id for actions in history.values() for a in actions],
        )

        described = []
        for expense_request in requests:
            actions = [
                ApprovalActionOut.model_validate(a).model_copy(
                    update={"actor_name": names.get(a.actor_id)}
                )
                for a in history.get(expense_request.id, [])
            ]
            described.append(
                ExpenseRequestOut.model_validate(expense_request).model_copy(
                    update={
                        "employee_name": names.get(expense_request.employee_id),
                        "line_items": items.get(expense_request.id, []),
                        "actions": actions,
                    }
                )
            )
        return described

    @staticmethod
    async def describe(db: AsyncSession, expense_request: ExpenseRequest) -> ExpenseRequestOut:
        return (await ApprovalWorkflow._describe_many(db, [expense_request]))[0]

    @staticmethod
    async def get_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequestOut:
        expense_request = await ApprovalWorkflow._load(db, request_id)
        owner = await EmployeeService.get_employee(db, expense_request.employee_id)
        if not TeamMembershipPolicy.can_view(actor, owner):
            raise ForbiddenException("Not authorized to view this request.")
        return await ApprovalWorkflow.describe(db, expense_request)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        status: Optional[RequestStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[ExpenseRequestOut], int]:
        """Requests visible to *actor*, newest first."""
        stmt = select(ExpenseRequest).where(ExpenseRequest.deleted_at.is_(None))

        if actor.role not in GLOBAL_VIEW_ROLES:
            visible = [actor.id]
            if actor.role == UserRole.approver:
                visible += await EmployeeService.get_direct_report_ids(db, actor.id)
            stmt = stmt.where(ExpenseRequest.employee_id.in_(visible))
        if status is not None:
            stmt = stmt.where(ExpenseRequest.status == status)

        stmt = stmt.order_by(ExpenseRequest.created_at.desc(), ExpenseRequest.request_number.desc())
        rows, total = await fetch_page(db, stmt, page, page_size)
        return await ApprovalWorkflow._describe_many(db, rows), total
