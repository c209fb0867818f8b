"""Line items — dated expense lines attached to a request.

Only the request owner may change them, and only while the request itself
is editable (DRAFT / RETURNED). Every change lands on the audit chain as an
``ExpenseLineItem`` CREATE / UPDATE / DELETE event.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.audit.service import AuditChain
from expenseflow.auth.dependencies import Actor
from expenseflow.common.constants import AuditEventType, EntityType
from expenseflow.common.currency import ensure_supported_currency
from expenseflow.common.exceptions import NotFoundException, ValidationException
from expenseflow.expenses.models import ExpenseLineItem, ExpenseRequest
from expenseflow.expenses.service import ApprovalWorkflow
from expenseflow.expenses.state_machine import WorkflowOperation, ensure_allowed

logger = logging.getLogger(__name__)

_LINE_ITEM_FIELDS = frozenset({"item_date", "description", "amount", "currency"})
_REQUIRED_FIELDS = ("item_date", "description", "amount")


class LineItemService:

    @staticmethod
    async def _load_editable_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> ExpenseRequest:
        operation = WorkflowOperation.edit
        expense_request, _ = await ApprovalWorkflow._load_owned(db, actor, request_id, operation)
        ensure_allowed(operation, expense_request.status)
        return expense_request

    @staticmethod
    async def _load_item(
        db: AsyncSession,
        request_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> ExpenseLineItem:
        result = await db.execute(
            select(ExpenseLineItem)
            .where(
                ExpenseLineItem.id == item_id,
                ExpenseLineItem.request_id == request_id,
            )
            .execution_options(populate_existing=True)
        )
        item = result.scalars().first()
        if item is None:
            raise NotFoundException("ExpenseLineItem", str(item_id))
        return item

    @staticmethod
    def _clean(changes: dict[str, Any]) -> dict[str, Any]:
        errors: dict[str, list[str]] = {
            field: ["This field cannot be cleared."]
            for field in (*_REQUIRED_FIELDS, "currency")
            if field in changes and changes[field] is None
        }
        if "description" in changes and isinstance(changes["description"], str):
            changes["description"] = changes["description"].strip()
            if not changes["description"]:
                errors["description"] = ["This field is required."]
        if changes.get("amount") is not None:
            changes["amount"] = Decimal(changes["amount"])
            if changes["amount"] < 0:
                errors["amount"] = ["Must not be negative."]
        if errors:
            raise ValidationException(errors)
        if "currency" in changes:
            changes["currency"] = ensure_supported_currency(changes["currency"])
        return changes

    @staticmethod
    async def _audit(
        db: AsyncSession,
        actor: Actor,
        item: ExpenseLineItem,
        expense_request: ExpenseRequest,
        event_type: AuditEventType,
        **data: Any,
    ) -> None:
        await AuditChain.record_event(
            db,
            actor_id=actor.id,
            entity_type=EntityType.expense_line_item.value,
            entity_id=item.id,
            event_type=event_type.value,
            event_data={
                "requestId": expense_request.id,
                "requestNumber": expense_request.request_number,
                **data,
            },
        )

    @staticmethod
    async def add_line_item(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        **fields: Any,
    ) -> ExpenseLineItem:
        missing = [f for f in _REQUIRED_FIELDS if fields.get(f) is None]
        if missing:
            raise ValidationException({f: ["This field is required."] for f in missing})
        fields.setdefault("currency", "EUR")
        fields = LineItemService._clean(fields)

        expense_request = await LineItemService._load_editable_request(db, actor, request_id)
        item = ExpenseLineItem(request_id=expense_request.id, **fields)
        db.add(item)
        await db.flush()

        await LineItemService._audit(
            db, actor, item, expense_request, AuditEventType.create,
            amount=item.amount, currency=item.currency,
        )
        logger.info("line item %s added to %s", item.id, expense_request.request_number)
        return item

    @staticmethod
    async def update_line_item(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        item_id: uuid.UUID,
        **changes: Any,
    ) -> ExpenseLineItem:
        unknown = set(changes) - _LINE_ITEM_FIELDS
        if unknown:
            raise ValidationException({k: ["Field cannot be edited."] for k in sorted(unknown)})
        changes = LineItemService._clean(changes)

        expense_request = await LineItemService._load_editable_request(db, actor, request_id)
        item = await LineItemService._load_item(db, expense_request.id, item_id)

        applied = {
            field: value for field, value in changes.items()
            if getattr(item, field) != value
        }
        if not applied:
            return item
        for field, value in applied.items():
            setattr(item, field, value)
        await db.flush()

        await LineItemService._audit(
            db, actor, item, expense_request, AuditEventType.update, changes=applied,
        )
        return item

    @staticmethod
    async def delete_line_item(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> None:
        expense_request = await LineItemService._load_editable_request(db, actor, request_id)
        item = await LineItemService._load_item(db, expense_request.id, item_id)

        await db.delete(item)
        await db.flush()

        await LineItemService._audit(db, actor, item, expense_request, AuditEventType.delete)
        logger.info("line item %s removed from %s", item.id, expense_request.request_number)
