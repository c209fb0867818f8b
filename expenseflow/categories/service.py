"""Category catalog service — introducing and retiring categories."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.audit.service import AuditChain
from expenseflow.budget.service import BudgetLedger
from expenseflow.categories.models import ExpenseCategory
from expenseflow.common.constants import AuditEventType, EntityType, ExpenseType
from expenseflow.common.exceptions import ConflictError, NotFoundException

logger = logging.getLogger(__name__)


class CategoryService:
    """Reads and administers the expense category catalog."""

    @staticmethod
    async def list_active(db: AsyncSession) -> Sequence[ExpenseCategory]:
        result = await db.execute(
            select(ExpenseCategory)
            .where(ExpenseCategory.active.is_(True))
            .order_by(ExpenseCategory.name)
        )
        return result.scalars().all()

    @staticmethod
    async def get_category(db: AsyncSession, category_id: uuid.UUID) -> ExpenseCategory:
        result = await db.execute(
            select(ExpenseCategory).where(ExpenseCategory.id == category_id)
        )
        category = result.scalars().first()
        if category is None:
            raise NotFoundException("ExpenseCategory", str(category_id))
        return category

    @staticmethod
    async def create_category(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        *,
        name: str,
        expense_type: ExpenseType,
        default_allocation: Decimal = Decimal("0"),
        requires_receipt: bool = False,
    ) -> ExpenseCategory:
        """Introduce a category; a BENEFIT one is back-filled into every
        active employee's ledger for the current year."""
        existing = await db.execute(
            select(ExpenseCategory.id).where(ExpenseCategory.name == name)
        )
        if existing.scalar() is not None:
            raise ConflictError("name", name)

        category = ExpenseCategory(
            name=name,
            expense_type=expense_type,
            default_allocation=default_allocation,
            requires_receipt=requires_receipt,
            active=True,
        )
        db.add(category)
        await db.flush()

        seeded = 0
        if category.is_benefit and default_allocation > 0:
            seeded = await BudgetLedger.seed_category_for_active_employees(db, category)
            logger.info("category %s back-filled for %d employees", name, seeded)

        await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.expense_category.value,
            entity_id=category.id,
            event_type=AuditEventType.category_create.value,
            event_data={
                "name": name,
                "expenseType": expense_type.value,
                "defaultAllocation": default_allocation,
                "seededAllocations": seeded,
            },
        )
        return category

    @staticmethod
    async def retire_category(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        category_id: uuid.UUID,
    ) -> ExpenseCategory:
        """Hide a category from new requests; ledger rows stay as history."""
        category = await CategoryService.get_category(db, category_id)
        category.active = False
        await db.flush()

        await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.expense_category.value,
            entity_id=category.id,
            event_type=AuditEventType.category_retire.value,
            event_data={"name": category.name},
        )
        return category
