"""Budget ledger — capacity checks, spend recording and allocation seeding.

Business logic:
  - All amounts are normalised to the canonical currency before comparison
  - ``spent`` only grows through a single conditional UPDATE, so concurrent
    PAID transitions on the same row cannot lose updates or overspend
  - TRAVEL / PROTOCOL categories never reach this module
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.budget.models import BudgetAllocation
from expenseflow.budget.schemas import CapacityCheck
from expenseflow.categories.models import ExpenseCategory
from expenseflow.common.constants import ExpenseType
from expenseflow.common.currency import CANONICAL_CURRENCY, to_canonical
from expenseflow.common.exceptions import BudgetExceededException, NotFoundException
from expenseflow.employees.models import Employee

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]


def budget_year(submitted_at: Optional[datetime] = None) -> int:
    """Ledger year for a request: its submission year, else the current year."""
    return (submitted_at or datetime.now(timezone.utc)).year


class BudgetLedger:
    """Per-employee annual ledger for BENEFIT categories."""

    # ─────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category_id: uuid.UUID,
        year: int,
    ) -> Optional[BudgetAllocation]:
        result = await db.execute(
            select(BudgetAllocation)
            .where(
                BudgetAllocation.employee_id == employee_id,
                BudgetAllocation.category_id == category_id,
                BudgetAllocation.year == year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_budgets(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> Sequence[BudgetAllocation]:
        """All allocation rows of an employee for *year* (default: current)."""
        target_year = year or budget_year()
        result = await db.execute(
            select(BudgetAllocation)
            .join(ExpenseCategory, BudgetAllocation.category_id == ExpenseCategory.id)
            .where(
                BudgetAllocation.employee_id == employee_id,
                BudgetAllocation.year == target_year,
            )
            .order_by(ExpenseCategory.name)
        )
        return result.scalars().all()

    # ─────────────────────────────────────────────────────────────────
    # Capacity
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def check_capacity(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category_id: uuid.UUID,
        amount: Amount,
        currency: str,
        *,
        year: Optional[int] = None,
    ) -> CapacityCheck:
        """Would ``spent + converted(amount) <= allocated`` hold?

        A missing allocation row counts as zero capacity.
        """
        converted = to_canonical(amount, currency)
        allocation = await BudgetLedger.get_allocation(
            db, employee_id, category_id, year or budget_year(),
        )
        if allocation is None:
            return CapacityCheck(
                allowed=False,
                remaining=Decimal("0"),
                converted_amount=converted,
                allocation_exists=False,
                currency=CANONICAL_CURRENCY,
            )

        remaining = allocation.allocated - allocation.spent
        return CapacityCheck(
            allowed=converted <= remaining,
            remaining=max(remaining, Decimal("0")),
            converted_amount=converted,
            currency=CANONICAL_CURRENCY,
        )

    @staticmethod
    async def ensure_capacity(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category_id: uuid.UUID,
        amount: Amount,
        currency: str,
        *,
        year: Optional[int] = None,
        allow_missing: bool = False,
    ) -> CapacityCheck:
        """``check_capacity`` that raises ``BudgetExceededException``.

        With *allow_missing* an absent row passes (request creation, where the
        row is expected to come from category setup).
        """
        check = await BudgetLedger.check_capacity(
            db, employee_id, category_id, amount, currency, year=year,
        )
        if check.allowed or (allow_missing and not check.allocation_exists):
            return check

        logger.info(
            "budget exceeded for employee %s category %s: requested %s, remaining %s",
            employee_id, category_id, check.converted_amount, check.remaining,
        )
        raise BudgetExceededException(check.remaining, CANONICAL_CURRENCY)

    # ─────────────────────────────────────────────────────────────────
    # Spend
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def record_spend(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category_id: uuid.UUID,
        year: int,
        amount: Amount,
        currency: str,
    ) -> BudgetAllocation:
        """Add the converted amount to ``spent`` in one atomic statement.

        The UPDATE only matches while the new total stays within the
        allocation; zero matched rows means the row is missing or full.
        """
        converted = to_canonical(amount, currency)
        result = await db.execute(
            update(BudgetAllocation)
            .where(
                BudgetAllocation.employee_id == employee_id,
                BudgetAllocation.category_id == category_id,
                BudgetAllocation.year == year,
                BudgetAllocation.spent + converted <= BudgetAllocation.allocated,
            )
            .values(
                spent=BudgetAllocation.spent + converted,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        allocation = await BudgetLedger.get_allocation(db, employee_id, category_id, year)
        if result.rowcount == 0:
            if allocation is None:
                raise NotFoundException(
                    "BudgetAllocation", f"{employee_id}/{category_id}/{year}",
                )
            raise BudgetExceededException(
                max(allocation.remaining, Decimal("0")), CANONICAL_CURRENCY,
            )

        logger.info(
            "recorded spend %s %s on %s/%s/%d (spent now %s of %s)",
            converted, CANONICAL_CURRENCY, employee_id, category_id, year,
            allocation.spent, allocation.allocated,
        )
        return allocation

    # ─────────────────────────────────────────────────────────────────
    # Seeding
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def seed_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category_id: uuid.UUID,
        year: int,
        allocated: Amount,
        *,
        refresh: bool = True,
    ) -> BudgetAllocation:
        """Idempotent upsert of an allocation row.

        An existing row gets its ``allocated`` refreshed (unless *refresh* is
        False); ``spent`` is never touched.
        """
        amount = allocated if isinstance(allocated, Decimal) else Decimal(str(allocated))
        allocation = await BudgetLedger.get_allocation(db, employee_id, category_id, year)
        if allocation is None:
            allocation = BudgetAllocation(
                employee_id=employee_id,
                category_id=category_id,
                year=year,
                allocated=amount,
                spent=Decimal("0"),
            )
            db.add(allocation)
        elif refresh and allocation.allocated != amount:
            allocation.allocated = amount
        await db.flush()
        return allocation

    @staticmethod
    async def seed_category_for_active_employees(
        db: AsyncSession,
        category: ExpenseCategory,
        year: Optional[int] = None,
    ) -> int:
        """Back-fill a newly introduced benefit category. Returns rows ensured."""
        if category.expense_type != ExpenseType.benefit:
            return 0
        target_year = year or budget_year()
        result = await db.execute(select(Employee.id).where(Employee.is_active.is_(True)))
        employee_ids = list(result.scalars().all())
        for employee_id in employee_ids:
            await BudgetLedger.seed_allocation(
                db, employee_id, category.id, target_year,
                category.default_allocation, refresh=False,
            )
        return len(employee_ids)

    @staticmethod
    async def seed_defaults_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> int:
        """Allocation rows for every active benefit category with a default."""
        target_year = year or budget_year()
        result = await db.execute(
            select(ExpenseCategory).where(
                ExpenseCategory.expense_type == ExpenseType.benefit,
                ExpenseCategory.active.is_(True),
                ExpenseCategory.default_allocation > 0,
            )
        )
        categories = result.scalars().all()
        for category in categories:
            await BudgetLedger.seed_allocation(
                db, employee_id, category.id, target_year,
                category.default_allocation, refresh=False,
            )
        return len(categories)
